from __future__ import annotations

import pytest

from cosrepo.common.config import RepositorySettings
from tests.blobstore.mock_storage import MockStorageClient


@pytest.fixture()
def settings() -> RepositorySettings:
    return RepositorySettings(COS_BUCKET="snapshots", COS_REGION="ap-guangzhou")


@pytest.fixture()
def mock_storage() -> MockStorageClient:
    return MockStorageClient()
