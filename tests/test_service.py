from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from cosrepo.common.config import RepositorySettings
from cosrepo.service import (
    StorageBackendNotConfiguredError,
    StorageService,
    build_storage_client,
)


class TestBuildStorageClient:
    def test_requires_bucket(self):
        with pytest.raises(StorageBackendNotConfiguredError, match="COS_BUCKET"):
            build_storage_client(RepositorySettings(COS_REGION="ap-guangzhou"))

    def test_requires_region_or_endpoint(self):
        with pytest.raises(StorageBackendNotConfiguredError, match="COS_REGION"):
            build_storage_client(RepositorySettings(COS_BUCKET="snapshots"))

    def test_builds_s3_client(self, settings):
        with patch("cosrepo.service.S3StorageClient") as client_cls:
            client = build_storage_client(settings)

        client_cls.assert_called_once_with(settings=settings)
        assert client is client_cls.return_value


class TestStorageService:
    def test_hands_out_client_built_from_settings(self, settings, mock_storage):
        factory = MagicMock(return_value=mock_storage)

        service = StorageService(settings, client_factory=factory)

        factory.assert_called_once_with(settings)
        assert service.client() is mock_storage
        assert service.settings is settings

    def test_refresh_swaps_client_and_closes_old_one(self, settings):
        old_client, new_client = MagicMock(), MagicMock()
        factory = MagicMock(side_effect=[old_client, new_client])
        service = StorageService(settings, client_factory=factory)
        updated = settings.with_overrides(COS_REGION="ap-beijing")

        service.refresh(updated)

        assert service.client() is new_client
        assert service.settings is updated
        assert service.snapshot() == (updated, new_client)
        old_client.close.assert_called_once_with()
        new_client.close.assert_not_called()

    def test_failed_refresh_keeps_current_client(self, settings):
        current = MagicMock()
        factory = MagicMock(side_effect=[current, ValueError("bad settings")])
        service = StorageService(settings, client_factory=factory)

        with pytest.raises(ValueError):
            service.refresh(settings)

        assert service.client() is current
        current.close.assert_not_called()

    def test_close(self, settings, mock_storage):
        service = StorageService(settings, client_factory=lambda _: mock_storage)

        service.close()
        service.close()

        assert mock_storage.closed
        with pytest.raises(RuntimeError, match="closed"):
            service.client()
