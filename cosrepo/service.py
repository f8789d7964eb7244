"""Owner of the storage client built from repository settings."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from cosrepo.common.config import RepositorySettings, get_settings
from cosrepo.infra.storage.client import StorageClient
from cosrepo.infra.storage.s3_client import S3StorageClient

logger = logging.getLogger("storage")


class StorageBackendNotConfiguredError(Exception):
    """Raised when the settings are insufficient to build a storage client."""


ClientFactory = Callable[[RepositorySettings], StorageClient]


def build_storage_client(settings: RepositorySettings) -> StorageClient:
    """Build the boto3-backed client for the given settings."""
    if not settings.COS_BUCKET:
        raise StorageBackendNotConfiguredError("COS_BUCKET is required")
    if not settings.COS_REGION and not settings.COS_ENDPOINT_URL:
        raise StorageBackendNotConfiguredError(
            "COS_REGION or COS_ENDPOINT_URL is required"
        )
    return S3StorageClient(settings=settings)


class StorageService:
    """Hands out the current storage client and swaps it on refresh.

    ``refresh`` builds the new client before taking the lock, so callers
    always observe either the old settings/client pair or the new one.
    """

    def __init__(
        self,
        settings: RepositorySettings | None = None,
        *,
        client_factory: ClientFactory = build_storage_client,
    ) -> None:
        self._lock = threading.Lock()
        self._client_factory = client_factory
        self._settings = settings or get_settings()
        self._client: StorageClient | None = client_factory(self._settings)

    @property
    def settings(self) -> RepositorySettings:
        return self._settings

    def client(self) -> StorageClient:
        return self.snapshot()[1]

    def snapshot(self) -> tuple[RepositorySettings, StorageClient]:
        """Current settings and the client built from them, read together."""
        with self._lock:
            if self._client is None:
                raise RuntimeError("StorageService is closed")
            return self._settings, self._client

    def refresh(self, settings: RepositorySettings) -> None:
        new_client = self._client_factory(settings)
        with self._lock:
            old_client = self._client
            self._settings = settings
            self._client = new_client
        logger.info(
            "storage_client_refreshed bucket=%s region=%s",
            settings.COS_BUCKET,
            settings.COS_REGION,
        )
        if old_client is not None:
            old_client.close()

    def close(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
        if client is not None:
            client.close()
