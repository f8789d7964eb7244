"""Snapshot repository backed by a COS bucket."""

from __future__ import annotations

import logging
import threading

from cosrepo.blobstore.container import BlobContainer
from cosrepo.blobstore.path import BlobPath
from cosrepo.blobstore.store import BlobStore
from cosrepo.common.config import RepositorySettings
from cosrepo.service import StorageBackendNotConfiguredError, StorageService

logger = logging.getLogger("storage")
deprecation_logger = logging.getLogger("deprecation")


def resolve_bucket(settings: RepositorySettings) -> str:
    """Effective bucket name, appending the deprecated app id when set."""
    bucket = settings.COS_BUCKET
    if not bucket:
        raise StorageBackendNotConfiguredError(
            "No bucket defined for cos repository"
        )
    if settings.COS_APP_ID:
        deprecation_logger.warning(
            "cos repository app_id setting is deprecated, "
            "use the full bucket name [%s-%s] instead",
            bucket,
            settings.COS_APP_ID,
        )
        return f"{bucket}-{settings.COS_APP_ID}"
    return bucket


def resolve_base_path(settings: RepositorySettings) -> BlobPath:
    base_path = settings.COS_BASE_PATH
    if base_path.startswith("/"):
        base_path = base_path[1:]
        deprecation_logger.warning(
            "cos repository base_path trimming the leading `/`, "
            "and leading `/` will not be supported for the cos repository "
            "in future releases"
        )
    if not base_path:
        return BlobPath.EMPTY
    return BlobPath.from_string(base_path)


class CosRepository:
    """Binds settings, storage service and blob store for one repository.

    The repository follows the service: once ``StorageService.refresh`` has
    swapped in new settings and a new client, the next access re-resolves
    the bucket and base path and builds a fresh ``BlobStore`` on the new
    client. Containers handed out earlier keep the store they were built on.
    """

    def __init__(
        self,
        service: StorageService,
        settings: RepositorySettings | None = None,
    ) -> None:
        self._service = service
        self._lock = threading.Lock()
        self._blob_store: BlobStore | None = None
        # Snapshot of the service the local settings were taken from
        self._service_settings = service.settings
        self._apply(settings or self._service_settings)

    def _apply(self, settings: RepositorySettings) -> None:
        self._settings = settings
        self._bucket = resolve_bucket(settings)
        self._base_path = resolve_base_path(settings)
        logger.debug(
            "using bucket=%s base_path=%s chunk_size=%s compress=%s",
            self._bucket,
            self._base_path,
            settings.COS_CHUNK_SIZE,
            settings.COS_COMPRESS,
        )

    def _sync(self) -> BlobStore:
        service_settings, client = self._service.snapshot()
        with self._lock:
            if service_settings is not self._service_settings:
                self._apply(service_settings)
                self._service_settings = service_settings
                self._blob_store = None
            store = self._blob_store
            if store is None or store.client is not client:
                store = BlobStore(
                    client,
                    self._bucket,
                    self._settings.COS_BUFFER_SIZE,
                    max_read_attempts=self._settings.COS_MAX_READ_ATTEMPTS,
                )
                self._blob_store = store
            return store

    @property
    def settings(self) -> RepositorySettings:
        self._sync()
        return self._settings

    @property
    def bucket(self) -> str:
        self._sync()
        return self._bucket

    @property
    def base_path(self) -> BlobPath:
        self._sync()
        return self._base_path

    @property
    def chunk_size(self) -> int:
        return self.settings.COS_CHUNK_SIZE

    @property
    def compress(self) -> bool:
        return self.settings.COS_COMPRESS

    def blob_store(self) -> BlobStore:
        return self._sync()

    def blob_container(self) -> BlobContainer:
        """Container at the repository base path."""
        store = self._sync()
        return store.blob_container(self._base_path)

    def close(self) -> None:
        with self._lock:
            self._blob_store = None
        self._service.close()
