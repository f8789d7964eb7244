from __future__ import annotations

import logging

from cosrepo.blobstore.bulk_delete import BulkDeleteCoordinator
from cosrepo.blobstore.chunked_upload import UploadLimits
from cosrepo.blobstore.container import BlobContainer
from cosrepo.blobstore.path import BlobPath
from cosrepo.blobstore.retrying_reader import DEFAULT_MAX_ATTEMPTS
from cosrepo.infra.storage.client import StorageClient

logger = logging.getLogger("blobstore")


class BlobStore:
    """Bucket-wide settings shared by every container of a repository.

    The storage client is stateless from the store's point of view and is
    shared by all containers, readers and writers created from it.
    """

    def __init__(
        self,
        client: StorageClient,
        bucket: str,
        buffer_size_in_bytes: int,
        *,
        max_read_attempts: int = DEFAULT_MAX_ATTEMPTS,
        upload_limits: UploadLimits | None = None,
        list_page_size: int | None = None,
    ) -> None:
        if buffer_size_in_bytes <= 0:
            raise ValueError("buffer_size_in_bytes must be positive")
        self._client = client
        self._bucket = bucket
        self._buffer_size_in_bytes = buffer_size_in_bytes
        self._max_read_attempts = max_read_attempts
        self._upload_limits = upload_limits or UploadLimits()
        self._list_page_size = list_page_size

    @property
    def client(self) -> StorageClient:
        return self._client

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def buffer_size_in_bytes(self) -> int:
        return self._buffer_size_in_bytes

    @property
    def max_read_attempts(self) -> int:
        return self._max_read_attempts

    @property
    def upload_limits(self) -> UploadLimits:
        return self._upload_limits

    @property
    def list_page_size(self) -> int | None:
        return self._list_page_size

    def blob_container(self, path: BlobPath) -> BlobContainer:
        return BlobContainer(path, self)

    def bulk_deleter(self) -> BulkDeleteCoordinator:
        return BulkDeleteCoordinator(self._client, self._bucket)

    def close(self) -> None:
        logger.debug("blob_store_closed bucket=%s", self._bucket)
        self._client.close()

    def __str__(self) -> str:
        region = getattr(self._client, "region", None)
        return f"{region}/{self._bucket}" if region else self._bucket
