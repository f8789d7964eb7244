"""Blob container facade over one key prefix of a bucket."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, BinaryIO, Callable, Iterable, Iterator

from cosrepo.blobstore.bulk_delete import BulkDeleteCoordinator, DeleteOutcome
from cosrepo.blobstore.chunked_upload import ChunkedBlobOutputStream, ChunkedUploadWriter
from cosrepo.blobstore.errors import BlobStoreError, InvalidArgumentError
from cosrepo.blobstore.path import DELIMITER, BlobPath
from cosrepo.blobstore.retrying_reader import RetryingRangeReader
from cosrepo.common.units import MB
from cosrepo.infra.storage.client import ObjectListing, StorageError

if TYPE_CHECKING:
    from cosrepo.blobstore.store import BlobStore

logger = logging.getLogger("blobstore")

# Streams returned by this container must be fully consumed, so consumers are
# asked to make bounded range requests of this size
READ_BLOB_PREFERRED_LENGTH = 32 * MB


@dataclass(frozen=True, slots=True)
class BlobMetadata:
    name: str
    length: int


@dataclass(frozen=True, slots=True)
class DeleteResult:
    blobs_deleted: int
    bytes_deleted: int

    def add(self, other: "DeleteResult") -> "DeleteResult":
        return DeleteResult(
            self.blobs_deleted + other.blobs_deleted,
            self.bytes_deleted + other.bytes_deleted,
        )


class BlobContainer:
    """Read, write, list and delete blobs stored under one key prefix.

    ``fail_if_already_exists`` is accepted by every write for interface
    compatibility but is not enforced: the store silently overwrites
    existing objects and offers no create-if-absent primitive.
    """

    def __init__(self, path: BlobPath, blob_store: "BlobStore") -> None:
        self._path = path
        self._blob_store = blob_store
        self._key_path = path.build_as_string()

    @property
    def path(self) -> BlobPath:
        return self._path

    @property
    def key_path(self) -> str:
        return self._key_path

    @property
    def _client(self):
        return self._blob_store.client

    @property
    def _bucket(self) -> str:
        return self._blob_store.bucket

    def build_key(self, blob_name: str) -> str:
        if blob_name.startswith(DELIMITER):
            raise InvalidArgumentError(
                f"blob name [{blob_name}] must not start with [{DELIMITER}]"
            )
        return self._key_path + blob_name

    def blob_exists(self, blob_name: str) -> bool:
        try:
            return self._client.object_exists(
                bucket=self._bucket, object_key=self.build_key(blob_name)
            )
        except StorageError as exc:
            raise BlobStoreError(
                f"Failed to check if blob [{blob_name}] exists"
            ) from exc

    def read_blob(
        self,
        blob_name: str,
        position: int | None = None,
        length: int | None = None,
    ) -> io.RawIOBase:
        """Open a stream over a whole blob or ``length`` bytes from ``position``.

        Raises:
            InvalidArgumentError: If ``position`` or ``length`` is negative or
                the name starts with ``/``.
            ObjectNotFoundError: If the blob does not exist.
        """
        if position is not None and position < 0:
            raise InvalidArgumentError("position must be non-negative")
        if length is not None and length < 0:
            raise InvalidArgumentError("length must be non-negative")
        object_key = self.build_key(blob_name)
        if length == 0:
            return io.BytesIO(b"")

        start = position or 0
        end = start + length - 1 if length is not None else None
        return RetryingRangeReader(
            self._client,
            self._bucket,
            object_key,
            start,
            end,
            max_attempts=self._blob_store.max_read_attempts,
        )

    def read_blob_preferred_length(self) -> int:
        return READ_BLOB_PREFERRED_LENGTH

    def large_blob_threshold_in_bytes(self) -> int:
        return self._blob_store.buffer_size_in_bytes

    def _writer(self, blob_name: str) -> ChunkedUploadWriter:
        return ChunkedUploadWriter(
            self._client,
            self._bucket,
            self.build_key(blob_name),
            part_size=self.large_blob_threshold_in_bytes(),
            limits=self._blob_store.upload_limits,
        )

    def write_blob(
        self,
        blob_name: str,
        stream: BinaryIO,
        blob_size: int,
        fail_if_already_exists: bool = False,
    ) -> None:
        self._writer(blob_name).write(stream, blob_size)

    def write_blob_bytes(
        self, blob_name: str, data: bytes, fail_if_already_exists: bool = False
    ) -> None:
        self.write_blob(blob_name, io.BytesIO(data), len(data), fail_if_already_exists)

    def write_blob_atomic(
        self, blob_name: str, data: bytes, fail_if_already_exists: bool = False
    ) -> None:
        # Single puts and completed multipart uploads both become visible atomically
        self.write_blob_bytes(blob_name, data, fail_if_already_exists)

    def write_blob_streaming(
        self,
        blob_name: str,
        fail_if_already_exists: bool,
        atomic: bool,
        writer: Callable[[ChunkedBlobOutputStream], None],
    ) -> None:
        """Let ``writer`` produce the blob content into an output stream.

        The blob is only committed if ``writer`` returns normally.
        """
        with self._writer(blob_name).open_output_stream() as out:
            writer(out)
            out.mark_success()

    def delete_blob(self, blob_name: str) -> None:
        try:
            self._client.delete_object(
                bucket=self._bucket, object_key=self.build_key(blob_name)
            )
        except StorageError as exc:
            raise BlobStoreError(f"Failed to delete blob [{blob_name}]") from exc

    def delete_blobs_ignoring_if_not_exists(self, blob_names: Iterable[str]) -> None:
        keys = [self.build_key(blob_name) for blob_name in blob_names]
        self._blob_store.bulk_deleter().delete_keys(keys)

    def delete(self) -> DeleteResult:
        """Delete every blob below this container, then the container marker.

        Returns:
            Number and total size of the deleted blobs.
        """
        deleter: BulkDeleteCoordinator = self._blob_store.bulk_deleter()
        outcome = DeleteOutcome()
        try:
            for listing in self._execute_listing(self._key_path, delimiter=None):
                keys: list[str] = []
                for summary in listing.objects:
                    if summary.key == self._key_path:
                        continue
                    outcome.deleted_bytes += summary.size
                    keys.append(summary.key)
                deleter.delete_batches(keys, outcome)
        except StorageError as exc:
            raise BlobStoreError(
                f"Exception when deleting blob container [{self._key_path}]"
            ) from exc

        blobs_deleted = outcome.attempted_count
        if self._key_path:
            deleter.delete_batches([self._key_path], outcome)
        deleter.raise_if_outstanding(outcome)
        logger.debug(
            "container_deleted key_path=%s blobs=%s bytes=%s",
            self._key_path,
            blobs_deleted,
            outcome.deleted_bytes,
        )
        return DeleteResult(blobs_deleted, outcome.deleted_bytes)

    def list_blobs_by_prefix(self, blob_name_prefix: str | None) -> dict[str, BlobMetadata]:
        prefix = self._key_path if blob_name_prefix is None else self.build_key(blob_name_prefix)
        blobs: dict[str, BlobMetadata] = {}
        try:
            for listing in self._execute_listing(prefix, delimiter=DELIMITER):
                for summary in listing.objects:
                    name = summary.key[len(self._key_path):]
                    blobs[name] = BlobMetadata(name, summary.size)
        except StorageError as exc:
            raise BlobStoreError(
                f"Exception when listing blobs by prefix [{blob_name_prefix}]"
            ) from exc
        return blobs

    def list_blobs(self) -> dict[str, BlobMetadata]:
        return self.list_blobs_by_prefix(None)

    def children(self) -> dict[str, "BlobContainer"]:
        try:
            names = [
                prefix[len(self._key_path):]
                for listing in self._execute_listing(self._key_path, delimiter=DELIMITER)
                for prefix in listing.common_prefixes
            ]
        except StorageError as exc:
            raise BlobStoreError(
                f"Exception when listing children of [{self._key_path}]"
            ) from exc
        return {
            name.rstrip(DELIMITER): self._blob_store.blob_container(
                self._path.add(name.rstrip(DELIMITER))
            )
            for name in names
            if name.rstrip(DELIMITER)
        }

    def _execute_listing(
        self, prefix: str, *, delimiter: str | None
    ) -> Iterator[ObjectListing]:
        token: str | None = None
        while True:
            listing = self._client.list_objects(
                bucket=self._bucket,
                prefix=prefix,
                delimiter=delimiter,
                continuation_token=token,
                max_keys=self._blob_store.list_page_size,
            )
            yield listing
            if not listing.is_truncated:
                return
            token = listing.next_continuation_token
            if not token:
                raise BlobStoreError(
                    f"Truncated listing of [{prefix}] without a continuation token"
                )
