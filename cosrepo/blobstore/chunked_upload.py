"""Single-shot and multipart uploads.

``ChunkedUploadWriter`` persists one object either from a stream of known
size or, through ``ChunkedBlobOutputStream``, from bytes produced
incrementally by the caller. A payload that fits into one part is always
written with a single PUT; anything larger becomes a multipart upload whose
parts all have the configured part size except the last one.

Upload failures are never retried here: a failed multipart upload is aborted
and surfaced as ``BlobStoreError``.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import BinaryIO

from cosrepo.blobstore.errors import (
    BlobStoreError,
    IllegalStateError,
    InvalidArgumentError,
)
from cosrepo.common.units import format_bytes
from cosrepo.infra.observability.metrics import MULTIPART_ABORTS
from cosrepo.infra.storage.client import (
    MAX_FILE_SIZE,
    MAX_FILE_SIZE_USING_MULTIPART,
    MAX_PART_NUMBER,
    MIN_PART_SIZE_USING_MULTIPART,
    CompletedPart,
    StorageClient,
    StorageError,
)

logger = logging.getLogger("blobstore")


@dataclass(frozen=True, slots=True)
class UploadLimits:
    """Provider limits applied to uploads."""

    max_single_upload_size: int = MAX_FILE_SIZE
    min_multipart_upload_size: int = MIN_PART_SIZE_USING_MULTIPART
    max_multipart_upload_size: int = MAX_FILE_SIZE_USING_MULTIPART
    max_part_count: int = MAX_PART_NUMBER


def number_of_parts(total_size: int, part_size: int) -> tuple[int, int]:
    """Return the number of parts needed for ``total_size`` and the size of the last one.

    Every part but the last is exactly ``part_size`` bytes long; the last
    part carries the remainder.

    Raises:
        InvalidArgumentError: If ``part_size`` is not positive.
    """
    if part_size <= 0:
        raise InvalidArgumentError("Part size must be greater than zero")

    if total_size == 0 or total_size <= part_size:
        return 1, total_size

    parts, remaining = divmod(total_size, part_size)
    if remaining == 0:
        return parts, part_size
    return parts + 1, remaining


def _read_exactly(stream: BinaryIO, size: int, object_key: str) -> bytes:
    chunks: list[bytes] = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            raise BlobStoreError(
                f"Unexpected end of input for [{object_key}], "
                f"expected {size} bytes but got {size - remaining}"
            )
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


class ChunkedUploadWriter:
    """Writes one object, choosing between a single PUT and a multipart upload.

    Instances are cheap and bound to a single key; they are not meant to be
    shared between threads.
    """

    def __init__(
        self,
        client: StorageClient,
        bucket: str,
        object_key: str,
        *,
        part_size: int,
        limits: UploadLimits | None = None,
    ) -> None:
        if part_size <= 0:
            raise InvalidArgumentError("Part size must be greater than zero")
        self._client = client
        self._bucket = bucket
        self._object_key = object_key
        self._part_size = part_size
        self._limits = limits or UploadLimits()

    @property
    def object_key(self) -> str:
        return self._object_key

    @property
    def part_size(self) -> int:
        return self._part_size

    def write(self, stream: BinaryIO, blob_size: int) -> None:
        """Upload exactly ``blob_size`` bytes read from ``stream``."""
        if blob_size < 0:
            raise InvalidArgumentError("blob size must be non-negative")
        if blob_size <= self._part_size:
            self.execute_single_upload(stream, blob_size)
        else:
            self.execute_multipart_upload(stream, blob_size)

    def write_bytes(self, data: bytes) -> None:
        self.write(io.BytesIO(data), len(data))

    def execute_single_upload(self, stream: BinaryIO, blob_size: int) -> None:
        """Upload a blob using a single upload request."""
        if blob_size > self._limits.max_single_upload_size:
            raise InvalidArgumentError(
                f"Upload request size [{blob_size}] can't be larger than "
                f"{format_bytes(self._limits.max_single_upload_size)}"
            )
        if blob_size > self._part_size:
            raise InvalidArgumentError(
                f"Upload request size [{blob_size}] can't be larger than buffer size"
            )

        body = _read_exactly(stream, blob_size, self._object_key)
        try:
            self._client.put_object(
                bucket=self._bucket,
                object_key=self._object_key,
                body=body,
                content_length=blob_size,
            )
        except StorageError as exc:
            raise BlobStoreError(
                f"Unable to upload object [{self._object_key}] using a single upload"
            ) from exc

    def ensure_multipart_upload_size(self, blob_size: int) -> None:
        if blob_size > self._limits.max_multipart_upload_size:
            raise InvalidArgumentError(
                f"Multipart upload request size [{blob_size}] can't be larger than "
                f"{format_bytes(self._limits.max_multipart_upload_size)}"
            )
        if blob_size < self._limits.min_multipart_upload_size:
            raise InvalidArgumentError(
                f"Multipart upload request size [{blob_size}] can't be smaller than "
                f"{format_bytes(self._limits.min_multipart_upload_size)}"
            )

    def execute_multipart_upload(self, stream: BinaryIO, blob_size: int) -> None:
        """Upload a blob using multipart upload requests."""
        self.ensure_multipart_upload_size(blob_size)
        part_size = self._part_size
        part_count, last_part_size = number_of_parts(blob_size, part_size)
        if part_count > self._limits.max_part_count:
            raise InvalidArgumentError(
                f"Too many multipart upload requests [{part_count}], "
                "maybe try a larger buffer size?"
            )
        assert blob_size == (part_count - 1) * part_size + last_part_size, (
            "blobSize does not match multipart sizes"
        )

        upload_id: str | None = None
        success = False
        try:
            upload_id = self.initiate()

            parts: list[CompletedPart] = []
            bytes_count = 0
            for part_number in range(1, part_count + 1):
                last_part = part_number == part_count
                size = last_part_size if last_part else part_size
                body = _read_exactly(stream, size, self._object_key)
                parts.append(
                    self.upload_part(upload_id, part_number, body, last_part=last_part)
                )
                bytes_count += size

            if bytes_count != blob_size:
                raise BlobStoreError(
                    f"Failed to execute multipart upload for [{self._object_key}], "
                    f"expected {blob_size} bytes sent but got {bytes_count}"
                )

            self.complete(upload_id, parts)
            success = True
        finally:
            if not success and upload_id:
                self.abort(upload_id)

    def initiate(self) -> str:
        try:
            upload = self._client.init_multipart_upload(
                bucket=self._bucket, object_key=self._object_key
            )
        except StorageError as exc:
            raise BlobStoreError(
                f"Unable to upload object [{self._object_key}] using multipart upload"
            ) from exc
        if not upload.upload_id:
            raise BlobStoreError(
                f"Failed to initialize multipart upload [{self._object_key}]"
            )
        logger.debug(
            "multipart_upload_started key=%s upload_id=%s",
            self._object_key,
            upload.upload_id,
        )
        return upload.upload_id

    def upload_part(
        self,
        upload_id: str,
        part_number: int,
        body: bytes,
        *,
        last_part: bool,
    ) -> CompletedPart:
        try:
            return self._client.upload_part(
                bucket=self._bucket,
                object_key=self._object_key,
                upload_id=upload_id,
                part_number=part_number,
                body=body,
                size=len(body),
                last_part=last_part,
            )
        except StorageError as exc:
            raise BlobStoreError(
                f"Unable to upload part {part_number} of object [{self._object_key}]"
            ) from exc

    def complete(self, upload_id: str, parts: list[CompletedPart]) -> None:
        try:
            self._client.complete_multipart_upload(
                bucket=self._bucket,
                object_key=self._object_key,
                upload_id=upload_id,
                parts=parts,
            )
        except StorageError as exc:
            raise BlobStoreError(
                f"Unable to complete multipart upload of object [{self._object_key}]"
            ) from exc
        logger.debug(
            "multipart_upload_completed key=%s upload_id=%s parts=%s",
            self._object_key,
            upload_id,
            len(parts),
        )

    def abort(self, upload_id: str) -> None:
        """Abort a multipart upload; failures are logged, never raised."""
        MULTIPART_ABORTS.inc()
        try:
            self._client.abort_multipart_upload(
                bucket=self._bucket,
                object_key=self._object_key,
                upload_id=upload_id,
            )
        except Exception as exc:
            logger.warning(
                "multipart_abort_failed key=%s upload_id=%s",
                self._object_key,
                upload_id,
                exc_info=exc,
                extra={
                    "extra": {"object_key": self._object_key, "upload_id": upload_id}
                },
            )

    def open_output_stream(self) -> "ChunkedBlobOutputStream":
        return ChunkedBlobOutputStream(self)


class ChunkedBlobOutputStream(io.RawIOBase):
    """Writable sink that turns buffered bytes into upload parts.

    Bytes are buffered until more than one part is available; full parts are
    flushed as they accumulate, the first flush initiating the multipart
    upload. Completion happens on ``close()`` and only after
    ``mark_success()``: closing an unconfirmed stream, including while an
    exception unwinds through a ``with`` block, aborts the multipart upload
    so no partial object ever becomes visible.
    """

    def __init__(self, writer: ChunkedUploadWriter) -> None:
        super().__init__()
        self._writer = writer
        self._part_size = writer.part_size
        self._buffer = bytearray()
        self._upload_id: str | None = None
        self._parts: list[CompletedPart] = []
        self._flushed_bytes = 0
        self._successful = False

    @property
    def upload_id(self) -> str | None:
        return self._upload_id

    @property
    def parts(self) -> list[CompletedPart]:
        return list(self._parts)

    @property
    def flushed_bytes(self) -> int:
        return self._flushed_bytes

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        if self.closed:
            raise IllegalStateError(
                f"writing to [{self._writer.object_key}] after close"
            )
        view = memoryview(data).cast("B")
        self._buffer += view
        # Keep at least one byte back so the final part is never empty
        while len(self._buffer) > self._part_size:
            self._flush_part(self._buffer[: self._part_size], last_part=False)
            del self._buffer[: self._part_size]
        return len(view)

    def mark_success(self) -> None:
        if self.closed:
            raise IllegalStateError(
                f"marking [{self._writer.object_key}] successful after close"
            )
        self._successful = True

    def _flush_part(self, data: bytearray, *, last_part: bool) -> None:
        if not data:
            return
        if self._flushed_bytes == 0:
            assert not last_part, "use single part upload if there's only a single part"
            self._upload_id = self._writer.initiate()
        assert not last_part or self._successful, "must only write last part if successful"
        assert self._upload_id is not None
        part = self._writer.upload_part(
            self._upload_id, len(self._parts) + 1, bytes(data), last_part=last_part
        )
        self._parts.append(part)
        self._flushed_bytes += len(data)

    def _on_completion(self) -> None:
        if self._flushed_bytes == 0:
            self._writer.write_bytes(bytes(self._buffer))
            return
        self._flush_part(self._buffer, last_part=True)
        self._buffer.clear()
        assert self._upload_id is not None
        self._writer.complete(self._upload_id, self._parts)

    def _on_failure(self) -> None:
        if self._upload_id:
            self._writer.abort(self._upload_id)

    def close(self) -> None:
        if self.closed:
            return
        try:
            if self._successful:
                try:
                    self._on_completion()
                except BaseException:
                    self._on_failure()
                    raise
            else:
                self._on_failure()
        finally:
            self._buffer = bytearray()
            super().close()
