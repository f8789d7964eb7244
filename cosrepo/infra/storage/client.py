"""Storage client protocol and data types.

This module defines the abstract interface for object storage operations
consumed by the blob container: existence checks, ranged reads, single-shot
puts, multipart uploads, quiet bulk deletes and paginated listings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import BinaryIO, Protocol, Sequence, Union

from cosrepo.common.units import GB, MB, TB

# Maximum size of objects that can be uploaded using a single upload request
MAX_FILE_SIZE = 5 * GB
# Minimum size of parts that can be uploaded using the Multipart Upload API
MIN_PART_SIZE_USING_MULTIPART = 5 * MB
# Maximum size of parts that can be uploaded using the Multipart Upload API
MAX_PART_SIZE_USING_MULTIPART = MAX_FILE_SIZE
# Maximum size of objects that can be uploaded using the Multipart Upload API
MAX_FILE_SIZE_USING_MULTIPART = 5 * TB
# Maximum part number allowed by the provider
MAX_PART_NUMBER = 10000
# Maximum number of keys accepted by a single bulk delete request
MAX_BULK_DELETES = 1000

Body = Union[bytes, bytearray, memoryview, BinaryIO]


class StorageError(RuntimeError):
    """Raised when object storage operations fail.

    Failures merged from several attempts keep the first one as the primary
    error; the others are retained in ``suppressed``.
    """

    def __init__(self, *args: object) -> None:
        super().__init__(*args)
        self.suppressed: list[BaseException] = []


class ObjectNotFoundError(StorageError):
    """Raised when the requested object does not exist (404)."""


class StorageTransportError(StorageError):
    """Raised when the store gave no usable response.

    The outcome of the request is unknown: it may or may not have been
    applied.
    """


class PartialDeleteError(StorageError):
    """Raised when a bulk delete reports failures for some of its keys."""

    def __init__(self, message: str, errors: Sequence["DeleteObjectError"]) -> None:
        super().__init__(message)
        self.errors = list(errors)


def use_or_suppress(
    first: BaseException | None, second: BaseException
) -> BaseException:
    """Merge ``second`` into ``first``, keeping the first failure primary."""
    if first is None:
        return second
    if first is second:
        return first
    suppressed = getattr(first, "suppressed", None)
    if suppressed is None:
        suppressed = []
        first.suppressed = suppressed  # type: ignore[attr-defined]
    suppressed.append(second)
    return first


@dataclass(frozen=True, slots=True)
class CompletedPart:
    """Represents a completed part in a multipart upload."""

    part_number: int
    etag: str


@dataclass(frozen=True, slots=True)
class MultipartUpload:
    """Result of initiating a multipart upload."""

    upload_id: str
    bucket: str
    object_key: str


@dataclass(frozen=True, slots=True)
class ObjectSummary:
    """One object entry of a listing page."""

    key: str
    size: int


@dataclass(frozen=True, slots=True)
class ObjectListing:
    """One page of a prefix listing."""

    objects: list[ObjectSummary] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)
    is_truncated: bool = False
    next_continuation_token: str | None = None


@dataclass(frozen=True, slots=True)
class DeleteObjectError:
    """A single key a bulk delete could not remove."""

    key: str
    code: str | None
    message: str | None

    def describe(self) -> str:
        return f"[{self.key}][{self.code}][{self.message}]"


class ObjectStream(Protocol):
    """Body of a GET request."""

    @property
    def content_length(self) -> int | None:
        """Declared length of the returned byte range, if known."""
        ...

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes; ``b""`` signals end of stream.

        Raises:
            StorageTransportError: If the connection breaks mid-read.
        """
        ...

    def abort(self) -> None:
        """Drop the connection without draining the remaining bytes."""
        ...

    def close(self) -> None:
        ...


class StorageClient(Protocol):
    """Protocol defining the interface for object storage backends.

    Implementations must provide all methods defined here and raise
    ``StorageError`` subclasses only.
    """

    def object_exists(self, *, bucket: str, object_key: str) -> bool:
        """Check whether an object exists.

        Raises:
            StorageError: If the check itself fails.
        """
        ...

    def get_object(
        self,
        *,
        bucket: str,
        object_key: str,
        start: int | None = None,
        end: int | None = None,
    ) -> ObjectStream:
        """Open a stream over an object, optionally restricted to a byte range.

        Args:
            bucket: Source bucket name.
            object_key: Object key (path) in the bucket.
            start: First byte to return (inclusive).
            end: Last byte to return (inclusive); ``None`` reads to the end.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            StorageError: If the operation fails.
        """
        ...

    def put_object(
        self,
        *,
        bucket: str,
        object_key: str,
        body: Body,
        content_length: int,
    ) -> str | None:
        """Upload a whole object in one request and return its ETag.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def init_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
    ) -> MultipartUpload:
        """Initialize a multipart upload session.

        Returns:
            MultipartUpload containing the upload_id for subsequent operations.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def upload_part(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        body: Body,
        size: int,
        last_part: bool = False,
    ) -> CompletedPart:
        """Upload one part of a multipart upload.

        Args:
            part_number: Part number (1-based, max 10000).
            body: Exactly ``size`` bytes of payload.
            size: Length of the part in bytes.
            last_part: Whether this is the final part of the upload.

        Returns:
            The part number paired with the ETag returned by the store.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
    ) -> None:
        """Complete a multipart upload by combining all parts.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        """Abort a multipart upload and clean up uploaded parts.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def delete_object(self, *, bucket: str, object_key: str) -> None:
        """Delete an object from storage.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def delete_objects(
        self,
        *,
        bucket: str,
        object_keys: Sequence[str],
        quiet: bool = True,
    ) -> list[DeleteObjectError]:
        """Delete up to ``MAX_BULK_DELETES`` objects in one request.

        Returns:
            The keys the store reported as not deleted; empty on full success.

        Raises:
            StorageError: If the request failed as a whole.
        """
        ...

    def list_objects(
        self,
        *,
        bucket: str,
        prefix: str,
        delimiter: str | None = None,
        continuation_token: str | None = None,
        max_keys: int | None = None,
    ) -> ObjectListing:
        """List one page of objects under ``prefix``.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def close(self) -> None:
        """Release connections held by the client."""
        ...
