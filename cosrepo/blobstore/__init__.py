"""Blob container engine: resumable reads, chunked uploads and bulk deletes."""

from .bulk_delete import BulkDeleteCoordinator, DeleteOutcome
from .chunked_upload import (
    ChunkedBlobOutputStream,
    ChunkedUploadWriter,
    UploadLimits,
    number_of_parts,
)
from .container import BlobContainer, BlobMetadata, DeleteResult
from .errors import (
    BlobStoreError,
    BulkDeleteError,
    IllegalStateError,
    InvalidArgumentError,
)
from .path import BlobPath
from .retrying_reader import ReadState, RetryingRangeReader
from .store import BlobStore

__all__ = [
    "BlobContainer",
    "BlobMetadata",
    "BlobPath",
    "BlobStore",
    "BlobStoreError",
    "BulkDeleteCoordinator",
    "BulkDeleteError",
    "ChunkedBlobOutputStream",
    "ChunkedUploadWriter",
    "DeleteOutcome",
    "DeleteResult",
    "IllegalStateError",
    "InvalidArgumentError",
    "ReadState",
    "RetryingRangeReader",
    "UploadLimits",
    "number_of_parts",
]
