"""Object storage abstraction layer.

This module provides a protocol-based abstraction for object storage backends,
enabling support for Tencent COS, S3, MinIO, and other S3-compatible services.
"""

from .client import (
    CompletedPart,
    DeleteObjectError,
    MultipartUpload,
    ObjectListing,
    ObjectNotFoundError,
    ObjectStream,
    ObjectSummary,
    PartialDeleteError,
    StorageClient,
    StorageError,
    StorageTransportError,
    use_or_suppress,
)

__all__ = [
    "CompletedPart",
    "DeleteObjectError",
    "MultipartUpload",
    "ObjectListing",
    "ObjectNotFoundError",
    "ObjectStream",
    "ObjectSummary",
    "PartialDeleteError",
    "StorageClient",
    "StorageError",
    "StorageTransportError",
    "use_or_suppress",
]
