from __future__ import annotations

from typing import Iterable

from cosrepo.infra.storage.client import StorageError

# Number of outstanding keys named in a bulk delete failure message
MAX_KEYS_IN_MESSAGE = 10


class InvalidArgumentError(ValueError):
    """Raised for bad ranges, bad part-size math or sizes beyond provider limits."""


class IllegalStateError(RuntimeError):
    """Raised when a reader or writer is used after reaching a terminal state."""


class BlobStoreError(StorageError):
    """Raised when a blob operation could not be carried out."""


class BulkDeleteError(BlobStoreError):
    """Raised when keys remain after every delete batch has been attempted."""

    def __init__(self, outstanding_keys: Iterable[str]) -> None:
        self.outstanding_keys = frozenset(outstanding_keys)
        sample = sorted(self.outstanding_keys)[:MAX_KEYS_IN_MESSAGE]
        super().__init__(
            f"Failed to delete {len(self.outstanding_keys)} blobs {sample}"
        )
