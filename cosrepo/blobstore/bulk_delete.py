"""Batched deletes with precise recovery from partial failures."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator

from cosrepo.blobstore.errors import BulkDeleteError
from cosrepo.infra.storage.client import (
    MAX_BULK_DELETES,
    PartialDeleteError,
    StorageClient,
    StorageError,
    use_or_suppress,
)

logger = logging.getLogger("blobstore")


@dataclass
class DeleteOutcome:
    """Accumulated result of one delete operation."""

    deleted_count: int = 0
    deleted_bytes: int = 0
    attempted_count: int = 0
    outstanding_keys: set[str] = field(default_factory=set)
    error: BaseException | None = None

    def record_failure(self, keys: Iterable[str], cause: BaseException) -> None:
        self.outstanding_keys.update(keys)
        self.error = use_or_suppress(self.error, cause)


def partition(keys: Iterable[str], size: int) -> Iterator[list[str]]:
    batch: list[str] = []
    for key in keys:
        batch.append(key)
        if len(batch) == size:
            yield batch
            batch = []
    if batch:
        yield batch


class BulkDeleteCoordinator:
    """Deletes arbitrarily many keys in provider-sized quiet batches.

    A batch the store rejects as a whole leaves all of its keys outstanding;
    a batch with per-key errors leaves exactly those keys outstanding. The
    operation only fails once every batch has been attempted.
    """

    def __init__(
        self,
        client: StorageClient,
        bucket: str,
        *,
        max_batch_size: int = MAX_BULK_DELETES,
    ) -> None:
        if not 0 < max_batch_size <= MAX_BULK_DELETES:
            raise ValueError(
                f"max_batch_size must be between 1 and {MAX_BULK_DELETES}"
            )
        self._client = client
        self._bucket = bucket
        self._max_batch_size = max_batch_size

    def delete_keys(
        self,
        keys: Iterable[str],
        *,
        key_resolver: Callable[[str], str] | None = None,
    ) -> DeleteOutcome:
        """Delete ``keys`` and raise ``BulkDeleteError`` if any remain.

        Args:
            keys: Object keys, or blob names when ``key_resolver`` is given.
            key_resolver: Maps each item of ``keys`` to its full object key.
        """
        outcome = DeleteOutcome()
        self.delete_batches(keys, outcome, key_resolver=key_resolver)
        self.raise_if_outstanding(outcome)
        return outcome

    def delete_batches(
        self,
        keys: Iterable[str],
        outcome: DeleteOutcome,
        *,
        key_resolver: Callable[[str], str] | None = None,
    ) -> DeleteOutcome:
        """Attempt every batch, recording failures in ``outcome`` without raising."""
        resolved = map(key_resolver, keys) if key_resolver else iter(keys)
        for batch in partition(resolved, self._max_batch_size):
            self._delete_batch(batch, outcome)
        return outcome

    def _delete_batch(self, batch: list[str], outcome: DeleteOutcome) -> None:
        outcome.attempted_count += len(batch)
        try:
            errors = self._client.delete_objects(
                bucket=self._bucket, object_keys=batch, quiet=True
            )
        except StorageError as exc:
            # Nothing is known about the batch, every key stays outstanding
            logger.warning(
                "bulk_delete_failed bucket=%s keys=%s",
                self._bucket,
                len(batch),
                exc_info=exc,
            )
            outcome.record_failure(batch, exc)
            return

        if not errors:
            outcome.deleted_count += len(batch)
            return

        failed = {error.key for error in errors}
        logger.warning(
            "bulk_delete_partial_failure bucket=%s failed=%s errors=%s",
            self._bucket,
            len(failed),
            [error.describe() for error in errors],
            extra={"extra": {"bucket": self._bucket, "failed_keys": len(failed)}},
        )
        outcome.deleted_count += len(batch) - len(failed.intersection(batch))
        outcome.record_failure(
            failed,
            PartialDeleteError(
                f"Failed to delete some blobs {[error.describe() for error in errors]}",
                errors,
            ),
        )

    @staticmethod
    def raise_if_outstanding(outcome: DeleteOutcome) -> None:
        if not outcome.outstanding_keys:
            return
        raise BulkDeleteError(outcome.outstanding_keys) from outcome.error
