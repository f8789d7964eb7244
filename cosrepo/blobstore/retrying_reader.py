"""Resumable ranged reads.

``RetryingRangeReader`` streams one object, or an inclusive byte range of it,
and reopens a fresh range request from the first undelivered byte whenever
the transport fails. Retries are bounded by attempt count only; there is no
delay between attempts.
"""

from __future__ import annotations

import enum
import io
import logging
from collections import deque
from dataclasses import dataclass, field

from cosrepo.blobstore.errors import IllegalStateError, InvalidArgumentError
from cosrepo.infra.observability.metrics import READ_RETRIES
from cosrepo.infra.storage.client import (
    ObjectNotFoundError,
    ObjectStream,
    StorageClient,
    StorageTransportError,
    use_or_suppress,
)

logger = logging.getLogger("blobstore")

DEFAULT_MAX_ATTEMPTS = 11
MAX_SUPPRESSED_FAILURES = 10

RETRYABLE_READ_ERRORS = (StorageTransportError, OSError)


class ReadState(enum.Enum):
    OPENING = "opening"
    READING = "reading"
    RETRYING = "retrying"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass
class ReadSession:
    """Cursor of a ranged read.

    ``offset`` counts bytes delivered to the caller since ``start``;
    ``last_known_end`` is the exclusive end position announced by the latest
    response, ``None`` when the store did not declare a length.
    """

    offset: int = 0
    last_known_end: int | None = None
    attempt: int = 1
    state: ReadState = ReadState.OPENING
    eof: bool = False
    failures: deque[BaseException] = field(
        default_factory=lambda: deque(maxlen=MAX_SUPPRESSED_FAILURES)
    )


class RetryingRangeReader(io.RawIOBase):
    """Forward-only stream over ``[start, end]`` of one object.

    Both bounds are inclusive; ``end=None`` reads to the end of the object.
    The first range request is issued on construction, so a missing object
    surfaces immediately as ``ObjectNotFoundError``.
    """

    def __init__(
        self,
        client: StorageClient,
        bucket: str,
        object_key: str,
        start: int = 0,
        end: int | None = None,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        super().__init__()
        self._session = ReadSession()
        self._stream: ObjectStream | None = None
        if start < 0:
            raise InvalidArgumentError("start must be non-negative")
        if end is not None and end < start:
            raise InvalidArgumentError("end must be >= start")
        if max_attempts < 1:
            raise InvalidArgumentError("max_attempts must be at least 1")
        self._client = client
        self._bucket = bucket
        self._object_key = object_key
        self._start = start
        self._end = end
        self._max_attempts = max_attempts
        self._open_stream()

    @property
    def object_key(self) -> str:
        return self._object_key

    @property
    def session(self) -> ReadSession:
        return self._session

    def _open_stream(self) -> None:
        session = self._session
        session.state = ReadState.OPENING
        position = self._start + session.offset
        ranged = session.offset > 0 or self._start > 0 or self._end is not None
        if ranged:
            assert self._end is None or position <= self._end, (
                f"requesting beyond end, start={self._start} "
                f"offset={session.offset} end={self._end}"
            )
        try:
            stream = self._client.get_object(
                bucket=self._bucket,
                object_key=self._object_key,
                start=position if ranged else None,
                end=self._end if ranged else None,
            )
        except ObjectNotFoundError as exc:
            raise ObjectNotFoundError(
                f"Blob object [{self._object_key}] not found: {exc}"
            ) from exc
        length = stream.content_length
        session.last_known_end = position + length if length is not None else None
        self._stream = stream
        session.state = ReadState.READING

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def readinto(self, buffer) -> int:
        self._ensure_open()
        view = memoryview(buffer).cast("B")
        if len(view) == 0:
            return 0
        session = self._session
        while True:
            if session.eof:
                return 0
            assert self._stream is not None
            try:
                chunk = self._stream.read(len(view))
            except RETRYABLE_READ_ERRORS as exc:
                self._reopen_stream_or_fail(exc)
                continue
            if not chunk:
                session.eof = True
                return 0
            size = len(chunk)
            view[:size] = chunk
            session.offset += size
            return size

    def _ensure_open(self) -> None:
        state = self._session.state
        if state is ReadState.CLOSED:
            raise IllegalStateError(
                f"using RetryingRangeReader for [{self._object_key}] after close"
            )
        if state is ReadState.FAILED:
            raise IllegalStateError(
                f"using RetryingRangeReader for [{self._object_key}] after it failed"
            )

    def _reopen_stream_or_fail(self, exc: BaseException) -> None:
        session = self._session
        position = self._start + session.offset
        if self.is_eof():
            # Every expected byte was delivered before the transport failed
            logger.debug(
                "read_failed_at_end key=%s offset=%s",
                self._object_key,
                position,
                exc_info=exc,
            )
            session.eof = True
            return
        if session.attempt >= self._max_attempts:
            logger.debug(
                "read_failed key=%s offset=%s attempt=%s max_attempts=%s giving_up",
                self._object_key,
                position,
                session.attempt,
                self._max_attempts,
                exc_info=exc,
            )
            for failure in session.failures:
                use_or_suppress(exc, failure)
            session.failures.append(exc)
            self._fail()
            raise exc
        logger.debug(
            "read_failed key=%s offset=%s attempt=%s max_attempts=%s retrying",
            self._object_key,
            position,
            session.attempt,
            self._max_attempts,
            exc_info=exc,
        )
        session.state = ReadState.RETRYING
        session.attempt += 1
        session.failures.append(exc)
        READ_RETRIES.inc()
        self._discard_stream()
        try:
            self._open_stream()
        except StorageTransportError as reopen_exc:
            self._reopen_stream_or_fail(reopen_exc)
        except BaseException:
            self._fail()
            raise

    def _fail(self) -> None:
        self._discard_stream()
        self._session.state = ReadState.FAILED

    def _discard_stream(self) -> None:
        stream = self._stream
        if stream is None:
            return
        self._maybe_abort(stream)
        self._stream = None
        try:
            stream.close()
        except Exception as exc:
            logger.debug("stream_close_failed key=%s", self._object_key, exc_info=exc)

    def _maybe_abort(self, stream: ObjectStream) -> None:
        if self.is_eof():
            return
        try:
            end = self._session.last_known_end
            if end is None or self._start + self._session.offset < end:
                stream.abort()
        except Exception as exc:
            logger.warning(
                "stream_abort_failed key=%s", self._object_key, exc_info=exc
            )

    def is_eof(self) -> bool:
        session = self._session
        return session.eof or self._start + session.offset == session.last_known_end

    def close(self) -> None:
        if self._session.state is ReadState.CLOSED:
            return
        stream = self._stream
        try:
            if stream is not None:
                self._maybe_abort(stream)
                stream.close()
        finally:
            self._session.state = ReadState.CLOSED
            self._stream = None
            super().close()

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        raise io.UnsupportedOperation("RetryingRangeReader does not support seeking")

    def tell(self) -> int:
        raise io.UnsupportedOperation("RetryingRangeReader does not support seeking")

    def truncate(self, size: int | None = None) -> int:
        raise io.UnsupportedOperation("RetryingRangeReader is read-only")
