from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

DELIMITER = "/"


@dataclass(frozen=True, slots=True)
class BlobPath:
    """Immutable sequence of path components addressing a blob container."""

    parts: tuple[str, ...] = ()

    EMPTY: ClassVar["BlobPath"]

    def add(self, name: str) -> "BlobPath":
        cleaned = name.strip(DELIMITER)
        if not cleaned:
            raise ValueError("path component must not be empty")
        return BlobPath(self.parts + (cleaned,))

    def parent(self) -> "BlobPath | None":
        if not self.parts:
            return None
        return BlobPath(self.parts[:-1])

    def build_as_string(self) -> str:
        """Key prefix for this path: empty at the root, otherwise ending in ``/``."""
        if not self.parts:
            return ""
        return DELIMITER.join(self.parts) + DELIMITER

    @classmethod
    def from_string(cls, value: str) -> "BlobPath":
        return cls(tuple(part for part in value.split(DELIMITER) if part))

    def __str__(self) -> str:
        return "[" + "][".join(self.parts) + "]"


BlobPath.EMPTY = BlobPath()
