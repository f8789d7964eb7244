from __future__ import annotations

import os
from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Any

from cosrepo.common.units import GB, MB, format_bytes, parse_bytes
from cosrepo.infra.storage.client import (
    MAX_PART_SIZE_USING_MULTIPART,
    MIN_PART_SIZE_USING_MULTIPART,
)

ENV_FILE = Path(".env")

MIN_CHUNK_SIZE = 1 * MB
MAX_CHUNK_SIZE = 1 * GB
DEFAULT_BUFFER_SIZE = 100 * MB
DEFAULT_MAX_READ_ATTEMPTS = 11


def _load_env_file() -> None:
    if not ENV_FILE.exists():
        return
    for raw_line in ENV_FILE.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y", "on"}


def _as_bytes(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return parse_bytes(value)


@dataclass(frozen=True)
class RepositorySettings:
    """Immutable snapshot of the repository and client configuration.

    A snapshot is never mutated after construction; reloading configuration
    builds a new instance (see ``StorageService.refresh``).
    """

    COS_BUCKET: str = ""
    COS_APP_ID: str = ""
    COS_REGION: str = ""
    COS_ENDPOINT_URL: str | None = None
    COS_ACCESS_KEY_ID: str | None = None
    COS_SECRET_ACCESS_KEY: str | None = None
    COS_BASE_PATH: str = ""
    COS_BUFFER_SIZE: int = DEFAULT_BUFFER_SIZE
    COS_CHUNK_SIZE: int = MAX_CHUNK_SIZE
    COS_COMPRESS: bool = False
    COS_MAX_READ_ATTEMPTS: int = DEFAULT_MAX_READ_ATTEMPTS
    COS_ADDRESSING_STYLE: str = "virtual"
    COS_USE_SSL: bool = True
    LOG_LEVEL: str = "INFO"

    def __post_init__(self) -> None:
        if not (
            MIN_PART_SIZE_USING_MULTIPART
            <= self.COS_BUFFER_SIZE
            <= MAX_PART_SIZE_USING_MULTIPART
        ):
            raise ValueError(
                f"COS_BUFFER_SIZE [{format_bytes(self.COS_BUFFER_SIZE)}] must be between "
                f"{format_bytes(MIN_PART_SIZE_USING_MULTIPART)} and "
                f"{format_bytes(MAX_PART_SIZE_USING_MULTIPART)}"
            )
        if not (MIN_CHUNK_SIZE <= self.COS_CHUNK_SIZE <= MAX_CHUNK_SIZE):
            raise ValueError(
                f"COS_CHUNK_SIZE [{format_bytes(self.COS_CHUNK_SIZE)}] must be between "
                f"{format_bytes(MIN_CHUNK_SIZE)} and {format_bytes(MAX_CHUNK_SIZE)}"
            )
        if self.COS_MAX_READ_ATTEMPTS < 1:
            raise ValueError("COS_MAX_READ_ATTEMPTS must be at least 1")
        addressing_style = self.COS_ADDRESSING_STYLE.strip().lower()
        if addressing_style not in {"auto", "path", "virtual"}:
            raise ValueError(
                "COS_ADDRESSING_STYLE must be one of 'auto', 'path' or 'virtual'"
            )

    def with_overrides(self, **changes: Any) -> "RepositorySettings":
        return replace(self, **changes)

    @classmethod
    def from_environment(cls) -> "RepositorySettings":
        _load_env_file()
        return cls(
            COS_BUCKET=os.environ.get("COS_BUCKET", cls.COS_BUCKET).strip(),
            COS_APP_ID=os.environ.get("COS_APP_ID", cls.COS_APP_ID).strip(),
            COS_REGION=os.environ.get("COS_REGION", cls.COS_REGION).strip(),
            COS_ENDPOINT_URL=os.environ.get("COS_ENDPOINT_URL") or None,
            COS_ACCESS_KEY_ID=os.environ.get("COS_ACCESS_KEY_ID"),
            COS_SECRET_ACCESS_KEY=os.environ.get("COS_SECRET_ACCESS_KEY"),
            COS_BASE_PATH=os.environ.get("COS_BASE_PATH", cls.COS_BASE_PATH).strip(),
            COS_BUFFER_SIZE=_as_bytes(
                os.environ.get("COS_BUFFER_SIZE"), cls.COS_BUFFER_SIZE
            ),
            COS_CHUNK_SIZE=_as_bytes(
                os.environ.get("COS_CHUNK_SIZE"), cls.COS_CHUNK_SIZE
            ),
            COS_COMPRESS=_as_bool(os.environ.get("COS_COMPRESS"), cls.COS_COMPRESS),
            COS_MAX_READ_ATTEMPTS=int(
                os.environ.get("COS_MAX_READ_ATTEMPTS", cls.COS_MAX_READ_ATTEMPTS)
            ),
            COS_ADDRESSING_STYLE=os.environ.get(
                "COS_ADDRESSING_STYLE", cls.COS_ADDRESSING_STYLE
            ),
            COS_USE_SSL=_as_bool(os.environ.get("COS_USE_SSL"), cls.COS_USE_SSL),
            LOG_LEVEL=os.environ.get("LOG_LEVEL", cls.LOG_LEVEL).upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> RepositorySettings:
    return RepositorySettings.from_environment()
