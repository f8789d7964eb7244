from __future__ import annotations

from cosrepo.common.config import RepositorySettings, get_settings
from cosrepo.common.logging import setup_logging
from cosrepo.repository import CosRepository
from cosrepo.service import StorageService


def create_repository(
    settings: RepositorySettings | None = None,
    *,
    service: StorageService | None = None,
) -> CosRepository:
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)
    service = service or StorageService(settings)
    return CosRepository(service, settings)
