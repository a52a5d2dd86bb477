"""Shared singletons for settings, repository, event bus and services.

The storage backend (memory or sqlite) is picked from app_config.yaml or the
STORAGE environment variable.
"""
from __future__ import annotations

import logging

from app.config import AppConfig, get_settings
from application.billing_service import BillingService
from application.device_service import DeviceService
from application.events import AsyncEventBus, Notifier
from application.reconciliation_service import ReconciliationService
from application.session_service import SessionService
from application.table_service import TableService
from infrastructure.memory_store import InMemoryVenueRepository
from infrastructure.repository import VenueRepository
from infrastructure.sqlite_repo import SQLiteVenueRepository

logger = logging.getLogger(__name__)

settings = get_settings()


def _create_repository() -> VenueRepository:
    backend = settings.database_backend
    if backend == "memory":
        return InMemoryVenueRepository()
    elif backend == "sqlite":
        return SQLiteVenueRepository()
    else:
        raise ValueError(f"Unknown database backend: {backend}. Supported: sqlite, memory")


repository = _create_repository()

event_bus = AsyncEventBus(maxsize=int(settings.notifications.get("queue_size", 1000)))
notifier = Notifier(event_bus, enabled=bool(settings.notifications.get("enabled", True)))

billing_service = BillingService(settings, repository)
device_service = DeviceService(settings, repository)
session_service = SessionService(settings, repository, billing_service, notifier)
reconciliation_service = ReconciliationService(settings, repository, billing_service, notifier)
table_service = TableService(
    settings, repository, billing_service, notifier, reconciliation_service
)

logger.info("Database backend: %s", settings.database_backend)


def apply_settings(new_settings: AppConfig) -> None:
    """Update global settings reference and refresh dependent singletons."""
    global settings
    settings = new_settings
    notifier.enabled = bool(new_settings.notifications.get("enabled", True))
    for service in (
        billing_service,
        device_service,
        session_service,
        reconciliation_service,
        table_service,
    ):
        service.update_config(new_settings)


def reload_settings_from_disk() -> AppConfig:
    """Force re-read of app_config.yaml and propagate changes."""
    get_settings.cache_clear()
    fresh = get_settings()
    apply_settings(fresh)
    return fresh
