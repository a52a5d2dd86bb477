import os
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

os.environ.setdefault("STORAGE", "memory")

from app.config import AppConfig  # noqa: E402
from application.billing_service import BillingService  # noqa: E402
from application.device_service import DeviceService  # noqa: E402
from application.events import AsyncEventBus, Notifier  # noqa: E402
from application.reconciliation_service import ReconciliationService  # noqa: E402
from application.session_service import SessionService  # noqa: E402
from application.table_service import TableService  # noqa: E402
from infrastructure.memory_store import InMemoryVenueRepository  # noqa: E402

START = datetime(2024, 3, 1, 18, 0, 0)

RAW_CONFIG = {
    "version": "test",
    "organization": "default",
    "billing": {
        "currency": "EGP",
        "default_rates": {"computer": 15, "playstation": {1: 20, 2: 20, 3: 25, 4: 30}},
    },
    "storage": {"database": "memory"},
    "reconciliation": {"after_table_operations": True, "interval_seconds": 0},
    "notifications": {"enabled": True, "queue_size": 100},
}


class FixedClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def config():
    return AppConfig(raw=RAW_CONFIG)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def repo():
    return InMemoryVenueRepository()


def build_services(config, repo, clock):
    event_bus = AsyncEventBus(maxsize=100)
    notifier = Notifier(event_bus)
    billing = BillingService(config, repo, clock=clock)
    reconciliation = ReconciliationService(config, repo, billing, notifier, clock=clock)
    return SimpleNamespace(
        config=config,
        repo=repo,
        clock=clock,
        event_bus=event_bus,
        notifier=notifier,
        billing=billing,
        devices=DeviceService(config, repo, clock=clock),
        sessions=SessionService(config, repo, billing, notifier, clock=clock),
        tables=TableService(config, repo, billing, notifier, reconciliation, clock=clock),
        reconciliation=reconciliation,
    )


@pytest.fixture
def services(config, repo, clock):
    return build_services(config, repo, clock)


@pytest.fixture
def ps_device(services):
    return services.devices.create_device(name="PS 1", device_type="playstation", number="1")


@pytest.fixture
def pc_device(services):
    return services.devices.create_device(name="PC 1", device_type="computer", number="1")


@pytest.fixture
def sqlite_repo():
    from sqlalchemy.pool import StaticPool
    from sqlmodel import create_engine

    from infrastructure.sqlite_repo import SQLiteVenueRepository

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield SQLiteVenueRepository(engine)
    engine.dispose()


@pytest.fixture
def sqlite_services(config, sqlite_repo, clock):
    return build_services(config, sqlite_repo, clock)
