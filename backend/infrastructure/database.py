"""SQLModel database configuration."""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session

from app.config import get_settings

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        url = get_settings().database_url
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        _engine = create_engine(url, echo=False, connect_args=connect_args)
    return _engine


def _ensure_session_columns(engine: Engine) -> None:
    """Add organization/notes columns if the session table pre-dates them."""
    inspector = inspect(engine)
    if "gamesessionmodel" not in inspector.get_table_names():
        return

    columns = {column["name"] for column in inspector.get_columns("gamesessionmodel")}
    patches = []
    if "organization_id" not in columns:
        patches.append(
            "ALTER TABLE gamesessionmodel ADD COLUMN organization_id VARCHAR DEFAULT 'default'"
        )
    if "notes" not in columns:
        patches.append("ALTER TABLE gamesessionmodel ADD COLUMN notes VARCHAR DEFAULT ''")

    if patches:
        with engine.begin() as conn:
            for statement in patches:
                conn.execute(text(statement))
        logger.info("Patched legacy session table with %d column(s)", len(patches))


def init_db(engine: Optional[Engine] = None) -> None:
    """Create tables if they do not exist and patch legacy schemas."""
    from infrastructure import models  # noqa: F401  # registers SQLModel metadata

    engine = engine or get_engine()
    _ensure_session_columns(engine)
    SQLModel.metadata.create_all(engine)


def SessionLocal(engine: Optional[Engine] = None) -> Session:
    return Session(engine or get_engine(), expire_on_commit=False)
