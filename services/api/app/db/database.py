from __future__ import annotations

import os
from pathlib import Path

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

_ENGINE: Engine | None = None
_ENGINE_URL: str | None = None
_SESSIONMAKER: sessionmaker | None = None


def _default_db_url() -> str:
    # Local-only default. Production must provide DATABASE_URL explicitly.
    return "sqlite+pysqlite:///.local/tablefront.db"


def _connect_args(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {}
    # Checkout calls run on worker threads, and concurrent gift card redemptions
    # must wait on the SQLite write lock rather than fail immediately.
    return {"check_same_thread": False, "timeout": 30}


def _ensure_sqlite_dir(url: str) -> None:
    database = make_url(url).database
    if url.startswith("sqlite") and database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


def get_engine() -> Engine:
    """Return a cached SQLAlchemy engine.

    The cache is keyed on DATABASE_URL so tests can point each case at its own file.
    """

    global _ENGINE, _ENGINE_URL, _SESSIONMAKER

    url = os.getenv("DATABASE_URL", _default_db_url())

    if _ENGINE is not None and _ENGINE_URL == url:
        return _ENGINE

    _ensure_sqlite_dir(url)
    _ENGINE = create_engine(
        url, future=True, pool_pre_ping=True, connect_args=_connect_args(url)
    )
    _ENGINE_URL = url
    _SESSIONMAKER = sessionmaker(bind=_ENGINE, class_=Session, autocommit=False, autoflush=False)
    return _ENGINE


def db_session() -> Session:
    """New session on the current engine. Callers own commit, rollback and close."""

    get_engine()
    assert _SESSIONMAKER is not None
    return _SESSIONMAKER()
