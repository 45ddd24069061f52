"""Database connection management for FleetDeck.

Engines are built on demand from the resolved database URL so the CLI
config, tests and library callers can each point at their own database.

Usage:
    from fleetdeck.db.connection import create_db_engine, init_db, make_session_factory

    engine = create_db_engine()
    init_db(engine)
    SessionLocal = make_session_factory(engine)
    with session_scope(SessionLocal) as db:
        ...
"""

import logging
import os
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fleetdeck.db.models import Base

logger = logging.getLogger(__name__)


def get_database_url(configured: str | None = None) -> str:
    """Resolve the database URL.

    Precedence:
    1. ``configured`` (storage.database_url from the config file)
    2. FLEETDECK_DATABASE_URL
    3. FLEETDECK_DB_PATH (converted to a sqlite URL)
    4. sqlite:///<platformdirs data dir>/fleetdeck.db
    """
    if configured and configured.strip():
        return configured.strip()

    database_url = os.environ.get("FLEETDECK_DATABASE_URL", "").strip()
    if database_url:
        return database_url

    db_path = os.environ.get("FLEETDECK_DB_PATH", "").strip()
    if db_path:
        if db_path.startswith("sqlite:"):
            return db_path
        return f"sqlite:///{db_path}"

    from fleetdeck.utils.paths import ensure_dirs_exist, get_default_db_path

    ensure_dirs_exist()
    return f"sqlite:///{get_default_db_path()}"


def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    """Enable foreign keys and WAL journaling on every SQLite connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA synchronous=NORMAL;")
    cursor.close()


def create_db_engine(url: str | None = None) -> Engine:
    """Create a sync engine for ``url`` (resolved via get_database_url if None)."""
    url = url or get_database_url()
    kwargs: dict[str, Any] = {
        "echo": os.environ.get("SQL_ECHO", "").lower() == "true",
    }
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise each session sees an empty DB.
            kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)
    if url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragma)
    return engine


def init_db(engine: Engine) -> None:
    """Create all tables. Idempotent."""
    Base.metadata.create_all(engine)
    logger.debug("Database initialized at %s", engine.url.render_as_string(hide_password=True))


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Build a session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(factory: Callable[[], Session]) -> Generator[Session, None, None]:
    """Commit on success, roll back on error, always close.

    Usage:
        with session_scope(SessionLocal) as db:
            db.add(row)
    """
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
