"""Database module for FleetDeck credential persistence."""

from fleetdeck.db.connection import (
    create_db_engine,
    get_database_url,
    init_db,
    make_session_factory,
    session_scope,
)
from fleetdeck.db.models import Base, BotLoginInfo

__all__ = [
    # Models
    "Base",
    "BotLoginInfo",
    # Connection
    "create_db_engine",
    "get_database_url",
    "init_db",
    "make_session_factory",
    "session_scope",
]
