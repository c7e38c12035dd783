"""
Database module for persistence.

Provides the SQLAlchemy session blob model and its repository.
"""

from brennerbot.db.models import Base, SessionRecord
from brennerbot.db.repository import (
    SessionRepository,
    create_engine,
    create_session_factory,
    init_db,
)

__all__ = [
    "Base",
    "SessionRecord",
    "SessionRepository",
    "create_engine",
    "create_session_factory",
    "init_db",
]
