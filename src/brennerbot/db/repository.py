"""
Repository pattern for database operations.

Provides a clean abstraction over SQLAlchemy for storing and loading
sessions.
"""

import logging

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from brennerbot.db.models import Base, SessionRecord
from brennerbot.loop.schemas import InputValidationError, Session

logger = logging.getLogger(__name__)


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for ``database_url``."""
    return create_async_engine(database_url, echo=echo)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to ``engine``."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


class SessionRepository:
    """Repository for session blobs."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize the repository.

        Args:
            session: SQLAlchemy async session.
        """
        self._session = session

    @staticmethod
    def _to_session(record: SessionRecord) -> Session:
        try:
            return Session.model_validate(record.data)
        except ValidationError as e:
            logger.error(f"Stored session {record.id} failed validation")
            raise InputValidationError("data", f"stored session {record.id!r} is malformed: {e}") from e

    async def get(self, session_id: str) -> Session | None:
        """
        Get a session by its ID.

        Args:
            session_id: The session's id.

        Returns:
            The session if found, None otherwise.
        """
        record = await self._session.get(SessionRecord, session_id)
        if record is None:
            return None
        return self._to_session(record)

    async def list_all(self, limit: int = 1000, offset: int = 0) -> list[Session]:
        """
        List stored sessions, most recently updated first.

        Args:
            limit: Maximum number to return.
            offset: Number to skip.

        Returns:
            List of sessions.
        """
        stmt = (
            select(SessionRecord)
            .order_by(SessionRecord.updated_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return [self._to_session(record) for record in result.scalars().all()]

    async def save(self, session: Session) -> SessionRecord:
        """
        Insert or update a session.

        Args:
            session: The session to store.

        Returns:
            The stored record.
        """
        data = session.model_dump(mode="json", by_alias=True)
        record = await self._session.get(SessionRecord, session.id)
        if record is None:
            record = SessionRecord(id=session.id, phase=session.phase.value, data=data)
            self._session.add(record)
            logger.debug(f"Inserting session {session.id}")
        else:
            record.phase = session.phase.value
            record.data = data
            logger.debug(f"Updating session {session.id}")
        await self._session.flush()
        await self._session.refresh(record)
        return record

    async def delete(self, session_id: str) -> bool:
        """
        Delete a session.

        Args:
            session_id: The session's id.

        Returns:
            True if a session was deleted.
        """
        record = await self._session.get(SessionRecord, session_id)
        if record is None:
            return False
        await self._session.delete(record)
        await self._session.flush()
        return True
