"""
SQL Persistence

SQLAlchemy async implementation of the Persistence contract. Saves use a
conditional UPDATE on the version column so concurrent writers cannot
silently overwrite each other.
"""

import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from edugame.common.error_handling import PersistenceError, StaleWriteError
from edugame.common.logger import app_logger, log_execution_time
from edugame.domain.game import GameDefinition
from edugame.domain.progress import LearningProgress
from edugame.domain.session import GameSession, SessionStatus
from edugame.persistence.base import Persistence
from edugame.persistence.models import (
    GameDefinitionRecord,
    GameSessionRecord,
    LearningProgressRecord,
    metadata,
)

# Setup module logger
logger = app_logger.getChild("persistence.sql")


def create_engine_for_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, sharing one connection for in-memory SQLite."""
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        return create_async_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False}
        )
    return create_async_engine(database_url, echo=echo)


class SQLPersistence(Persistence):
    """
    SQL-backed persistence.

    Call ``create_schema`` once before use and ``close`` on shutdown.
    """

    def __init__(self, database_url: str, echo: bool = False, engine: Optional[AsyncEngine] = None):
        self.database_url = database_url
        self._engine = engine or create_engine_for_url(database_url, echo=echo)
        self._session_factory = sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @log_execution_time(logger)
    async def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
            logger.info("Database schema created")
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to create database schema", cause=e)

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("Database connections closed")

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def load(self, session_id: str) -> Optional[GameSession]:
        try:
            async with self._session_factory() as session:
                record = await session.get(GameSessionRecord, session_id)
                return GameSession.from_dict(record.payload) if record else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load session {session_id}", cause=e)

    async def save(self, game_session: GameSession) -> GameSession:
        expected = game_session.version
        payload = game_session.to_dict()
        payload["version"] = expected + 1
        values = {
            "game_id": game_session.game_id,
            "user_id": game_session.user_id,
            "status": game_session.status.value,
            "start_time": game_session.start_time,
            "version": expected + 1,
            "payload": payload,
            "updated_at": datetime.datetime.now()
        }

        try:
            async with self._session_factory() as session:
                record = await session.get(GameSessionRecord, game_session.id)
                if record is None:
                    session.add(GameSessionRecord(id=game_session.id, **values))
                else:
                    await self._conditional_update(
                        session, GameSessionRecord, GameSessionRecord.id == game_session.id,
                        "GameSession", game_session.id, expected, record.version, values
                    )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save session {game_session.id}", cause=e)

        game_session.version = expected + 1
        logger.debug(f"Saved session {game_session.id} (version {game_session.version})")
        return game_session

    async def find_active_sessions(self, user_id: str, game_id: Optional[str] = None) -> List[GameSession]:
        query = (
            select(GameSessionRecord)
            .where(GameSessionRecord.user_id == user_id)
            .where(GameSessionRecord.status.in_([SessionStatus.IN_PROGRESS.value, SessionStatus.PAUSED.value]))
            .order_by(GameSessionRecord.start_time)
        )
        if game_id is not None:
            query = query.where(GameSessionRecord.game_id == game_id)

        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return [GameSession.from_dict(record.payload) for record in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to find active sessions for user {user_id}", cause=e)

    # ------------------------------------------------------------------
    # Learning progress
    # ------------------------------------------------------------------

    async def load_progress(self, user_id: str, subject: str) -> Optional[LearningProgress]:
        query = select(LearningProgressRecord).where(
            LearningProgressRecord.user_id == user_id,
            LearningProgressRecord.subject == subject
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                record = result.scalar_one_or_none()
                return LearningProgress.from_dict(record.payload) if record else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load progress for {user_id}/{subject}", cause=e)

    async def save_progress(self, progress: LearningProgress) -> LearningProgress:
        expected = progress.version
        payload = progress.to_dict()
        payload["version"] = expected + 1
        values = {
            "version": expected + 1,
            "payload": payload,
            "updated_at": datetime.datetime.now()
        }
        criteria = (
            (LearningProgressRecord.user_id == progress.user_id)
            & (LearningProgressRecord.subject == progress.subject)
        )
        record_id = f"{progress.user_id}/{progress.subject}"

        try:
            async with self._session_factory() as session:
                result = await session.execute(select(LearningProgressRecord).where(criteria))
                record = result.scalar_one_or_none()
                if record is None:
                    session.add(LearningProgressRecord(
                        user_id=progress.user_id,
                        subject=progress.subject,
                        **values
                    ))
                else:
                    await self._conditional_update(
                        session, LearningProgressRecord, criteria,
                        "LearningProgress", record_id, expected, record.version, values
                    )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save progress for {record_id}", cause=e)

        progress.version = expected + 1
        return progress

    async def find_progress(self, user_id: str) -> List[LearningProgress]:
        query = (
            select(LearningProgressRecord)
            .where(LearningProgressRecord.user_id == user_id)
            .order_by(LearningProgressRecord.subject)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return [LearningProgress.from_dict(record.payload) for record in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to find progress for user {user_id}", cause=e)

    # ------------------------------------------------------------------
    # Game definitions
    # ------------------------------------------------------------------

    async def load_game_definition(self, game_id: str) -> Optional[GameDefinition]:
        try:
            async with self._session_factory() as session:
                record = await session.get(GameDefinitionRecord, game_id)
                return GameDefinition.from_dict(record.payload) if record else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load game definition {game_id}", cause=e)

    async def save_game_definition(self, definition: GameDefinition) -> GameDefinition:
        try:
            async with self._session_factory() as session:
                record = await session.get(GameDefinitionRecord, definition.id)
                if record is None:
                    record = GameDefinitionRecord(id=definition.id)
                    session.add(record)
                record.type = definition.type
                record.subject = definition.subject
                record.payload = definition.to_dict()
                record.updated_at = datetime.datetime.now()
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save game definition {definition.id}", cause=e)
        return definition

    async def list_game_definitions(self, subject: Optional[str] = None) -> List[GameDefinition]:
        query = select(GameDefinitionRecord).order_by(GameDefinitionRecord.id)
        if subject is not None:
            query = query.where(GameDefinitionRecord.subject == subject)
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return [GameDefinition.from_dict(record.payload) for record in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to list game definitions", cause=e)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _conditional_update(
        session: AsyncSession,
        model: Any,
        criteria: Any,
        record_type: str,
        record_id: str,
        expected: int,
        stored: int,
        values: Dict[str, Any]
    ) -> None:
        if stored != expected:
            raise StaleWriteError(record_type, record_id, expected, stored)

        result = await session.execute(
            update(model)
            .where(criteria)
            .where(model.version == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            raise StaleWriteError(record_type, record_id, expected, stored + 1)
