"""
SQLAlchemy Table Models

Each record keeps the full serialized domain object in a JSON payload next to
the columns the store queries on and the version used for optimistic
concurrency.
"""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Column, DateTime, Integer, JSON, MetaData, String, UniqueConstraint
from sqlalchemy.orm import declarative_base

# Configure naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}

metadata = MetaData(naming_convention=convention)

Base = declarative_base(metadata=metadata)


class ModelBase(Base):
    """Base class for all record models."""

    __abstract__ = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
        }


class GameSessionRecord(ModelBase):
    __tablename__ = "game_sessions"

    id = Column(String(64), primary_key=True)
    game_id = Column(String(128), nullable=False, index=True)
    user_id = Column(String(128), nullable=False, index=True)
    status = Column(String(32), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    version = Column(Integer, nullable=False, default=0)
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class LearningProgressRecord(ModelBase):
    __tablename__ = "learning_progress"
    __table_args__ = (UniqueConstraint("user_id", "subject"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False, index=True)
    subject = Column(String(128), nullable=False)
    version = Column(Integer, nullable=False, default=0)
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class GameDefinitionRecord(ModelBase):
    __tablename__ = "game_definitions"

    id = Column(String(128), primary_key=True)
    type = Column(String(64), nullable=False, index=True)
    subject = Column(String(128), nullable=False)
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
