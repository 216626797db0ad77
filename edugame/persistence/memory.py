"""
In-Memory Persistence

Stores serialized copies of sessions, progress records and game definitions
so callers never share mutable state with the store. Intended for
development, tests and single-process embedding.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from edugame.common.error_handling import StaleWriteError
from edugame.domain.game import GameDefinition
from edugame.domain.progress import LearningProgress
from edugame.domain.session import GameSession, SessionStatus
from edugame.persistence.base import Persistence

# Setup logging
logger = logging.getLogger("edugame.persistence.memory")


def _check_version(record_type: str, record_id: str, stored: Optional[Dict[str, Any]], version: int) -> None:
    if stored is not None and stored.get("version", 0) != version:
        raise StaleWriteError(record_type, record_id, version, stored.get("version", 0))


class InMemoryPersistence(Persistence):
    """
    In-memory implementation of the Persistence contract.
    """

    def __init__(self, definitions: Optional[List[GameDefinition]] = None):
        """
        Initialize the store with optional game definitions.

        Args:
            definitions: Optional list of game definitions to initialize with
        """
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._progress: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._definitions: Dict[str, Dict[str, Any]] = {}

        for definition in definitions or []:
            self._definitions[definition.id] = definition.to_dict()

    async def load(self, session_id: str) -> Optional[GameSession]:
        data = self._sessions.get(session_id)
        return GameSession.from_dict(data) if data else None

    async def save(self, session: GameSession) -> GameSession:
        _check_version("GameSession", session.id, self._sessions.get(session.id), session.version)
        session.version += 1
        self._sessions[session.id] = session.to_dict()
        logger.debug(f"Saved session {session.id} (version {session.version})")
        return session

    async def load_progress(self, user_id: str, subject: str) -> Optional[LearningProgress]:
        data = self._progress.get((user_id, subject))
        return LearningProgress.from_dict(data) if data else None

    async def save_progress(self, progress: LearningProgress) -> LearningProgress:
        key = (progress.user_id, progress.subject)
        _check_version("LearningProgress", f"{key[0]}/{key[1]}", self._progress.get(key), progress.version)
        progress.version += 1
        self._progress[key] = progress.to_dict()
        return progress

    async def find_progress(self, user_id: str) -> List[LearningProgress]:
        return [
            LearningProgress.from_dict(self._progress[key])
            for key in sorted(k for k in self._progress if k[0] == user_id)
        ]

    async def load_game_definition(self, game_id: str) -> Optional[GameDefinition]:
        data = self._definitions.get(game_id)
        return GameDefinition.from_dict(data) if data else None

    async def save_game_definition(self, definition: GameDefinition) -> GameDefinition:
        self._definitions[definition.id] = definition.to_dict()
        return definition

    async def list_game_definitions(self, subject: Optional[str] = None) -> List[GameDefinition]:
        return [
            GameDefinition.from_dict(data)
            for _, data in sorted(self._definitions.items())
            if subject is None or data.get("subject") == subject
        ]

    async def find_active_sessions(self, user_id: str, game_id: Optional[str] = None) -> List[GameSession]:
        active = (SessionStatus.IN_PROGRESS.value, SessionStatus.PAUSED.value)
        matches = [
            GameSession.from_dict(data) for data in self._sessions.values()
            if data["user_id"] == user_id
            and data["status"] in active
            and (game_id is None or data["game_id"] == game_id)
        ]
        return sorted(matches, key=lambda s: s.start_time)

    def clear(self) -> None:
        """
        Clear all stored records.

        This method is specific to the memory implementation and not part of
        the Persistence interface.
        """
        self._sessions.clear()
        self._progress.clear()
        self._definitions.clear()
