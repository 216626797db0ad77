"""
Persistence Contract

The engine reads and writes sessions, progress and game definitions only
through this interface. Implementations must be read-after-write consistent
for the calling process and must enforce optimistic concurrency: a save is
accepted only when the stored version equals the object's version, after
which the version is incremented.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from edugame.domain.game import GameDefinition
from edugame.domain.progress import LearningProgress
from edugame.domain.session import GameSession


class Persistence(ABC):
    """Abstract persistence collaborator"""

    @abstractmethod
    async def load(self, session_id: str) -> Optional[GameSession]:
        """
        Load a session by ID.

        Args:
            session_id: The ID of the session to retrieve

        Returns:
            The session if found, None otherwise
        """
        pass

    @abstractmethod
    async def save(self, session: GameSession) -> GameSession:
        """
        Save a session, incrementing its version.

        Raises:
            StaleWriteError: If the stored session has a different version
        """
        pass

    @abstractmethod
    async def load_progress(self, user_id: str, subject: str) -> Optional[LearningProgress]:
        pass

    @abstractmethod
    async def save_progress(self, progress: LearningProgress) -> LearningProgress:
        """
        Save a progress record, incrementing its version.

        Raises:
            StaleWriteError: If the stored record has a different version
        """
        pass

    @abstractmethod
    async def find_progress(self, user_id: str) -> List[LearningProgress]:
        """Return every progress record of a user, ordered by subject."""
        pass

    @abstractmethod
    async def load_game_definition(self, game_id: str) -> Optional[GameDefinition]:
        pass

    @abstractmethod
    async def save_game_definition(self, definition: GameDefinition) -> GameDefinition:
        pass

    @abstractmethod
    async def list_game_definitions(self, subject: Optional[str] = None) -> List[GameDefinition]:
        """Return the stored game definitions, optionally for one subject, ordered by id."""
        pass

    @abstractmethod
    async def find_active_sessions(self, user_id: str, game_id: Optional[str] = None) -> List[GameSession]:
        """
        Find the user's in-progress or paused sessions.

        Args:
            user_id: The user whose sessions to find
            game_id: Optional game to restrict the search to

        Returns:
            Matching sessions, oldest first
        """
        pass

    async def close(self) -> None:
        """Release any held resources."""
        return None
