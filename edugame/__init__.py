"""
EduGame Engine

Game session lifecycle and adaptive difficulty engine for educational
quiz-style games.

The package provides:
1. An in-process event bus with bounded history
2. Session and learning-progress aggregates
3. A lifecycle state machine driving polymorphic game runtimes
4. Difficulty adaptation from AI recommendations with a rule-based fallback
5. Persistence adapters (in-memory and SQLAlchemy)
"""

from edugame.config import Settings, load_settings, setup_logging
from edugame.engine.engine import GameEngine
from edugame.persistence import InMemoryPersistence, Persistence, SQLPersistence

__version__ = "1.0.0"

__all__ = [
    "GameEngine",
    "Settings",
    "load_settings",
    "setup_logging",
    "Persistence",
    "InMemoryPersistence",
    "SQLPersistence",
]
