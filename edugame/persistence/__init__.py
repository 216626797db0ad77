"""
Persistence Module

The persistence contract the engine depends on, with in-memory and SQL
implementations.
"""

from edugame.persistence.base import Persistence
from edugame.persistence.memory import InMemoryPersistence
from edugame.persistence.sql import SQLPersistence

__all__ = ["Persistence", "InMemoryPersistence", "SQLPersistence"]
