"""Shared fixtures for the engine test suite."""

import random
from typing import Any, Dict, List, Optional

import pytest

from edugame.config import Settings
from edugame.domain.game import GameDefinition
from edugame.domain.session import GameSession
from edugame.engine.engine import GameEngine
from edugame.events.bus import EventBus
from edugame.games.quiz import QuizGame
from edugame.persistence.memory import InMemoryPersistence


def _default_questions() -> List[Dict[str, Any]]:
    return [
        {
            "id": "q1",
            "type": "multiple-choice",
            "question": "What is 2 + 2?",
            "options": ["3", "4", "5"],
            "correct_answer": "4",
            "skill_area": "addition",
            "hint": "Count on your fingers"
        },
        {
            "id": "q2",
            "type": "text",
            "question": "What is the capital of France?",
            "correct_answer": "Paris",
            "skill_area": "geography"
        }
    ]


@pytest.fixture
def settings():
    """Settings isolated from the environment, with fast AI failure handling."""
    return Settings(
        _env_file=None,
        AI_RECOMMENDATION_TIMEOUT_SECONDS=0.2,
        AI_MAX_RETRIES=0,
        AI_RETRY_DELAY=0.0,
        ADAPTATION_INTERVAL_ANSWERS=2
    )


@pytest.fixture
def make_quiz_definition():
    """Factory for quiz definitions; two questions scored 10 / -5 by default."""
    def factory(
        game_id: str = "math-basics",
        questions: Optional[List[Dict[str, Any]]] = None,
        config: Optional[Dict[str, Any]] = None,
        **fields: Any
    ) -> GameDefinition:
        data = {
            "id": game_id,
            "type": "quiz",
            "title": "Math basics",
            "subject": "mathematics",
            "difficulty": 1,
            "config": {"points_per_correct": 10, "points_per_incorrect": -5, **(config or {})},
            "content": {"questions": questions if questions is not None else _default_questions()}
        }
        data.update(fields)
        return GameDefinition.from_dict(data)

    return factory


@pytest.fixture
def start_quiz():
    """Factory returning an initialized and started quiz runtime."""
    async def factory(definition: GameDefinition, bus: Optional[EventBus] = None,
                      user_id: str = "user-1", seed: int = 7) -> QuizGame:
        game = QuizGame(definition, rng=random.Random(seed))
        session = GameSession(game_id=definition.id, user_id=user_id)
        await game.initialize(session, bus or EventBus())
        await game.start()
        return game

    return factory


@pytest.fixture
def build_engine(settings):
    """Factory returning an initialized engine backed by in-memory persistence."""
    async def factory(definitions: Optional[List[GameDefinition]] = None,
                      persistence: Optional[InMemoryPersistence] = None,
                      ai_service=None, **engine_kwargs: Any) -> GameEngine:
        store = persistence or InMemoryPersistence(definitions or [])
        engine = GameEngine(store, settings=settings, ai_service=ai_service, **engine_kwargs)
        await engine.initialize()
        return engine

    return factory
