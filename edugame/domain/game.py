"""
Game Definition Models

Static game content supplied by the game definition source: questions,
scoring configuration and adaptive-difficulty configuration. The engine
treats these as read-only input once a game instance is initialized.
"""

import enum
import uuid
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

from edugame.common.error_handling import ValidationError
from edugame.common.serialization import SerializableMixin

MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5


def clamp_difficulty(value: int) -> int:
    """Clamp a difficulty value to the 1-5 range."""
    return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, int(value)))


class QuestionType(enum.Enum):
    """Question types supported by the quiz variant."""
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    TEXT = "text"


@dataclass
class Question(SerializableMixin):
    """A single question in a game's content."""

    __serializable_fields__ = [
        "id", "type", "question", "correct_answer", "options", "difficulty",
        "subject", "skill_area", "points", "hint", "explanation", "metadata"
    ]

    id: str
    type: QuestionType
    question: str
    correct_answer: Any
    options: List[Any] = field(default_factory=list)
    difficulty: int = 1
    subject: Optional[str] = None
    skill_area: Optional[str] = None
    points: Optional[int] = None
    hint: Optional[str] = None
    explanation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.id:
            self.id = str(uuid.uuid4())

        if isinstance(self.type, str):
            try:
                self.type = QuestionType(self.type)
            except ValueError:
                raise ValidationError(f"Invalid question type: {self.type}", field="type")

        if not self.question:
            raise ValidationError("Question text is required", field="question")

        self.difficulty = clamp_difficulty(self.difficulty)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Question':
        return cls(
            id=data.get("id", ""),
            type=data.get("type", QuestionType.MULTIPLE_CHOICE.value),
            question=data.get("question", ""),
            correct_answer=data.get("correct_answer"),
            options=list(data.get("options") or []),
            difficulty=data.get("difficulty", 1),
            subject=data.get("subject"),
            skill_area=data.get("skill_area"),
            points=data.get("points"),
            hint=data.get("hint"),
            explanation=data.get("explanation"),
            metadata=dict(data.get("metadata") or {})
        )

    def check_answer(self, answer: Any) -> bool:
        """
        Check a submitted answer.

        Multiple-choice and true/false questions use exact matching; free-text
        questions compare trimmed, case-insensitive strings.
        """
        if self.type == QuestionType.TEXT:
            if answer is None:
                return False
            return str(answer).strip().lower() == str(self.correct_answer).strip().lower()
        return answer == self.correct_answer


@dataclass
class AIAdaptationConfig(SerializableMixin):
    """Adaptive-difficulty settings for a game."""

    __serializable_fields__ = ["adaptive_difficulty", "personalized_hints", "sensitivity"]
    __optional_fields__ = ["adaptive_difficulty", "personalized_hints", "sensitivity"]

    adaptive_difficulty: bool = False
    personalized_hints: bool = False
    sensitivity: Optional[str] = None


@dataclass
class GameDefinition(SerializableMixin):
    """
    Static definition of a game.

    ``content`` holds the variant-specific material (for the quiz variant,
    ``questions`` and an optional ``question_bank``) and ``config`` the
    variant's scoring and behaviour switches.
    """

    __serializable_fields__ = [
        "id", "type", "title", "subject", "category", "difficulty",
        "config", "content", "ai_config", "metadata"
    ]

    id: str
    type: str
    title: str = ""
    subject: str = "general"
    category: Optional[str] = None
    difficulty: int = 1
    config: Dict[str, Any] = field(default_factory=dict)
    content: Dict[str, Any] = field(default_factory=dict)
    ai_config: AIAdaptationConfig = field(default_factory=AIAdaptationConfig)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.id:
            raise ValidationError("Game ID is required", field="id")
        if not self.type:
            raise ValidationError("Game type is required", field="type")
        if isinstance(self.ai_config, dict):
            self.ai_config = AIAdaptationConfig(**self.ai_config)
        self.difficulty = clamp_difficulty(self.difficulty)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GameDefinition':
        return cls(
            id=data["id"],
            type=data["type"],
            title=data.get("title", ""),
            subject=data.get("subject", "general"),
            category=data.get("category"),
            difficulty=data.get("difficulty", 1),
            config=dict(data.get("config") or {}),
            content=dict(data.get("content") or {}),
            ai_config=data.get("ai_config") or {},
            metadata=dict(data.get("metadata") or {})
        )
