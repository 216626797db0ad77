"""Value objects exchanged with the adaptive difficulty logic."""

import enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class RecommendationSource(enum.Enum):
    """Origin of an adaptation recommendation"""
    AI = "ai"
    FALLBACK = "fallback"
    MANUAL = "manual"


class DifficultySignals(BaseModel):
    """Recent-performance signals used to decide a difficulty change"""
    model_config = ConfigDict(frozen=True)

    accuracy: float = Field(..., ge=0, le=100, description="Recent accuracy as a percentage")
    streak: int = Field(0, ge=0, description="Trailing run of correct answers")
    average_response_time: float = Field(0.0, ge=0, description="Average response time in seconds")
    hints_used: int = Field(0, ge=0)
    current_difficulty: int = Field(..., ge=1, le=5)
    answered: int = Field(0, ge=0, description="Number of results the signals were derived from")

    @property
    def accuracy_ratio(self) -> float:
        return self.accuracy / 100.0


class AdaptationRecommendation(BaseModel):
    """A difficulty decision; immutable once produced"""
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    new_difficulty: int = Field(..., ge=1, le=5)
    reason: str
    confidence: float = Field(..., ge=0, le=1)
    suggestions: List[str] = Field(default_factory=list)
    source: RecommendationSource = RecommendationSource.AI
