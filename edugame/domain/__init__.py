"""
Domain Module

Game definitions, session and learning-progress aggregates and the
difficulty recommendation value objects.
"""

from edugame.domain.game import AIAdaptationConfig, GameDefinition, Question, QuestionType
from edugame.domain.progress import LearningProgress, ProgressStatistics, SkillMastery
from edugame.domain.recommendation import AdaptationRecommendation, DifficultySignals, RecommendationSource
from edugame.domain.session import (
    Checkpoint, GameSession, PerformanceStats, QuestionResult, SessionProgress, SessionStatus
)

__all__ = [
    "AIAdaptationConfig",
    "GameDefinition",
    "Question",
    "QuestionType",
    "LearningProgress",
    "ProgressStatistics",
    "SkillMastery",
    "AdaptationRecommendation",
    "DifficultySignals",
    "RecommendationSource",
    "Checkpoint",
    "GameSession",
    "PerformanceStats",
    "QuestionResult",
    "SessionProgress",
    "SessionStatus",
]
