"""
Adaptive Difficulty Module

Turns recent performance into difficulty recommendations, preferring an AI
recommendation service and falling back to a deterministic threshold rule,
and summarizes learners into profiles used to pick their next games.
"""

from edugame.adaptive.ai_service import AIRecommendationService
from edugame.adaptive.difficulty import (
    DifficultyAdvisor, Sensitivity, calculate_recent_stats, fallback_recommendation
)
from edugame.adaptive.profile import (
    LearningProfile, LearningStyle, Pacing, build_learning_profile, filter_games_by_profile
)

__all__ = [
    "AIRecommendationService",
    "DifficultyAdvisor",
    "LearningProfile",
    "LearningStyle",
    "Pacing",
    "Sensitivity",
    "build_learning_profile",
    "calculate_recent_stats",
    "fallback_recommendation",
    "filter_games_by_profile",
]
