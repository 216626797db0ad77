"""
AI Recommendation Service contract

The engine never talks to an LLM provider directly; it depends on this
narrow contract. Provider clients live outside the engine.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Union

from edugame.domain.recommendation import AdaptationRecommendation, DifficultySignals


class AIRecommendationService(ABC):
    """Abstract source of AI difficulty recommendations"""

    name = "ai-recommendation"

    @abstractmethod
    async def recommend_difficulty(
        self,
        signals: DifficultySignals
    ) -> Union[AdaptationRecommendation, Dict[str, Any]]:
        """
        Recommend a difficulty for the given performance signals.

        Implementations may return an AdaptationRecommendation or a plain
        mapping with ``new_difficulty`` (or ``recommended_difficulty``),
        ``reason``, ``confidence`` and ``suggestions``. Any exception is
        treated as a failed request by the caller.
        """
        pass
