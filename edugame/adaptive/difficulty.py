"""
Adaptive Difficulty Decision Logic

Turns recent-performance signals into a difficulty recommendation. The AI
recommendation service is asked first; when it fails, times out or answers
with something unusable, a deterministic threshold rule decides instead.
Callers therefore always receive a valid recommendation.
"""

import asyncio
import enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from edugame.adaptive.ai_service import AIRecommendationService
from edugame.common.error_handling import (
    ExternalServiceError, ExternalServiceTimeoutError, retry
)
from edugame.common.logger import app_logger
from edugame.domain.game import clamp_difficulty
from edugame.domain.recommendation import (
    AdaptationRecommendation, DifficultySignals, RecommendationSource
)
from edugame.domain.session import QuestionResult

# Module logger
logger = app_logger.getChild("adaptive.difficulty")

RECENT_WINDOW = 10


@enum.unique
class Sensitivity(enum.Enum):
    """How eagerly difficulty reacts to performance."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, value: Union[str, 'Sensitivity', None]) -> 'Sensitivity':
        if isinstance(value, cls):
            return value
        if not value:
            return cls.MEDIUM
        try:
            return cls(str(value).lower())
        except ValueError:
            logger.warning(f"Unknown sensitivity {value!r}, using medium")
            return cls.MEDIUM


class AdjustmentDirection(enum.Enum):
    """Direction of a difficulty change."""
    INCREASE = "increase"
    DECREASE = "decrease"
    MAINTAIN = "maintain"

    @classmethod
    def between(cls, current: int, new: int) -> 'AdjustmentDirection':
        if new > current:
            return cls.INCREASE
        if new < current:
            return cls.DECREASE
        return cls.MAINTAIN


class Thresholds:
    """Accuracy and streak thresholds for one sensitivity."""

    def __init__(self, increase: float, decrease: float, streak_for_increase: int):
        self.increase = increase
        self.decrease = decrease
        self.streak_for_increase = streak_for_increase

    def __repr__(self) -> str:
        return (f"Thresholds(increase={self.increase}, decrease={self.decrease}, "
                f"streak_for_increase={self.streak_for_increase})")


THRESHOLDS: Dict[Sensitivity, Thresholds] = {
    Sensitivity.LOW: Thresholds(increase=0.90, decrease=0.40, streak_for_increase=10),
    Sensitivity.MEDIUM: Thresholds(increase=0.80, decrease=0.50, streak_for_increase=7),
    Sensitivity.HIGH: Thresholds(increase=0.70, decrease=0.60, streak_for_increase=5),
}


def _percent(ratio: float) -> str:
    return f"{round(ratio * 100):d}%"


def calculate_recent_stats(
    results: Sequence[QuestionResult],
    current_difficulty: int,
    window: int = RECENT_WINDOW
) -> DifficultySignals:
    """
    Derive difficulty signals from the latest session results.

    Args:
        results: Session results in submission order
        current_difficulty: Difficulty currently in effect
        window: Number of trailing results to consider

    Returns:
        Signals with accuracy as a percentage and response time in seconds
    """
    recent = list(results)[-window:] if window else list(results)
    if not recent:
        return DifficultySignals(accuracy=0, current_difficulty=clamp_difficulty(current_difficulty))

    correct = sum(1 for r in recent if r.is_correct)

    streak = 0
    for result in reversed(recent):
        if not result.is_correct:
            break
        streak += 1

    timed = [r.response_time_ms for r in recent if r.response_time_ms is not None]
    average_seconds = (sum(timed) / len(timed) / 1000.0) if timed else 0.0

    return DifficultySignals(
        accuracy=correct / len(recent) * 100,
        streak=streak,
        average_response_time=average_seconds,
        hints_used=sum(1 for r in recent if r.hint_used),
        current_difficulty=clamp_difficulty(current_difficulty),
        answered=len(recent)
    )


def decide_adjustment(
    signals: DifficultySignals,
    sensitivity: Union[str, Sensitivity] = Sensitivity.MEDIUM
) -> Tuple[AdjustmentDirection, str, float]:
    """
    Apply the threshold rule.

    Returns:
        Tuple of (direction, reason, confidence)
    """
    thresholds = THRESHOLDS[Sensitivity.parse(sensitivity)]
    accuracy = signals.accuracy_ratio

    if accuracy >= thresholds.increase:
        return (
            AdjustmentDirection.INCREASE,
            f"Recent accuracy {_percent(accuracy)} reached the {_percent(thresholds.increase)} increase threshold",
            accuracy
        )
    if signals.streak >= thresholds.streak_for_increase:
        return (
            AdjustmentDirection.INCREASE,
            f"{signals.streak} correct answers in a row reached the streak threshold of "
            f"{thresholds.streak_for_increase}",
            accuracy
        )
    if accuracy <= thresholds.decrease:
        return (
            AdjustmentDirection.DECREASE,
            f"Recent accuracy {_percent(accuracy)} is at or below the {_percent(thresholds.decrease)} "
            f"decrease threshold",
            1 - accuracy
        )
    return (
        AdjustmentDirection.MAINTAIN,
        f"Recent accuracy {_percent(accuracy)} is between the {_percent(thresholds.decrease)} and "
        f"{_percent(thresholds.increase)} thresholds",
        0.5
    )


def _suggestions(direction: AdjustmentDirection, signals: DifficultySignals) -> List[str]:
    suggestions = []
    if direction == AdjustmentDirection.DECREASE:
        suggestions.append("Review the explanations for missed questions")
        if signals.hints_used == 0:
            suggestions.append("Use hints when a question feels unfamiliar")
    elif direction == AdjustmentDirection.INCREASE:
        suggestions.append("Try questions that combine several skills")
    return suggestions


def fallback_recommendation(
    signals: DifficultySignals,
    sensitivity: Union[str, Sensitivity] = Sensitivity.MEDIUM
) -> AdaptationRecommendation:
    """Deterministic rule-based recommendation."""
    direction, reason, confidence = decide_adjustment(signals, sensitivity)
    current = signals.current_difficulty

    if direction == AdjustmentDirection.INCREASE:
        new_difficulty = clamp_difficulty(current + 1)
    elif direction == AdjustmentDirection.DECREASE:
        new_difficulty = clamp_difficulty(current - 1)
    else:
        new_difficulty = current

    return AdaptationRecommendation(
        new_difficulty=new_difficulty,
        reason=reason,
        confidence=max(0.0, min(1.0, confidence)),
        suggestions=_suggestions(direction, signals),
        source=RecommendationSource.FALLBACK
    )


def parse_ai_recommendation(payload: Any) -> AdaptationRecommendation:
    """
    Validate an AI service response.

    Raises:
        ExternalServiceError: If the payload is not a usable recommendation
    """
    if isinstance(payload, AdaptationRecommendation):
        return payload
    if not isinstance(payload, dict):
        raise ExternalServiceError(AIRecommendationService.name, f"unexpected payload type {type(payload).__name__}")

    data = dict(payload)
    if "new_difficulty" not in data and "recommended_difficulty" in data:
        data["new_difficulty"] = data.pop("recommended_difficulty")
    data.setdefault("source", RecommendationSource.AI)
    try:
        return AdaptationRecommendation.model_validate(data)
    except PydanticValidationError as e:
        raise ExternalServiceError(AIRecommendationService.name, "malformed recommendation", cause=e) from e


class DifficultyAdvisor:
    """
    Produces difficulty recommendations, preferring the AI service.

    ``recommend`` never raises: every AI failure is logged and replaced by
    the fallback rule.
    """

    def __init__(
        self,
        ai_service: Optional[AIRecommendationService] = None,
        sensitivity: Union[str, Sensitivity] = Sensitivity.MEDIUM,
        timeout_seconds: float = 10.0,
        max_retries: int = 1,
        retry_delay: float = 0.5
    ):
        self.ai_service = ai_service
        self.sensitivity = Sensitivity.parse(sensitivity)
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.stats = {"ai": 0, "fallback": 0, "failures": 0}

    async def _request(self, signals: DifficultySignals) -> AdaptationRecommendation:
        try:
            payload = await asyncio.wait_for(
                self.ai_service.recommend_difficulty(signals),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            raise ExternalServiceTimeoutError(AIRecommendationService.name, self.timeout_seconds) from None
        return parse_ai_recommendation(payload)

    async def recommend(
        self,
        signals: DifficultySignals,
        sensitivity: Union[str, Sensitivity, None] = None
    ) -> AdaptationRecommendation:
        """
        Recommend a difficulty for the given signals.

        Args:
            signals: Recent-performance signals
            sensitivity: Optional per-game override of the advisor's sensitivity

        Returns:
            The AI recommendation, or the fallback recommendation on any failure
        """
        effective = Sensitivity.parse(sensitivity) if sensitivity else self.sensitivity

        if self.ai_service is not None:
            request = retry(
                max_retries=self.max_retries,
                retry_delay=self.retry_delay,
                jitter=0.1
            )(self._request)
            try:
                recommendation = await request(signals)
                self.stats["ai"] += 1
                logger.info(
                    f"AI recommended difficulty {recommendation.new_difficulty} "
                    f"(from {signals.current_difficulty}): {recommendation.reason}"
                )
                return recommendation
            except Exception as e:
                self.stats["failures"] += 1
                logger.warning(f"AI difficulty recommendation failed, using fallback: {e}", exc_info=True)

        recommendation = fallback_recommendation(signals, effective)
        self.stats["fallback"] += 1
        logger.info(
            f"Fallback recommended difficulty {recommendation.new_difficulty} "
            f"(from {signals.current_difficulty}): {recommendation.reason}"
        )
        return recommendation
