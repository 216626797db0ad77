"""
Learning Profile

Deterministic summary of a learner across subjects: an overall level,
learning style, pacing, content focus and the difficulty adjustment the
threshold rule suggests. Profiles are used to pick which games to offer
next and are stored with the learner's progress recommendations.
"""

import enum
import math
import datetime
from typing import Any, Dict, List, Optional, Sequence, Union
from dataclasses import dataclass, field

from edugame.adaptive.difficulty import (
    AdjustmentDirection, Sensitivity, calculate_recent_stats, decide_adjustment
)
from edugame.common.logger import app_logger
from edugame.common.serialization import serialize
from edugame.domain.game import GameDefinition, clamp_difficulty
from edugame.domain.progress import LearningProgress
from edugame.domain.recommendation import DifficultySignals
from edugame.domain.session import QuestionResult

# Module logger
logger = app_logger.getChild("adaptive.profile")

MIN_LEVEL = 1
MAX_LEVEL = 10
GAMES_FOR_FULL_EXPERIENCE = 100
MINUTES_FOR_FULL_TIME = 600
MAX_FOCUS_AREAS = 3


class LearningStyle(enum.Enum):
    """How a learner tends to work through questions."""
    QUICK = "quick-learner"
    CAREFUL = "careful-learner"
    BALANCED = "balanced-learner"

    @classmethod
    def detect(cls, average_response_time: float, accuracy: float, answered: int = 1) -> 'LearningStyle':
        """
        Classify a learner.

        Args:
            average_response_time: Recent average response time in seconds
            accuracy: Overall accuracy as a percentage
            answered: Number of recent answers the response time is based on
        """
        if answered and average_response_time < 10:
            return cls.QUICK
        if accuracy > 80:
            return cls.CAREFUL
        return cls.BALANCED


class Pacing(enum.Enum):
    """Suggested pace of question delivery."""
    SLOW = "slow"
    NORMAL = "normal"
    FAST = "fast"

    @classmethod
    def from_response_time(cls, average_response_time: float, answered: int = 1) -> 'Pacing':
        if not answered:
            return cls.NORMAL
        if average_response_time > 30:
            return cls.SLOW
        if average_response_time < 10:
            return cls.FAST
        return cls.NORMAL


@dataclass
class ContentFocus:
    """Share of upcoming content aimed at specific skill areas."""
    type: str = "balanced"
    areas: List[str] = field(default_factory=list)
    intensity: float = 0.5

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "areas": list(self.areas), "intensity": self.intensity}


@dataclass
class DifficultyAdjustment:
    direction: AdjustmentDirection = AdjustmentDirection.MAINTAIN
    reason: str = ""
    confidence: float = 0.5

    def to_dict(self) -> Dict[str, Any]:
        return {"direction": self.direction.value, "reason": self.reason, "confidence": self.confidence}


@dataclass
class LearningProfile:
    """Snapshot of a learner's state and the adaptations it suggests."""
    user_id: str
    level: int = MIN_LEVEL
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    learning_style: LearningStyle = LearningStyle.BALANCED
    pacing: Pacing = Pacing.NORMAL
    content_focus: ContentFocus = field(default_factory=ContentFocus)
    difficulty_adjustment: DifficultyAdjustment = field(default_factory=DifficultyAdjustment)
    overall: Dict[str, Any] = field(default_factory=dict)
    analysis_date: datetime.datetime = field(default_factory=datetime.datetime.now)

    @property
    def target_difficulty(self) -> int:
        return target_difficulty(self.level, self.difficulty_adjustment.direction)

    def to_dict(self) -> Dict[str, Any]:
        return serialize({
            "user_id": self.user_id,
            "analysis_date": self.analysis_date,
            "level": self.level,
            "strengths": self.strengths,
            "weaknesses": self.weaknesses,
            "learning_style": self.learning_style,
            "pacing": self.pacing,
            "content_focus": self.content_focus,
            "difficulty_adjustment": self.difficulty_adjustment,
            "target_difficulty": self.target_difficulty,
            "overall": self.overall
        })


def calculate_overall_stats(records: Sequence[LearningProgress]) -> Dict[str, Any]:
    """
    Aggregate a learner's progress records across subjects.

    Returns:
        Dict with ``total_subjects``, ``games_completed``, ``total_play_time``
        (minutes) and ``accuracy`` (mean of the per-subject accuracies, as a
        whole percentage)
    """
    games = sum(r.statistics.games_completed for r in records)
    seconds = sum(r.statistics.total_play_time for r in records)
    accuracy = sum(r.statistics.average_accuracy for r in records) / (len(records) or 1)
    return {
        "total_subjects": len(records),
        "games_completed": games,
        "total_play_time": round(seconds / 60),
        "accuracy": round(accuracy * 100)
    }


def calculate_overall_level(accuracy: float, games_completed: int, play_time_minutes: float) -> int:
    """
    Weighted 1-10 level: accuracy counts 50%, games completed 30% (full at
    100 games) and play time 20% (full at ten hours).
    """
    accuracy_score = max(0.0, min(accuracy / 100.0, 1.0))
    experience_score = min(games_completed / GAMES_FOR_FULL_EXPERIENCE, 1.0)
    time_score = min(play_time_minutes / MINUTES_FOR_FULL_TIME, 1.0)

    score = accuracy_score * 0.5 + experience_score * 0.3 + time_score * 0.2
    return max(MIN_LEVEL, min(MAX_LEVEL, math.ceil(round(score * 10, 6))))


def determine_content_focus(weaknesses: Sequence[str]) -> ContentFocus:
    if weaknesses:
        return ContentFocus(type="weakness-focused", areas=list(weaknesses)[:MAX_FOCUS_AREAS], intensity=0.7)
    return ContentFocus()


def _ranked_areas(records: Sequence[LearningProgress], attribute: str, weakest_first: bool) -> List[str]:
    """Union of the records' strong or weak areas, ordered by mastery."""
    pick = min if weakest_first else max
    mastery: Dict[str, float] = {}
    for record in records:
        for name in getattr(record, attribute):
            skill = record.skill_mastery.get(name)
            value = skill.mastery if skill else 0.0
            mastery[name] = pick(mastery[name], value) if name in mastery else value
    return sorted(mastery, key=lambda name: (mastery[name] if weakest_first else -mastery[name], name))


def build_learning_profile(
    user_id: str,
    records: Sequence[LearningProgress],
    recent_results: Sequence[QuestionResult] = (),
    sensitivity: Union[str, Sensitivity] = Sensitivity.MEDIUM,
    current_difficulty: int = 1
) -> LearningProfile:
    """
    Build a learner's profile from their progress records and the results of
    their latest session.

    Args:
        user_id: The learner
        records: The learner's progress records (any subjects)
        recent_results: Results the recent-performance signals are taken from
        sensitivity: Threshold table used for the difficulty adjustment
        current_difficulty: Difficulty the recent results were played at

    Returns:
        The learner's profile
    """
    overall = calculate_overall_stats(records)
    signals: DifficultySignals = calculate_recent_stats(recent_results, current_difficulty)
    weaknesses = _ranked_areas(records, "weak_areas", weakest_first=True)

    if signals.answered:
        direction, reason, confidence = decide_adjustment(signals, sensitivity)
    else:
        direction, reason, confidence = AdjustmentDirection.MAINTAIN, "No recent answers to adjust from", 0.5

    profile = LearningProfile(
        user_id=user_id,
        level=calculate_overall_level(overall["accuracy"], overall["games_completed"], overall["total_play_time"]),
        strengths=_ranked_areas(records, "strong_areas", weakest_first=False),
        weaknesses=weaknesses,
        learning_style=LearningStyle.detect(signals.average_response_time, overall["accuracy"], signals.answered),
        pacing=Pacing.from_response_time(signals.average_response_time, signals.answered),
        content_focus=determine_content_focus(weaknesses),
        difficulty_adjustment=DifficultyAdjustment(direction, reason, max(0.0, min(1.0, confidence))),
        overall=overall
    )
    logger.debug(
        f"Profile for {user_id}: level {profile.level}, {profile.learning_style.value}, "
        f"{profile.pacing.value} pacing, adjustment {direction.value}"
    )
    return profile


def target_difficulty(level: int, direction: AdjustmentDirection = AdjustmentDirection.MAINTAIN) -> int:
    """Game difficulty (1-5) matching a 1-10 level, shifted by the suggested adjustment."""
    offset = {AdjustmentDirection.INCREASE: 1, AdjustmentDirection.DECREASE: -1}.get(direction, 0)
    return clamp_difficulty(math.ceil(level / 2) + offset)


def is_difficulty_appropriate(game_difficulty: int, level: int,
                              direction: AdjustmentDirection = AdjustmentDirection.MAINTAIN) -> bool:
    return abs(game_difficulty - target_difficulty(level, direction)) <= 1


def addresses_weak_areas(definition: GameDefinition, weaknesses: Sequence[str]) -> bool:
    """True if the game lists one of the weak areas in ``metadata["skills"]``."""
    skills = (definition.metadata or {}).get("skills") or []
    return any(weakness in skills for weakness in weaknesses)


def filter_games_by_profile(definitions: Sequence[GameDefinition], profile: LearningProfile,
                            exclude: Optional[Sequence[str]] = None) -> List[GameDefinition]:
    """
    Keep the games whose difficulty suits the profile or that train one of
    its weak areas, preserving input order.
    """
    excluded = set(exclude or [])
    return [
        definition for definition in definitions
        if definition.id not in excluded
        and (
            is_difficulty_appropriate(definition.difficulty, profile.level, profile.difficulty_adjustment.direction)
            or addresses_weak_areas(definition, profile.weaknesses)
        )
    ]
