"""
Learning Progress Model

A LearningProgress is one user's longitudinal record for one subject:
experience and level, per-skill mastery, strengths and weaknesses, and
cumulative statistics aggregated from completed game sessions.
"""

import uuid
import datetime
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

from edugame.common.error_handling import PreconditionError, ValidationError
from edugame.common.serialization import serialize, parse_datetime, parse_date
from edugame.domain.session import GameSession, SessionStatus

XP_PER_LEVEL = 100
MASTERY_MIN_ATTEMPTS = 5
WEAK_THRESHOLD = 0.5
STRONG_THRESHOLD = 0.8
DEFAULT_WEEKLY_TARGET_MINUTES = 300


def _now() -> datetime.datetime:
    return datetime.datetime.now()


@dataclass
class SkillMastery:
    """Attempts and correct answers for one tagged skill."""
    name: str
    attempts: int = 0
    correct: int = 0

    @property
    def mastery(self) -> float:
        if self.attempts == 0:
            return 0.0
        return self.correct / self.attempts

    def record(self, is_correct: bool) -> None:
        self.attempts += 1
        if is_correct:
            self.correct += 1

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "attempts": self.attempts, "correct": self.correct, "mastery": self.mastery}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SkillMastery':
        return cls(name=data["name"], attempts=int(data.get("attempts", 0)), correct=int(data.get("correct", 0)))


@dataclass
class ProgressStatistics:
    """Cumulative statistics for a user and subject."""
    total_play_time: int = 0
    games_completed: int = 0
    questions_answered: int = 0
    correct_answers: int = 0
    average_accuracy: float = 0.0
    current_streak: int = 0
    longest_streak: int = 0
    last_streak_date: Optional[datetime.date] = None
    weekly_target_minutes: int = DEFAULT_WEEKLY_TARGET_MINUTES
    weekly_current_minutes: int = 0
    monthly_progress: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return serialize({
            "total_play_time": self.total_play_time,
            "games_completed": self.games_completed,
            "questions_answered": self.questions_answered,
            "correct_answers": self.correct_answers,
            "average_accuracy": self.average_accuracy,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "last_streak_date": self.last_streak_date,
            "weekly_target_minutes": self.weekly_target_minutes,
            "weekly_current_minutes": self.weekly_current_minutes,
            "monthly_progress": self.monthly_progress
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProgressStatistics':
        return cls(
            total_play_time=int(data.get("total_play_time", 0)),
            games_completed=int(data.get("games_completed", 0)),
            questions_answered=int(data.get("questions_answered", 0)),
            correct_answers=int(data.get("correct_answers", 0)),
            average_accuracy=float(data.get("average_accuracy", 0.0)),
            current_streak=int(data.get("current_streak", 0)),
            longest_streak=int(data.get("longest_streak", 0)),
            last_streak_date=parse_date(data.get("last_streak_date")),
            weekly_target_minutes=int(data.get("weekly_target_minutes", DEFAULT_WEEKLY_TARGET_MINUTES)),
            weekly_current_minutes=int(data.get("weekly_current_minutes", 0)),
            monthly_progress=list(data.get("monthly_progress", []))
        )


@dataclass
class LearningProgress:
    """
    Learning record for one user and subject.

    The level is always derived from experience; weak and strong areas are
    always derived from skill mastery. Both are recomputed on update and
    never edited directly.
    """

    user_id: str
    subject: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    current_level: int = 1
    experience: int = 0
    skill_mastery: Dict[str, SkillMastery] = field(default_factory=dict)
    weak_areas: List[str] = field(default_factory=list)
    strong_areas: List[str] = field(default_factory=list)
    completed_games: List[Dict[str, Any]] = field(default_factory=list)
    achievements: List[Dict[str, Any]] = field(default_factory=list)
    statistics: ProgressStatistics = field(default_factory=ProgressStatistics)
    learning_path: List[Dict[str, Any]] = field(default_factory=list)
    recommendations: List[Dict[str, Any]] = field(default_factory=list)
    last_activity: datetime.datetime = field(default_factory=_now)
    created_at: datetime.datetime = field(default_factory=_now)
    updated_at: datetime.datetime = field(default_factory=_now)
    version: int = 0

    def __post_init__(self):
        if not self.user_id:
            raise ValidationError("User ID is required", field="user_id")
        if not self.subject:
            raise ValidationError("Subject is required", field="subject")

    @property
    def key(self) -> tuple:
        return (self.user_id, self.subject)

    def has_session(self, session_id: str) -> bool:
        return any(g.get("session_id") == session_id for g in self.completed_games)

    def update_from_game_result(self, session: GameSession, today: Optional[datetime.date] = None) -> Dict[str, Any]:
        """
        Fold a completed session into this record.

        Args:
            session: A completed game session
            today: Date used for the daily streak (defaults to today)

        Returns:
            Dict describing the update, including level-up information

        Raises:
            PreconditionError: If the session is not completed
        """
        if session.status != SessionStatus.COMPLETED:
            raise PreconditionError(
                f"Session {session.id} is {session.status.value}; only completed sessions update progress",
                details={"session_id": session.id, "status": session.status.value}
            )

        if self.has_session(session.id):
            return {"applied": False, "xp_added": 0, "level_up": False}

        stats = self.statistics
        stats.games_completed += 1
        stats.total_play_time += session.get_play_time()
        stats.questions_answered += len(session.results)
        stats.correct_answers += session.performance.total_correct
        if stats.questions_answered > 0:
            stats.average_accuracy = stats.correct_answers / stats.questions_answered

        result = self.add_experience(session.score)
        result["applied"] = True

        self.completed_games.append({
            "game_id": session.game_id,
            "session_id": session.id,
            "completed_at": (session.end_time or _now()).isoformat(),
            "score": session.score,
            "accuracy": session.performance.accuracy
        })

        self.analyze_skills(session)
        self.update_streak(today)

        self.last_activity = _now()
        self.updated_at = self.last_activity
        return result

    def add_experience(self, points: int) -> Dict[str, Any]:
        """
        Add experience, clamping negative deltas to zero, and detect level-ups.

        Args:
            points: Experience to add

        Returns:
            Dict with the experience added and level up information
        """
        amount = max(0, int(points))
        self.experience += amount

        result = {"xp_added": amount, "level_up": False}
        new_level = self.calculate_level(self.experience)

        if new_level > self.current_level:
            result["level_up"] = True
            result["old_level"] = self.current_level
            result["new_level"] = new_level
            self.current_level = new_level
            self.add_achievement({"type": "level_up", "level": new_level})

        return result

    @staticmethod
    def calculate_level(experience: int) -> int:
        return experience // XP_PER_LEVEL + 1

    def analyze_skills(self, session: GameSession) -> None:
        """Replay a session's skill-tagged results into the mastery map."""
        for result in session.results:
            if not result.skill_area:
                continue
            skill = self.skill_mastery.get(result.skill_area)
            if skill is None:
                skill = SkillMastery(name=result.skill_area)
                self.skill_mastery[result.skill_area] = skill
            skill.record(result.is_correct)

        self.identify_strengths_and_weaknesses()

    def identify_strengths_and_weaknesses(self) -> None:
        qualified = [s for s in self.skill_mastery.values() if s.attempts >= MASTERY_MIN_ATTEMPTS]
        self.weak_areas = [s.name for s in qualified if s.mastery < WEAK_THRESHOLD]
        self.strong_areas = [s.name for s in qualified if s.mastery >= STRONG_THRESHOLD]

    def update_streak(self, today: Optional[datetime.date] = None) -> None:
        """
        Update the daily activity streak.

        Activity on consecutive days extends the streak; a gap resets it to 1;
        repeated activity on the same day changes nothing.
        """
        today = today or datetime.date.today()
        stats = self.statistics
        last = stats.last_streak_date

        if last == today:
            return

        if last == today - datetime.timedelta(days=1):
            stats.current_streak += 1
        else:
            stats.current_streak = 1

        stats.last_streak_date = today
        stats.longest_streak = max(stats.longest_streak, stats.current_streak)

    def update_weekly_progress(self, minutes: int) -> None:
        self.statistics.weekly_current_minutes += minutes

    def reset_weekly_goals(self) -> None:
        self.statistics.weekly_current_minutes = 0

    def record_monthly_progress(self, now: Optional[datetime.datetime] = None) -> Dict[str, Any]:
        """Upsert the snapshot for the current year-month."""
        month = (now or _now()).strftime("%Y-%m")
        snapshot = {
            "month": month,
            "play_time": self.statistics.total_play_time,
            "games_completed": self.statistics.games_completed,
            "accuracy": self.statistics.average_accuracy,
            "level": self.current_level
        }

        monthly = self.statistics.monthly_progress
        for index, existing in enumerate(monthly):
            if existing.get("month") == month:
                monthly[index] = snapshot
                break
        else:
            monthly.append(snapshot)
        return snapshot

    def add_achievement(self, achievement: Dict[str, Any]) -> Dict[str, Any]:
        entry = {"id": str(uuid.uuid4()), **serialize(achievement), "unlocked_at": _now().isoformat()}
        self.achievements.append(entry)
        return entry

    def add_recommendation(self, recommendation: Dict[str, Any]) -> Dict[str, Any]:
        entry = {"id": str(uuid.uuid4()), **serialize(recommendation), "created_at": _now().isoformat()}
        self.recommendations.append(entry)
        return entry

    def add_to_learning_path(self, item: Dict[str, Any]) -> Dict[str, Any]:
        entry = {"id": str(uuid.uuid4()), **serialize(item), "added_at": _now().isoformat()}
        self.learning_path.append(entry)
        return entry

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "subject": self.subject,
            "current_level": self.current_level,
            "experience": self.experience,
            "skill_mastery": [s.to_dict() for s in self.skill_mastery.values()],
            "weak_areas": list(self.weak_areas),
            "strong_areas": list(self.strong_areas),
            "completed_games": serialize(self.completed_games),
            "achievements": serialize(self.achievements),
            "statistics": self.statistics.to_dict(),
            "learning_path": serialize(self.learning_path),
            "recommendations": serialize(self.recommendations),
            "last_activity": self.last_activity.isoformat(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "version": self.version
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LearningProgress':
        skills = [SkillMastery.from_dict(s) for s in data.get("skill_mastery", [])]
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            subject=data["subject"],
            current_level=int(data.get("current_level", 1)),
            experience=int(data.get("experience", 0)),
            skill_mastery={s.name: s for s in skills},
            weak_areas=list(data.get("weak_areas", [])),
            strong_areas=list(data.get("strong_areas", [])),
            completed_games=list(data.get("completed_games", [])),
            achievements=list(data.get("achievements", [])),
            statistics=ProgressStatistics.from_dict(data.get("statistics") or {}),
            learning_path=list(data.get("learning_path", [])),
            recommendations=list(data.get("recommendations", [])),
            last_activity=parse_datetime(data.get("last_activity")) or _now(),
            created_at=parse_datetime(data.get("created_at")) or _now(),
            updated_at=parse_datetime(data.get("updated_at")) or _now(),
            version=int(data.get("version", 0))
        )
