"""
Game Session Model

A GameSession is one user's single play-through of one game. It keeps the
status, timing, per-question results and the incrementally maintained
performance statistics of that attempt. Once a session is completed or
abandoned it no longer accepts mutations.
"""

import uuid
import enum
import datetime
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

from edugame.common.error_handling import SessionClosedError, ValidationError
from edugame.common.serialization import SerializableMixin, serialize, parse_datetime


class SessionStatus(enum.Enum):
    """Status of a game session."""
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


CLOSED_STATUSES = (SessionStatus.COMPLETED, SessionStatus.ABANDONED)


def _now() -> datetime.datetime:
    return datetime.datetime.now()


def _elapsed_ms(start: datetime.datetime, end: datetime.datetime) -> int:
    return int((end - start).total_seconds() * 1000)


@dataclass
class QuestionResult(SerializableMixin):
    """Outcome of a single question within a session."""

    __serializable_fields__ = [
        "question_id", "answer", "is_correct", "response_time_ms", "points",
        "skill_area", "hint_used", "skipped", "timestamp"
    ]

    question_id: str
    answer: Any
    is_correct: bool
    response_time_ms: Optional[int] = None
    points: int = 0
    skill_area: Optional[str] = None
    hint_used: bool = False
    skipped: bool = False
    timestamp: datetime.datetime = field(default_factory=_now)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QuestionResult':
        return cls(
            question_id=data["question_id"],
            answer=data.get("answer"),
            is_correct=bool(data.get("is_correct")),
            response_time_ms=data.get("response_time_ms"),
            points=int(data.get("points", 0)),
            skill_area=data.get("skill_area"),
            hint_used=bool(data.get("hint_used", False)),
            skipped=bool(data.get("skipped", False)),
            timestamp=parse_datetime(data.get("timestamp")) or _now()
        )


@dataclass
class PerformanceStats:
    """Rolling performance statistics, maintained on every recorded result."""
    accuracy: float = 0.0
    average_response_time_ms: float = 0.0
    total_correct: int = 0
    total_incorrect: int = 0
    total_skipped: int = 0
    streak_current: int = 0
    streak_best: int = 0
    hints_used: int = 0
    difficulty_changes: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_answered(self) -> int:
        return self.total_correct + self.total_incorrect

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accuracy": self.accuracy,
            "average_response_time_ms": self.average_response_time_ms,
            "total_correct": self.total_correct,
            "total_incorrect": self.total_incorrect,
            "total_skipped": self.total_skipped,
            "streak_current": self.streak_current,
            "streak_best": self.streak_best,
            "hints_used": self.hints_used,
            "difficulty_changes": serialize(self.difficulty_changes)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PerformanceStats':
        return cls(
            accuracy=float(data.get("accuracy", 0.0)),
            average_response_time_ms=float(data.get("average_response_time_ms", 0.0)),
            total_correct=int(data.get("total_correct", 0)),
            total_incorrect=int(data.get("total_incorrect", 0)),
            total_skipped=int(data.get("total_skipped", 0)),
            streak_current=int(data.get("streak_current", 0)),
            streak_best=int(data.get("streak_best", 0)),
            hints_used=int(data.get("hints_used", 0)),
            difficulty_changes=list(data.get("difficulty_changes", []))
        )


@dataclass
class Checkpoint:
    """Snapshot of gameplay state that a session can be resumed from."""
    data: Dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime.datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "timestamp": self.timestamp.isoformat(), "data": serialize(self.data)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Checkpoint':
        return cls(
            data=dict(data.get("data") or {}),
            id=data.get("id") or str(uuid.uuid4()),
            timestamp=parse_datetime(data.get("timestamp")) or _now()
        )


@dataclass
class SessionProgress:
    """Position within the game plus delivered/skipped question bookkeeping."""
    current_level: int = 1
    current_question: int = 0
    total_questions: int = 0
    completed_questions: List[str] = field(default_factory=list)
    skipped_questions: List[str] = field(default_factory=list)
    checkpoints: List[Checkpoint] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_level": self.current_level,
            "current_question": self.current_question,
            "total_questions": self.total_questions,
            "completed_questions": list(self.completed_questions),
            "skipped_questions": list(self.skipped_questions),
            "checkpoints": [c.to_dict() for c in self.checkpoints],
            "extra": serialize(self.extra)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionProgress':
        return cls(
            current_level=int(data.get("current_level", 1)),
            current_question=int(data.get("current_question", 0)),
            total_questions=int(data.get("total_questions", 0)),
            completed_questions=list(data.get("completed_questions", [])),
            skipped_questions=list(data.get("skipped_questions", [])),
            checkpoints=[Checkpoint.from_dict(c) for c in data.get("checkpoints", [])],
            extra=dict(data.get("extra") or {})
        )


@dataclass
class GameSession:
    """
    One attempt at one game by one user.

    Status is monotonic except for the paused <-> in_progress pair. Every
    mutation raises SessionClosedError once the session is completed or
    abandoned. ``version`` is maintained by the persistence layer for
    optimistic concurrency control.
    """

    game_id: str
    user_id: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: SessionStatus = SessionStatus.IN_PROGRESS
    start_time: datetime.datetime = field(default_factory=_now)
    end_time: Optional[datetime.datetime] = None
    paused_time_ms: int = 0
    pause_started_at: Optional[datetime.datetime] = None
    progress: SessionProgress = field(default_factory=SessionProgress)
    results: List[QuestionResult] = field(default_factory=list)
    score: int = 0
    performance: PerformanceStats = field(default_factory=PerformanceStats)
    ai_adaptations: List[Dict[str, Any]] = field(default_factory=list)
    events: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    version: int = 0

    def __post_init__(self):
        if not self.game_id:
            raise ValidationError("Game ID is required", field="game_id")
        if not self.user_id:
            raise ValidationError("User ID is required", field="user_id")
        if isinstance(self.status, str):
            try:
                self.status = SessionStatus(self.status)
            except ValueError:
                raise ValidationError(f"Invalid session status: {self.status}", field="status")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.status in (SessionStatus.IN_PROGRESS, SessionStatus.PAUSED)

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    def _ensure_open(self, operation: str) -> None:
        if self.is_closed:
            raise SessionClosedError(self.id, self.status.value, operation)

    def add_event(self, event_type: str, data: Optional[Dict[str, Any]] = None,
                  now: Optional[datetime.datetime] = None) -> None:
        self.events.append({"type": event_type, "timestamp": (now or _now()).isoformat(), "data": data or {}})

    def start(self, now: Optional[datetime.datetime] = None) -> None:
        """Mark the session as in progress and reset its start time."""
        self._ensure_open("start")
        self.status = SessionStatus.IN_PROGRESS
        self.start_time = now or _now()
        self.pause_started_at = None

    def pause(self, now: Optional[datetime.datetime] = None) -> bool:
        """
        Pause the session.

        Returns:
            True if the session was in progress and is now paused
        """
        self._ensure_open("pause")
        if self.status != SessionStatus.IN_PROGRESS:
            return False
        now = now or _now()
        self.status = SessionStatus.PAUSED
        self.pause_started_at = now
        self.add_event("session_paused", now=now)
        return True

    def resume(self, now: Optional[datetime.datetime] = None) -> bool:
        """
        Resume a paused session, adding the pause to the accumulated paused time.

        Returns:
            True if the session was paused and is now in progress
        """
        self._ensure_open("resume")
        if self.status != SessionStatus.PAUSED:
            return False
        now = now or _now()
        self._close_pause(now)
        self.status = SessionStatus.IN_PROGRESS
        self.add_event("session_resumed", now=now)
        return True

    def _close_pause(self, now: datetime.datetime) -> None:
        if self.pause_started_at is not None:
            self.paused_time_ms += max(0, _elapsed_ms(self.pause_started_at, now))
            self.pause_started_at = None

    def complete(self, final_result: Optional[Dict[str, Any]] = None,
                 now: Optional[datetime.datetime] = None) -> bool:
        """
        Complete the session.

        Completing an already completed session is a no-op.

        Args:
            final_result: Optional summary stored under metadata["final_result"]
            now: Completion time (defaults to now)

        Returns:
            True if this call completed the session, False if it was already completed
        """
        if self.status == SessionStatus.COMPLETED:
            return False
        self._ensure_open("complete")

        now = now or _now()
        self._close_pause(now)
        self.status = SessionStatus.COMPLETED
        self.end_time = now
        if final_result:
            self.metadata["final_result"] = serialize(final_result)
        self._calculate_final_performance()
        self.add_event("session_completed", now=now)
        return True

    def abandon(self, now: Optional[datetime.datetime] = None) -> None:
        self._ensure_open("abandon")
        now = now or _now()
        self._close_pause(now)
        self.status = SessionStatus.ABANDONED
        self.end_time = now
        self.add_event("session_abandoned", now=now)

    def _calculate_final_performance(self) -> None:
        self.metadata["total_play_time"] = self.active_play_time_ms // 1000
        self.metadata["final_score"] = self.score
        self.metadata["final_accuracy"] = self.performance.accuracy
        self.metadata["questions_attempted"] = len(self.results)

    # ------------------------------------------------------------------
    # Gameplay records
    # ------------------------------------------------------------------

    def update_progress(self, **partial: Any) -> None:
        """Merge known progress fields; unknown keys land in ``progress.extra``."""
        self._ensure_open("update progress")
        for key, value in partial.items():
            if key in ("current_level", "current_question", "total_questions"):
                setattr(self.progress, key, int(value))
            elif key in ("completed_questions", "skipped_questions"):
                setattr(self.progress, key, list(value))
            else:
                self.progress.extra[key] = value

    def record_question_result(self, result: QuestionResult) -> None:
        """
        Append a result and update score and performance statistics.

        All derived values are computed before any field is assigned, so the
        session either reflects the whole result or none of it.
        """
        self._ensure_open("record a question result")
        perf = self.performance

        total_correct = perf.total_correct
        total_incorrect = perf.total_incorrect
        if result.is_correct:
            total_correct += 1
            streak_current = perf.streak_current + 1
        else:
            total_incorrect += 1
            streak_current = 0
        streak_best = max(perf.streak_best, streak_current)
        answered = total_correct + total_incorrect
        accuracy = total_correct / answered if answered else 0.0

        results = self.results + [result]
        timed = [r.response_time_ms for r in results if r.response_time_ms is not None]
        average_response = sum(timed) / len(timed) if timed else 0.0

        self.results = results
        self.score += result.points
        perf.total_correct = total_correct
        perf.total_incorrect = total_incorrect
        perf.streak_current = streak_current
        perf.streak_best = streak_best
        perf.accuracy = accuracy
        perf.average_response_time_ms = average_response
        if result.skipped:
            perf.total_skipped += 1
            self.progress.skipped_questions.append(result.question_id)
        else:
            self.progress.completed_questions.append(result.question_id)

    def record_hint_used(self) -> None:
        """Count a hint; results only flag ``hint_used`` and are not counted again."""
        self._ensure_open("record a hint")
        self.performance.hints_used += 1

    def record_ai_adaptation(self, adaptation: Dict[str, Any]) -> Dict[str, Any]:
        """
        Append an adaptation to the audit trail.

        Applied difficulty changes are also recorded in
        ``performance.difficulty_changes``.
        """
        self._ensure_open("record an AI adaptation")
        entry = {"timestamp": _now().isoformat()}
        entry.update(serialize(adaptation))
        self.ai_adaptations.append(entry)

        if entry.get("type") == "difficulty_change" and entry.get("applied", True):
            self.performance.difficulty_changes.append({
                "from": entry.get("from"),
                "to": entry.get("to"),
                "reason": entry.get("reason"),
                "timestamp": entry["timestamp"]
            })
        return entry

    def save_checkpoint(self, data: Dict[str, Any]) -> Checkpoint:
        self._ensure_open("save a checkpoint")
        checkpoint = Checkpoint(data=serialize(data))
        self.progress.checkpoints.append(checkpoint)
        return checkpoint

    @property
    def last_checkpoint(self) -> Optional[Checkpoint]:
        return self.progress.checkpoints[-1] if self.progress.checkpoints else None

    # ------------------------------------------------------------------
    # Timing
    # ------------------------------------------------------------------

    @property
    def active_play_time_ms(self) -> int:
        """Elapsed time minus accumulated (and ongoing) pauses."""
        end = self.end_time or _now()
        paused = self.paused_time_ms
        if self.pause_started_at is not None and self.end_time is None:
            paused += max(0, _elapsed_ms(self.pause_started_at, end))
        return max(0, _elapsed_ms(self.start_time, end) - paused)

    def get_play_time(self) -> int:
        """Active play time in whole seconds."""
        return self.active_play_time_ms // 1000

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "game_id": self.game_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "paused_time_ms": self.paused_time_ms,
            "pause_started_at": self.pause_started_at.isoformat() if self.pause_started_at else None,
            "progress": self.progress.to_dict(),
            "results": [r.to_dict() for r in self.results],
            "score": self.score,
            "performance": self.performance.to_dict(),
            "ai_adaptations": serialize(self.ai_adaptations),
            "events": serialize(self.events),
            "metadata": serialize(self.metadata),
            "version": self.version
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GameSession':
        return cls(
            id=data["id"],
            game_id=data["game_id"],
            user_id=data["user_id"],
            status=data.get("status", SessionStatus.IN_PROGRESS.value),
            start_time=parse_datetime(data.get("start_time")) or _now(),
            end_time=parse_datetime(data.get("end_time")),
            paused_time_ms=int(data.get("paused_time_ms", 0)),
            pause_started_at=parse_datetime(data.get("pause_started_at")),
            progress=SessionProgress.from_dict(data.get("progress") or {}),
            results=[QuestionResult.from_dict(r) for r in data.get("results", [])],
            score=int(data.get("score", 0)),
            performance=PerformanceStats.from_dict(data.get("performance") or {}),
            ai_adaptations=list(data.get("ai_adaptations", [])),
            events=list(data.get("events", [])),
            metadata=dict(data.get("metadata") or {}),
            version=int(data.get("version", 0))
        )
