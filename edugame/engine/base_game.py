"""
Game Runtime Contract

BaseGame is the polymorphic runtime every game variant implements. It owns
the precondition checks, session bookkeeping and event emission of each
capability and delegates the variant-specific part to ``on_*`` hooks.
"""

import datetime
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Union

from edugame.common.error_handling import (
    DataIntegrityError, GameCompletedError, GameNotRunningError, NotInitializedError
)
from edugame.common.logger import app_logger
from edugame.domain.game import GameDefinition
from edugame.domain.recommendation import AdaptationRecommendation
from edugame.domain.session import Checkpoint, GameSession, QuestionResult
from edugame.events.bus import EventBus
from edugame.events.names import GameEvents

# Module logger
logger = app_logger.getChild("engine.game")

DEFAULT_POINTS_PER_CORRECT = 10
DEFAULT_POINTS_PER_INCORRECT = 0


class BaseGame(ABC):
    """
    Base class for game runtimes.

    Each runtime has its own ``instance_id`` used as the lifecycle key, so
    two sessions of the same game never share lifecycle state.
    """

    def __init__(self, definition: GameDefinition):
        self.definition = definition
        self.id = definition.id
        self.type = definition.type
        self.title = definition.title
        self.subject = definition.subject
        self.difficulty = definition.difficulty
        self.config: Dict[str, Any] = dict(definition.config)
        self.content: Dict[str, Any] = dict(definition.content)
        self.ai_config = definition.ai_config
        self.instance_id = str(uuid.uuid4())

        self.session: Optional[GameSession] = None
        self.event_bus: Optional[EventBus] = None

        self.is_initialized = False
        self.is_started = False
        self.is_paused = False
        self.is_completed = False
        self.current_progress: Dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Variant hooks
    # ------------------------------------------------------------------

    async def on_initialize(self) -> None:
        pass

    async def on_start(self) -> None:
        pass

    async def on_pause(self) -> None:
        pass

    async def on_resume(self) -> None:
        pass

    async def on_complete(self, result: Dict[str, Any]) -> None:
        pass

    async def on_adapt_difficulty(self, recommendation: AdaptationRecommendation) -> bool:
        """Return False to refuse the recommendation."""
        return True

    async def on_restore_checkpoint(self, data: Dict[str, Any]) -> None:
        pass

    async def on_cleanup(self) -> None:
        pass

    @abstractmethod
    def knows_question(self, question_id: str) -> bool:
        """Whether the question belongs to this game's active content."""
        pass

    def checkpoint_state(self) -> Dict[str, Any]:
        """Variant state stored with every checkpoint."""
        return {}

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def _ensure_initialized(self, operation: str) -> None:
        if not self.is_initialized or self.session is None:
            raise NotInitializedError(self.id, operation)

    def _ensure_not_completed(self, operation: str) -> None:
        self._ensure_initialized(operation)
        if self.is_completed:
            raise GameCompletedError(self.id, operation)

    def _ensure_playable(self, operation: str) -> None:
        self._ensure_not_completed(operation)
        if not self.is_started:
            raise GameNotRunningError(self.id, operation, "not started")
        if self.is_paused:
            raise GameNotRunningError(self.id, operation, "paused")

    # ------------------------------------------------------------------
    # Lifecycle capabilities
    # ------------------------------------------------------------------

    async def initialize(self, session: GameSession, event_bus: EventBus) -> None:
        self.session = session
        self.event_bus = event_bus
        await self.on_initialize()
        self.is_initialized = True
        await self._emit(GameEvents.INITIALIZED, {"game_type": self.type})

    async def start(self) -> None:
        self._ensure_not_completed("start")
        if self.is_started:
            return
        await self.on_start()
        self.is_started = True
        await self._emit(GameEvents.STARTED, {"difficulty": self.difficulty})

    async def pause(self) -> None:
        self._ensure_not_completed("pause")
        if self.is_paused:
            return
        self.session.pause()
        self.is_paused = True
        await self.on_pause()
        await self._emit(GameEvents.PAUSED, {"progress": self.get_progress()})

    async def resume(self) -> None:
        self._ensure_not_completed("resume")
        if not self.is_paused:
            return
        self.session.resume()
        self.is_paused = False
        await self.on_resume()
        await self._emit(GameEvents.RESUMED, {})

    async def complete(self, result: Optional[Dict[str, Any]] = None) -> bool:
        """
        Complete the game and its session.

        Returns:
            False if the game was already completed
        """
        self._ensure_initialized("complete")
        if self.is_completed:
            return False

        self.is_completed = True
        self.is_paused = False
        final_result = dict(result or {})
        final_result.update({
            "score": self.session.score,
            "accuracy": self.session.performance.accuracy,
            "difficulty": self.difficulty,
            "final_progress": self.get_progress()
        })
        self.session.complete(final_result)
        final_result["performance"] = self.get_performance_metrics()

        await self.on_complete(final_result)
        await self._emit(GameEvents.COMPLETED, final_result)
        return True

    async def cleanup(self) -> None:
        await self.on_cleanup()
        self.session = None
        self.event_bus = None

    # ------------------------------------------------------------------
    # Gameplay capabilities
    # ------------------------------------------------------------------

    async def update_progress(self, partial: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_not_completed("update progress")
        self.session.update_progress(**partial)
        self.current_progress.update(partial)
        self.current_progress["timestamp"] = datetime.datetime.now().isoformat()
        await self._emit(GameEvents.PROGRESS, {"progress": dict(self.current_progress)})
        return self.current_progress

    def default_points(self, is_correct: bool) -> int:
        if is_correct:
            return int(self.config.get("points_per_correct", DEFAULT_POINTS_PER_CORRECT))
        return int(self.config.get("points_per_incorrect", DEFAULT_POINTS_PER_INCORRECT))

    async def record_answer(
        self,
        question_id: str,
        answer: Any,
        is_correct: bool,
        response_time_ms: Optional[int],
        points: Optional[int] = None,
        skill_area: Optional[str] = None,
        hint_used: bool = False,
        skipped: bool = False
    ) -> QuestionResult:
        """
        Record an answer on the session.

        Raises:
            DataIntegrityError: If the question is unknown or already answered;
                the session is left unmodified
        """
        self._ensure_playable("record an answer")

        if not self.knows_question(question_id):
            raise DataIntegrityError(
                "QuestionResult",
                f"question {question_id} is not part of game {self.id}",
                details={"question_id": question_id, "session_id": self.session.id}
            )
        progress = self.session.progress
        if question_id in progress.completed_questions or question_id in progress.skipped_questions:
            raise DataIntegrityError(
                "QuestionResult",
                f"question {question_id} was already answered",
                details={"question_id": question_id, "session_id": self.session.id}
            )

        result = QuestionResult(
            question_id=question_id,
            answer=answer,
            is_correct=bool(is_correct),
            response_time_ms=response_time_ms,
            points=self.default_points(is_correct) if points is None else int(points),
            skill_area=skill_area,
            hint_used=hint_used,
            skipped=skipped
        )
        self.session.record_question_result(result)

        await self._emit(GameEvents.ANSWER_RECORDED, {
            "result": result.to_dict(),
            "score": self.session.score,
            "streak": self.session.performance.streak_current
        })
        return result

    async def record_hint_used(self, hint_type: str, context: Optional[Dict[str, Any]] = None) -> None:
        self._ensure_playable("use a hint")
        self.session.record_hint_used()
        await self._emit(GameEvents.HINT_USED, {
            "hint": {"type": hint_type, "context": context or {}}
        })

    async def adapt_difficulty(self, recommendation: AdaptationRecommendation) -> bool:
        """
        Consider a difficulty recommendation.

        The recommendation is always appended to the session's adaptation
        trail; the difficulty only changes when the variant accepts it.

        Returns:
            True if the difficulty changed
        """
        self._ensure_not_completed("adapt difficulty")
        previous = self.difficulty
        target = recommendation.new_difficulty

        accepted = False
        if target != previous:
            accepted = bool(await self.on_adapt_difficulty(recommendation))

        adaptation = {
            "type": "difficulty_change",
            "from": previous,
            "to": target,
            "reason": recommendation.reason,
            "confidence": recommendation.confidence,
            "suggestions": list(recommendation.suggestions),
            "source": recommendation.source,
            "applied": accepted
        }
        if accepted:
            adaptation["state"] = self.checkpoint_state()
        self.session.record_ai_adaptation(adaptation)

        if not accepted:
            logger.info(f"Game {self.id} kept difficulty {previous} (recommended {target})")
            return False

        self.difficulty = target
        logger.info(f"Game {self.id} difficulty {previous} -> {target}: {recommendation.reason}")
        await self._emit(GameEvents.DIFFICULTY_CHANGED, {
            "from": previous,
            "to": target,
            "reason": recommendation.reason
        })
        return True

    async def save_checkpoint(self, data: Optional[Dict[str, Any]] = None) -> Checkpoint:
        self._ensure_not_completed("save a checkpoint")
        payload = {
            "game_id": self.id,
            "difficulty": self.difficulty,
            "progress": self.get_progress(),
            "state": self.checkpoint_state()
        }
        payload.update(data or {})
        checkpoint = self.session.save_checkpoint(payload)
        await self._emit(GameEvents.CHECKPOINT_SAVED, {"checkpoint": checkpoint.to_dict()})
        return checkpoint

    async def restore_from_checkpoint(self, checkpoint: Union[Checkpoint, Dict[str, Any]]) -> None:
        self._ensure_not_completed("restore a checkpoint")
        data = checkpoint.data if isinstance(checkpoint, Checkpoint) else dict(checkpoint)
        self.current_progress = dict(data.get("progress") or {})
        self.current_progress.pop("is_paused", None)
        self.current_progress.pop("is_completed", None)
        if "difficulty" in data:
            self.difficulty = int(data["difficulty"])
        await self.on_restore_checkpoint(data)
        await self._emit(GameEvents.CHECKPOINT_RESTORED, {"checkpoint": data})

    async def reapply_adaptation(self, adaptation: Dict[str, Any]) -> None:
        """
        Bring a reloaded runtime to the difficulty and variant state an
        applied adaptation left behind. Runs after any checkpoint restore so
        an older checkpoint cannot undo the change.
        """
        self._ensure_not_completed("reapply an adaptation")
        self.difficulty = int(adaptation["to"])
        await self.on_restore_checkpoint({"state": adaptation.get("state") or {}})
        logger.debug(f"Game {self.id} reapplied difficulty {self.difficulty}")

    async def handle_error(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
        logger.error(f"Game error in {self.id}: {error}", exc_info=error)
        await self._emit(GameEvents.ERROR, {
            "error": {"type": type(error).__name__, "message": str(error), "context": context or {}}
        })

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def get_progress(self) -> Dict[str, Any]:
        progress = dict(self.current_progress)
        progress.update({"is_paused": self.is_paused, "is_completed": self.is_completed})
        return progress

    def get_performance_metrics(self) -> Dict[str, Any]:
        if self.session is None:
            return {}
        return {
            "active_time_ms": self.session.active_play_time_ms,
            "paused_time_ms": self.session.paused_time_ms,
            "accuracy": self.session.performance.accuracy,
            "streak_best": self.session.performance.streak_best
        }

    async def _emit(self, name: str, data: Dict[str, Any]) -> None:
        if self.event_bus is None:
            return
        payload = {
            "game_id": self.id,
            "instance_id": self.instance_id,
            "session_id": self.session.id if self.session else None
        }
        payload.update(data)
        payload["timestamp"] = datetime.datetime.now().isoformat()
        await self.event_bus.publish(name, payload)
