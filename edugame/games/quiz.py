"""
Quiz Game

The quiz variant of the game runtime: an ordered list of questions,
answered one at a time, with optional shuffling, skipping, hints and
difficulty-driven substitution of the not-yet-delivered questions.
"""

import random
import time
from typing import Any, Dict, List, Optional

from edugame.common.error_handling import GameCompletedError, PreconditionError
from edugame.common.logger import app_logger
from edugame.domain.game import GameDefinition, Question, QuestionType
from edugame.domain.recommendation import AdaptationRecommendation
from edugame.engine.base_game import BaseGame
from edugame.engine.plugins import GamePlugin, PluginContext
from edugame.engine.registry import GameTemplate
from edugame.events.bus import GameEvent
from edugame.events.names import GameEvents

# Module logger
logger = app_logger.getChild("games.quiz")

QUIZ_TYPE = "quiz"
MIN_ACCURACY_FOR_INCREASE = 0.5


def _to_question(value: Any) -> Question:
    return value if isinstance(value, Question) else Question.from_dict(value)


class QuizGame(BaseGame):
    """
    Quiz runtime.

    Config keys: ``randomize_questions``, ``points_per_correct`` (10),
    ``points_per_incorrect`` (0), ``allow_skip``, ``show_hints``.
    Content keys: ``questions`` and an optional ``question_bank`` of extra
    questions available when the difficulty changes.
    """

    def __init__(self, definition: GameDefinition, rng: Optional[random.Random] = None):
        super().__init__(definition)
        self.rng = rng or random.Random()
        self.questions: List[Question] = [_to_question(q) for q in self.content.get("questions", [])]
        self.question_bank: List[Question] = [_to_question(q) for q in self.content.get("question_bank", [])]
        self.current_question_index = 0
        self.question_shown_at: Optional[float] = None
        self.hinted_questions: set = set()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def current_question(self) -> Optional[Question]:
        if self.current_question_index < len(self.questions):
            return self.questions[self.current_question_index]
        return None

    def knows_question(self, question_id: str) -> bool:
        return any(q.id == question_id for q in self.questions)

    def calculate_accuracy(self) -> float:
        """Accuracy over the answers given so far in this session."""
        if self.session is None or not self.session.results:
            return 0.0
        correct = sum(1 for r in self.session.results if r.is_correct)
        return correct / len(self.session.results)

    def _all_questions(self) -> Dict[str, Question]:
        pool = {q.id: q for q in self.question_bank}
        pool.update({q.id: q for q in self.questions})
        return pool

    def _answered_ids(self) -> List[str]:
        return [r.question_id for r in self.session.results] if self.session else []

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    def shuffle_questions(self) -> None:
        """Uniform in-place Fisher-Yates shuffle."""
        for i in range(len(self.questions) - 1, 0, -1):
            j = self.rng.randint(0, i)
            self.questions[i], self.questions[j] = self.questions[j], self.questions[i]

    def _align_with_session(self) -> None:
        """Move already answered questions to the front and point past them."""
        answered = self._answered_ids()
        pool = self._all_questions()
        delivered = [pool[qid] for qid in answered if qid in pool]
        delivered_ids = {q.id for q in delivered}
        remaining = [q for q in self.questions if q.id not in delivered_ids]
        self.questions = delivered + remaining
        self.current_question_index = len(delivered)
        self._sync_progress()

    def _sync_progress(self) -> None:
        self.session.update_progress(
            total_questions=len(self.questions),
            current_question=self.current_question_index
        )
        self.current_progress.update({
            "total_questions": len(self.questions),
            "current_question": self.current_question_index,
            "score": self.session.score
        })

    async def on_initialize(self) -> None:
        if self.config.get("randomize_questions"):
            self.shuffle_questions()
        self._align_with_session()

    async def on_start(self) -> None:
        await self._show_current_question()

    async def on_resume(self) -> None:
        # Response time of the shown question excludes the pause
        self.question_shown_at = time.monotonic()

    async def _show_current_question(self) -> None:
        question = self.current_question
        if question is None:
            return
        self.question_shown_at = time.monotonic()
        await self._emit(GameEvents.QUESTION_SHOWN, {
            "question_index": self.current_question_index,
            "question_id": question.id,
            "question_type": question.type.value,
            "difficulty": question.difficulty
        })

    # ------------------------------------------------------------------
    # Gameplay
    # ------------------------------------------------------------------

    def _elapsed_ms(self) -> Optional[int]:
        if self.question_shown_at is None:
            return None
        return int((time.monotonic() - self.question_shown_at) * 1000)

    def _require_current_question(self, operation: str) -> Question:
        self._ensure_playable(operation)
        question = self.current_question
        if question is None:
            raise GameCompletedError(self.id, operation)
        return question

    async def submit_answer(self, answer: Any, response_time_ms: Optional[int] = None) -> Dict[str, Any]:
        """
        Answer the current question and advance.

        Returns:
            Dict with correctness, the correct answer, explanation, score and
            whether the quiz completed
        """
        question = self._require_current_question("submit an answer")
        is_correct = question.check_answer(answer)

        points = None
        if is_correct and question.points is not None:
            points = question.points

        await self.record_answer(
            question.id,
            answer,
            is_correct,
            response_time_ms if response_time_ms is not None else self._elapsed_ms(),
            points=points,
            skill_area=question.skill_area,
            hint_used=question.id in self.hinted_questions
        )
        completed = await self._advance()
        return {
            "question_id": question.id,
            "is_correct": is_correct,
            "correct_answer": question.correct_answer,
            "explanation": question.explanation,
            "score": self.session.score if self.session else None,
            "completed": completed
        }

    async def skip_question(self) -> Dict[str, Any]:
        """Skip the current question; a skip counts as an incorrect answer."""
        if not self.config.get("allow_skip", False):
            raise PreconditionError(f"Skipping is not allowed in game {self.id}",
                                    details={"game_id": self.id})
        question = self._require_current_question("skip a question")

        await self.record_answer(
            question.id,
            None,
            False,
            self._elapsed_ms(),
            skill_area=question.skill_area,
            hint_used=question.id in self.hinted_questions,
            skipped=True
        )
        completed = await self._advance()
        return {"question_id": question.id, "skipped": True, "completed": completed}

    async def use_hint(self) -> Optional[str]:
        """Reveal the hint for the current question."""
        if not self.config.get("show_hints", True):
            raise PreconditionError(f"Hints are disabled in game {self.id}", details={"game_id": self.id})
        question = self._require_current_question("use a hint")
        if question.id not in self.hinted_questions:
            self.hinted_questions.add(question.id)
            await self.record_hint_used("question_hint", {"question_id": question.id})
        return question.hint

    async def _advance(self) -> bool:
        self.current_question_index += 1
        await self.update_progress({
            "score": self.session.score,
            "answered_questions": len(self.session.results),
            "current_question": self.current_question_index
        })

        if self.current_question_index < len(self.questions):
            await self._show_current_question()
            return False

        await self.complete({
            "answers": len(self.session.results),
            "accuracy": self.calculate_accuracy()
        })
        return True

    # ------------------------------------------------------------------
    # Adaptation and checkpoints
    # ------------------------------------------------------------------

    async def on_adapt_difficulty(self, recommendation: AdaptationRecommendation) -> bool:
        accuracy = self.calculate_accuracy()
        target = recommendation.new_difficulty

        if target > self.difficulty and accuracy < MIN_ACCURACY_FOR_INCREASE:
            logger.info(
                f"Quiz {self.id}: refusing difficulty increase to {target} at accuracy {accuracy:.2f}"
            )
            return False

        keep = self.questions[:self.current_question_index + 1]
        slots = len(self.questions) - len(keep)
        if slots <= 0:
            return True

        excluded = {q.id for q in keep} | set(self._answered_ids())
        candidates: List[Question] = []
        seen = set()
        for question in self.questions[len(keep):] + self.question_bank:
            if question.id in excluded or question.id in seen:
                continue
            seen.add(question.id)
            if question.difficulty != target:
                continue
            if question.subject and question.subject != self.subject:
                continue
            candidates.append(question)

        if candidates:
            self.questions = keep + candidates[:slots]
            self._sync_progress()
            logger.debug(f"Quiz {self.id}: {len(candidates[:slots])} questions at difficulty {target} queued")
        else:
            logger.debug(f"Quiz {self.id}: no questions at difficulty {target}, queue unchanged")
        return True

    def checkpoint_state(self) -> Dict[str, Any]:
        return {
            "question_order": [q.id for q in self.questions],
            "current_question_index": self.current_question_index
        }

    async def on_restore_checkpoint(self, data: Dict[str, Any]) -> None:
        state = data.get("state") or {}
        order = state.get("question_order")
        if order:
            pool = self._all_questions()
            restored = [pool[qid] for qid in order if qid in pool]
            if restored:
                self.questions = restored
        self._align_with_session()


def validate_quiz(definition: GameDefinition) -> List[str]:
    """Return the content errors of a quiz definition."""
    errors = []
    if not definition.title or not definition.title.strip():
        errors.append("Game title is required")

    questions = definition.content.get("questions")
    if not isinstance(questions, list) or not questions:
        errors.append("Quiz must contain at least one question")
        return errors

    valid_types = {t.value for t in QuestionType}
    seen_ids = set()
    for index, q in enumerate(questions + list(definition.content.get("question_bank", [])), start=1):
        data = q.to_dict() if isinstance(q, Question) else dict(q)
        label = f"Question {index}"
        if not data.get("id"):
            errors.append(f"{label}: id is required")
        elif data["id"] in seen_ids:
            errors.append(f"{label}: duplicate id {data['id']}")
        seen_ids.add(data.get("id"))
        if data.get("type") not in valid_types:
            errors.append(f"{label}: type must be one of {sorted(valid_types)}")
        if not data.get("question"):
            errors.append(f"{label}: question text is required")
        if data.get("type") == QuestionType.MULTIPLE_CHOICE.value and len(data.get("options") or []) < 2:
            errors.append(f"{label}: at least two options are required")
        if data.get("correct_answer") is None:
            errors.append(f"{label}: correct answer is required")

    for key in ("points_per_correct", "points_per_incorrect"):
        if key in definition.config and not isinstance(definition.config[key], int):
            errors.append(f"Config {key} must be an integer")
    return errors


def _log_completed_quiz(event: GameEvent) -> None:
    if event.data.get("game_id") and event.data.get("score") is not None:
        logger.info(f"Quiz completed with score: {event.data['score']}")


async def _initialize_quiz_plugin(context: PluginContext) -> None:
    registry = context.registry
    registry.register_game_type(QUIZ_TYPE, QuizGame, {
        "name": "Quiz",
        "description": "Question and answer quiz with multiple-choice, true/false and text questions",
        "category": "assessment",
        "features": ["adaptive_difficulty", "hints", "skip", "checkpoints"],
        "validator": validate_quiz
    })
    registry.register_template(GameTemplate(
        id="basic-quiz",
        type_id=QUIZ_TYPE,
        name="Basic quiz",
        description="Basic multiple-choice quiz",
        default_definition={
            "difficulty": 1,
            "config": {
                "points_per_correct": 10,
                "points_per_incorrect": 0,
                "show_hints": True,
                "allow_skip": False,
                "randomize_questions": True
            }
        }
    ))
    registry.register_template(GameTemplate(
        id="math-quiz",
        type_id=QUIZ_TYPE,
        name="Math quiz",
        description="Arithmetic quiz",
        default_definition={
            "subject": "mathematics",
            "difficulty": 2,
            "config": {
                "points_per_correct": 10,
                "points_per_incorrect": -5,
                "show_hints": True,
                "allow_skip": True,
                "randomize_questions": True
            }
        }
    ))


QUIZ_PLUGIN = GamePlugin(
    id="quiz-game-plugin",
    name="Quiz Game Plugin",
    version="1.0.0",
    game_types=[QUIZ_TYPE],
    initialize=_initialize_quiz_plugin,
    hooks={GameEvents.COMPLETED: _log_completed_quiz}
)
