"""
Game Engine

The engine is the explicit context object of the runtime: it owns the event
bus, lifecycle manager, game registry, plugin system, difficulty advisor and
persistence collaborator, and exposes the session-level operations callers
drive gameplay with.

Every operation on a session runs under that session's lock and persists the
session before returning. Persistence errors propagate to the caller.
"""

import asyncio
from typing import Any, Dict, List, Optional

from edugame.adaptive.ai_service import AIRecommendationService
from edugame.adaptive.difficulty import DifficultyAdvisor, calculate_recent_stats
from edugame.adaptive.profile import LearningProfile, build_learning_profile, filter_games_by_profile
from edugame.common.error_handling import (
    EduGameError, GameNotFoundError, PreconditionError, SessionClosedError, SessionNotFoundError, log_error
)
from edugame.common.logger import LoggerAdapter, app_logger, log_execution_time, with_context
from edugame.config import Settings
from edugame.domain.game import GameDefinition
from edugame.domain.progress import LearningProgress
from edugame.domain.recommendation import AdaptationRecommendation
from edugame.domain.session import Checkpoint, GameSession, QuestionResult, SessionStatus
from edugame.engine.base_game import BaseGame
from edugame.engine.lifecycle import LifecycleManager, LifecycleState
from edugame.engine.plugins import GamePlugin, PluginSystem
from edugame.engine.registry import GameRegistry
from edugame.events.bus import EventBus, GameEvent
from edugame.events.names import GameEvents
from edugame.games.quiz import QUIZ_PLUGIN
from edugame.persistence.base import Persistence

# Module logger
logger = app_logger.getChild("engine")


class GameEngine:
    """
    Runtime context for game sessions.

    Construct one per process, call ``initialize`` before use and
    ``shutdown`` on teardown.
    """

    def __init__(
        self,
        persistence: Persistence,
        settings: Optional[Settings] = None,
        ai_service: Optional[AIRecommendationService] = None,
        plugins: Optional[List[GamePlugin]] = None
    ):
        self.settings = settings or Settings()
        self.persistence = persistence
        self.event_bus = EventBus(
            history_limit=self.settings.EVENT_HISTORY_LIMIT,
            default_timeout_ms=self.settings.EVENT_WAIT_TIMEOUT_MS
        )
        self.lifecycle = LifecycleManager(self.event_bus)
        self.registry = GameRegistry()
        self.plugins = PluginSystem()
        self.advisor = DifficultyAdvisor(
            ai_service,
            sensitivity=self.settings.DIFFICULTY_SENSITIVITY,
            timeout_seconds=self.settings.AI_RECOMMENDATION_TIMEOUT_SECONDS,
            max_retries=self.settings.AI_MAX_RETRIES,
            retry_delay=self.settings.AI_RETRY_DELAY
        )

        self._extra_plugins = list(plugins or [])
        self._games: Dict[str, BaseGame] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._unsubscribers: List[Any] = []
        self.is_initialized = False

    # ------------------------------------------------------------------
    # Engine lifecycle
    # ------------------------------------------------------------------

    @log_execution_time(logger)
    async def initialize(self) -> None:
        """Load the built-in and configured plugins and subscribe engine handlers."""
        if self.is_initialized:
            return

        for plugin in [QUIZ_PLUGIN] + self._extra_plugins:
            self.plugins.register(plugin)
        await self.plugins.initialize_all(self.registry, self.event_bus)
        self.plugins.bind_event_hooks(self.event_bus)

        self._unsubscribers.append(self.event_bus.subscribe(GameEvents.ERROR, self._on_game_error))
        self._unsubscribers.append(self.event_bus.subscribe(GameEvents.BUS_ERROR, self._on_bus_error))

        self.is_initialized = True
        logger.info(
            f"Game engine initialized with {len(self.registry.get_all_game_types())} game types "
            f"and {len(self.plugins.load_order)} plugins"
        )

    async def shutdown(self) -> None:
        """Pause and persist loaded sessions, release runtimes and reset the bus."""
        for session_id, game in list(self._games.items()):
            session = game.session
            try:
                if session is not None and session.status == SessionStatus.IN_PROGRESS:
                    await game.pause()
                    await self.persistence.save(session)
            except EduGameError as e:
                log_error(e, context={"session_id": session_id, "phase": "shutdown"}, log=logger)
            await game.cleanup()

        self._games.clear()
        self._locks.clear()
        self.lifecycle.cleanup()
        await self.plugins.cleanup()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.event_bus.reset()
        await self.persistence.close()
        self.is_initialized = False
        logger.info("Game engine shut down")

    def _on_game_error(self, event: GameEvent) -> None:
        logger.warning(f"Game error reported by {event.data.get('game_id')}: {event.data.get('error')}")

    def _on_bus_error(self, event: GameEvent) -> None:
        logger.warning(
            f"Event handler for {event.data.get('original_event')} failed: {event.data.get('error')}"
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_initialized(self) -> None:
        if not self.is_initialized:
            raise PreconditionError("Game engine is not initialized")

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def _release_lock(self, session_id: str) -> None:
        """Forget the lock of a session that will not be mutated again."""
        self._locks.pop(session_id, None)

    def _session_logger(self, session: GameSession) -> LoggerAdapter:
        return with_context(
            logger.name,
            session_id=session.id,
            game_id=session.game_id,
            user_id=session.user_id
        )

    async def _load_definition(self, game_id: str):
        definition = await self.persistence.load_game_definition(game_id)
        if definition is None:
            raise GameNotFoundError(game_id)
        return definition

    async def _activate(self, game: BaseGame, session: GameSession,
                        checkpoint: Optional[Checkpoint] = None,
                        adaptation: Optional[Dict[str, Any]] = None) -> BaseGame:
        """Drive a fresh runtime from unloaded to running for the session."""
        await self.lifecycle.load(game)
        try:
            await self.lifecycle.initialize(game, session)
            await game.initialize(session, self.event_bus)
            if checkpoint is not None:
                await game.restore_from_checkpoint(checkpoint)
            if adaptation is not None:
                await game.reapply_adaptation(adaptation)
            await self.lifecycle.start(game, session)
            await game.start()
        except Exception as e:
            await game.handle_error(e, {"phase": "activate", "session_id": session.id})
            if self.lifecycle.can_transition(game.instance_id, LifecycleState.ERROR):
                await self.lifecycle.fail(game, e)
            await self.lifecycle.unload(game)
            raise

        self._games[session.id] = game
        return game

    async def _rehydrate(self, session: GameSession) -> BaseGame:
        """Rebuild the runtime of a persisted active session."""
        definition = await self._load_definition(session.game_id)
        game = self.registry.create_game_instance(definition)

        applied = [a for a in session.ai_adaptations if a.get("applied")]
        await self._activate(game, session, session.last_checkpoint, applied[-1] if applied else None)
        if session.status == SessionStatus.PAUSED:
            await self.lifecycle.pause(game, session)
            await game.pause()

        self._session_logger(session).info(f"Rehydrated session {session.id}")
        return game

    async def _get_game(self, session_id: str, operation: str) -> BaseGame:
        """
        Return the loaded runtime of a session, rehydrating it if needed.

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionClosedError: If the session is completed or abandoned
        """
        game = self._games.get(session_id)
        if game is not None:
            return game

        session = await self.persistence.load(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.is_closed:
            raise SessionClosedError(session_id, session.status.value, operation)
        return await self._rehydrate(session)

    def _variant_action(self, game: BaseGame, action: str):
        handler = getattr(game, action, None)
        if handler is None:
            raise PreconditionError(
                f"Game type {game.type} does not support {action}",
                details={"game_id": game.id, "action": action}
            )
        return handler

    async def _run(self, game: BaseGame, action, *args, **kwargs) -> Any:
        """Run a runtime action; unexpected failures move the runtime to the error state."""
        try:
            return await action(*args, **kwargs)
        except EduGameError:
            raise
        except Exception as e:
            await game.handle_error(e, {"action": getattr(action, "__name__", str(action))})
            session = game.session
            if self.lifecycle.can_transition(game.instance_id, LifecycleState.ERROR):
                await self.lifecycle.fail(game, e)
            await self._unload(game)
            if session is not None:
                self._release_lock(session.id)
            raise

    async def _unload(self, game: BaseGame) -> None:
        session = game.session
        await self.lifecycle.unload(game)
        await game.cleanup()
        if session is not None:
            self._games.pop(session.id, None)

    async def _after_action(self, game: BaseGame, session: GameSession) -> Optional[Dict[str, Any]]:
        """Persist the session; finish the game if the action completed it."""
        if game.is_completed:
            return await self._finalize(game, session)

        await self._maybe_adapt(game)
        await self.persistence.save(session)
        return None

    async def _finalize(self, game: BaseGame, session: GameSession) -> Dict[str, Any]:
        await self.persistence.save(session)
        update = await self._apply_progress(game, session)
        await self.lifecycle.complete(game, session)
        await self._unload(game)
        self._session_logger(session).info(
            f"Session {session.id} completed with score {session.score}"
        )
        return update

    async def _apply_progress(self, game: BaseGame, session: GameSession) -> Dict[str, Any]:
        """Fold a completed session into the user's progress for the game's subject."""
        progress = await self.persistence.load_progress(session.user_id, game.subject)
        if progress is None:
            progress = LearningProgress(user_id=session.user_id, subject=game.subject)

        update = progress.update_from_game_result(session)
        if not update["applied"]:
            return update

        progress.update_weekly_progress(session.get_play_time() // 60)
        progress.record_monthly_progress()

        signals = calculate_recent_stats(session.results, game.difficulty)
        recommendation = await self.advisor.recommend(signals, game.ai_config.sensitivity)
        progress.add_recommendation({
            "type": "next_difficulty",
            "game_id": session.game_id,
            "session_id": session.id,
            **recommendation.model_dump(mode="json")
        })

        others = [p for p in await self.persistence.find_progress(progress.user_id) if p.subject != progress.subject]
        profile = build_learning_profile(
            progress.user_id,
            others + [progress],
            session.results,
            game.ai_config.sensitivity or self.advisor.sensitivity,
            game.difficulty
        )
        progress.add_recommendation({"type": "learning_profile", "session_id": session.id, **profile.to_dict()})

        await self.persistence.save_progress(progress)

        await self.event_bus.publish(GameEvents.PROGRESS_UPDATED, {
            "user_id": progress.user_id,
            "subject": progress.subject,
            "session_id": session.id,
            "xp_added": update["xp_added"],
            "experience": progress.experience,
            "level": progress.current_level
        })
        if update["level_up"]:
            await self.event_bus.publish(GameEvents.LEVEL_UP, {
                "user_id": progress.user_id,
                "subject": progress.subject,
                "old_level": update["old_level"],
                "new_level": update["new_level"]
            })
        return update

    async def _maybe_adapt(self, game: BaseGame) -> None:
        if not game.ai_config.adaptive_difficulty or game.is_completed:
            return
        answered = len(game.session.results)
        interval = self.settings.ADAPTATION_INTERVAL_ANSWERS
        if answered and answered % interval == 0:
            await self._adapt(game, None)

    async def _adapt(self, game: BaseGame,
                     recommendation: Optional[AdaptationRecommendation]) -> Dict[str, Any]:
        if recommendation is None:
            signals = calculate_recent_stats(game.session.results, game.difficulty)
            recommendation = await self.advisor.recommend(signals, game.ai_config.sensitivity)
        applied = await game.adapt_difficulty(recommendation)
        return {
            "applied": applied,
            "difficulty": game.difficulty,
            "recommendation": recommendation.model_dump(mode="json")
        }

    # ------------------------------------------------------------------
    # Session operations
    # ------------------------------------------------------------------

    async def start_game(self, game_id: str, user_id: str,
                         metadata: Optional[Dict[str, Any]] = None) -> GameSession:
        """
        Start a game for a user.

        An existing active session of the same user and game is resumed
        instead of creating a new one.

        Raises:
            GameNotFoundError: If no definition exists for the game
            ConfigurationError: If the definition is invalid for its type
        """
        self._ensure_initialized()

        existing = await self.persistence.find_active_sessions(user_id, game_id)
        if existing:
            session_id = existing[0].id
            logger.info(f"Resuming existing session {session_id} for user {user_id} in game {game_id}")
            return await self.resume_game(session_id)

        definition = await self._load_definition(game_id)
        game = self.registry.create_game_instance(definition)
        session = GameSession(game_id=game_id, user_id=user_id, metadata=dict(metadata or {}))

        async with self._lock(session.id):
            session.start()
            await self._activate(game, session)
            await self.persistence.save(session)

        self._session_logger(session).info(f"Started session {session.id} for game {game_id}")
        return session

    async def pause_game(self, session_id: str) -> GameSession:
        self._ensure_initialized()
        async with self._lock(session_id):
            game = await self._get_game(session_id, "pause")
            session = game.session
            if not game.is_paused:
                await self.lifecycle.pause(game, session)
                await self._run(game, game.pause)
            await self.persistence.save(session)
            return session

    async def resume_game(self, session_id: str) -> GameSession:
        """Resume a paused session, rehydrating it from persistence if it is not loaded."""
        self._ensure_initialized()
        async with self._lock(session_id):
            game = await self._get_game(session_id, "resume")
            session = game.session
            if game.is_paused:
                await self.lifecycle.resume(game, session)
                await self._run(game, game.resume)
            await self.persistence.save(session)
            return session

    async def submit_answer(self, session_id: str, answer: Any,
                            response_time_ms: Optional[int] = None) -> Dict[str, Any]:
        """
        Submit an answer to the session's current question.

        Returns:
            The answer outcome; includes a ``progress`` entry when the answer
            completed the game
        """
        self._ensure_initialized()
        async with self._lock(session_id):
            game = await self._get_game(session_id, "submit an answer")
            session = game.session
            result = await self._run(game, self._variant_action(game, "submit_answer"),
                                     answer, response_time_ms)
            update = await self._after_action(game, session)
            if update is not None:
                result["progress"] = update

        if "progress" in result:
            self._release_lock(session_id)
        return result

    async def skip_question(self, session_id: str) -> Dict[str, Any]:
        self._ensure_initialized()
        async with self._lock(session_id):
            game = await self._get_game(session_id, "skip a question")
            session = game.session
            result = await self._run(game, self._variant_action(game, "skip_question"))
            update = await self._after_action(game, session)
            if update is not None:
                result["progress"] = update

        if "progress" in result:
            self._release_lock(session_id)
        return result

    async def use_hint(self, session_id: str) -> Optional[str]:
        self._ensure_initialized()
        async with self._lock(session_id):
            game = await self._get_game(session_id, "use a hint")
            hint = await self._run(game, self._variant_action(game, "use_hint"))
            await self.persistence.save(game.session)
            return hint

    async def update_progress(self, session_id: str, partial: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_initialized()
        async with self._lock(session_id):
            game = await self._get_game(session_id, "update progress")
            progress = await self._run(game, game.update_progress, partial)
            await self.persistence.save(game.session)
            return dict(progress)

    async def save_checkpoint(self, session_id: str,
                              data: Optional[Dict[str, Any]] = None) -> Checkpoint:
        self._ensure_initialized()
        async with self._lock(session_id):
            game = await self._get_game(session_id, "save a checkpoint")
            checkpoint = await self._run(game, game.save_checkpoint, data)
            await self.persistence.save(game.session)
            return checkpoint

    async def adapt_difficulty(self, session_id: str,
                               recommendation: Optional[AdaptationRecommendation] = None) -> Dict[str, Any]:
        """
        Apply a difficulty recommendation to a session's runtime.

        Args:
            session_id: Session to adapt
            recommendation: Recommendation to apply; computed through the
                advisor from the session's recent results when omitted

        Returns:
            Dict with whether the change was applied, the resulting difficulty
            and the recommendation
        """
        self._ensure_initialized()
        async with self._lock(session_id):
            game = await self._get_game(session_id, "adapt difficulty")
            outcome = await self._run(game, self._adapt, game, recommendation)
            await self.persistence.save(game.session)
            return outcome

    async def complete_game(self, session_id: str,
                            result: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Complete a session and fold it into the user's progress.

        Completing an already completed session returns its stored final
        result without side effects.
        """
        self._ensure_initialized()
        async with self._lock(session_id):
            game = self._games.get(session_id)
            if game is None:
                session = await self.persistence.load(session_id)
                if session is None:
                    raise SessionNotFoundError(session_id)
                if session.status == SessionStatus.COMPLETED:
                    final_result = dict(session.metadata.get("final_result") or {})
                else:
                    game = await self._get_game(session_id, "complete")

            if game is not None:
                session = game.session
                await self._run(game, game.complete, result)
                final_result = dict(session.metadata.get("final_result") or {})
                final_result["progress"] = await self._finalize(game, session)

        self._release_lock(session_id)
        return final_result

    async def abandon_game(self, session_id: str) -> GameSession:
        """Abandon a session; abandoned sessions never update progress."""
        self._ensure_initialized()
        async with self._lock(session_id):
            game = await self._get_game(session_id, "abandon")
            session = game.session
            session.abandon()
            await self.event_bus.publish(GameEvents.ABANDONED, {
                "game_id": game.id,
                "instance_id": game.instance_id,
                "session_id": session.id,
                "user_id": session.user_id
            })
            await self.persistence.save(session)
            await self.lifecycle.transition(game, LifecycleState.ERROR)
            await self._unload(game)

        self._release_lock(session_id)
        self._session_logger(session).info(f"Session {session_id} abandoned")
        return session

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_active_session(self, session_id: str) -> Optional[GameSession]:
        game = self._games.get(session_id)
        if game is not None:
            return game.session
        session = await self.persistence.load(session_id)
        return session if session is not None and session.is_active else None

    async def get_user_active_sessions(self, user_id: str) -> List[GameSession]:
        sessions = await self.persistence.find_active_sessions(user_id)
        return [
            self._games[s.id].session if s.id in self._games else s
            for s in sessions
        ]

    async def get_progress(self, user_id: str, subject: str) -> Optional[LearningProgress]:
        return await self.persistence.load_progress(user_id, subject)

    async def get_learning_profile(self, user_id: str, session_id: Optional[str] = None) -> LearningProfile:
        """
        Profile a learner from all of their progress records.

        Args:
            user_id: The learner
            session_id: Optional session whose results supply the recent
                performance signals; without one the profile suggests no
                difficulty adjustment

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        results: List[QuestionResult] = []
        difficulty = 1
        if session_id is not None:
            game = self._games.get(session_id)
            session = game.session if game is not None else await self.persistence.load(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            results = list(session.results)
            applied = [a for a in session.ai_adaptations if a.get("applied")]
            if game is not None:
                difficulty = game.difficulty
            elif applied:
                difficulty = int(applied[-1]["to"])

        records = await self.persistence.find_progress(user_id)
        return build_learning_profile(user_id, records, results, self.advisor.sensitivity, difficulty)

    async def recommend_games(self, user_id: str, limit: int = 5, subject: Optional[str] = None,
                              session_id: Optional[str] = None) -> List[GameDefinition]:
        """
        Suggest game definitions for a learner: games whose difficulty suits
        the learner's profile or that train one of their weak areas. Games of
        unregistered types are skipped.
        """
        profile = await self.get_learning_profile(user_id, session_id)
        definitions = [
            d for d in await self.persistence.list_game_definitions(subject)
            if self.registry.has_game_type(d.type)
        ]
        suggested = filter_games_by_profile(definitions, profile)[:limit]
        logger.debug(f"Suggested {len(suggested)} of {len(definitions)} games to {user_id}")
        return suggested

    def get_engine_stats(self) -> Dict[str, Any]:
        return {
            "active_sessions": len(self._games),
            "session_locks": len(self._locks),
            "lifecycle": self.lifecycle.get_lifecycle_stats(),
            "registry": self.registry.get_registry_stats(),
            "plugins": self.plugins.get_plugin_stats(),
            "advisor": dict(self.advisor.stats),
            "events": self.event_bus.get_event_stats()
        }
