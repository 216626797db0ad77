"""
Game Lifecycle Management

Gatekeeps every state change of a loaded game instance against a fixed
transition table and runs before/after hooks around each change.

Hooks are observers: a failing hook is logged and never aborts the
transition it belongs to.
"""

import enum
import inspect
from typing import Any, Callable, Dict, List, Optional, Sequence

from edugame.common.error_handling import InvalidTransitionError
from edugame.common.logger import app_logger
from edugame.events.bus import EventBus, GameEvent
from edugame.events.names import GameEvents

# Module logger
logger = app_logger.getChild("engine.lifecycle")

Hook = Callable[..., Any]


class LifecycleState(enum.Enum):
    """Governed stages of a loaded game instance."""
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    STARTING = "starting"
    RUNNING = "running"
    PAUSED = "paused"
    RESUMING = "resuming"
    COMPLETING = "completing"
    COMPLETED = "completed"
    ERROR = "error"


S = LifecycleState

TRANSITIONS: Dict[LifecycleState, frozenset] = {
    S.UNLOADED: frozenset({S.LOADING}),
    S.LOADING: frozenset({S.LOADED, S.ERROR}),
    S.LOADED: frozenset({S.INITIALIZING, S.UNLOADED}),
    S.INITIALIZING: frozenset({S.INITIALIZED, S.ERROR}),
    S.INITIALIZED: frozenset({S.STARTING, S.UNLOADED}),
    S.STARTING: frozenset({S.RUNNING, S.ERROR}),
    S.RUNNING: frozenset({S.PAUSED, S.COMPLETING, S.ERROR}),
    S.PAUSED: frozenset({S.RESUMING, S.COMPLETING, S.ERROR}),
    S.RESUMING: frozenset({S.RUNNING, S.ERROR}),
    S.COMPLETING: frozenset({S.COMPLETED, S.ERROR}),
    S.COMPLETED: frozenset({S.UNLOADED}),
    S.ERROR: frozenset({S.UNLOADED}),
}


def _instance_id(instance: Any) -> str:
    return getattr(instance, "instance_id", None) or getattr(instance, "id")


class LifecycleManager:
    """
    Tracks the lifecycle state of every loaded game instance.

    States are keyed by the runtime's ``instance_id``; ids that were never
    seen are in the ``unloaded`` state.
    """

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus
        self._hooks: Dict[str, List[Hook]] = {}
        self._states: Dict[str, LifecycleState] = {}

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def add_hook(self, name: str, hook: Hook) -> None:
        """
        Register a hook.

        Transition hooks are named ``before_<state>`` / ``after_<state>``;
        composite hooks ``before_start``, ``after_start``, ``before_pause`` and
        so on; ``on_error`` runs when an instance fails.
        """
        self._hooks.setdefault(name, []).append(hook)

    def remove_hook(self, name: str, hook: Hook) -> bool:
        hooks = self._hooks.get(name, [])
        if hook in hooks:
            hooks.remove(hook)
            return True
        return False

    async def _run_hooks(self, name: str, instance: Any, *args: Any) -> None:
        for hook in list(self._hooks.get(name, [])):
            try:
                result = hook(instance, *args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in lifecycle hook {name} for {_instance_id(instance)}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def get_current_state(self, instance_id: str) -> LifecycleState:
        return self._states.get(instance_id, LifecycleState.UNLOADED)

    def can_transition(self, instance_id: str, target: LifecycleState) -> bool:
        target = LifecycleState(target)
        return target in TRANSITIONS[self.get_current_state(instance_id)]

    def _validate_path(self, instance_id: str, path: Sequence[LifecycleState]) -> None:
        current = self.get_current_state(instance_id)
        for target in path:
            if target not in TRANSITIONS[current]:
                raise InvalidTransitionError(instance_id, current.value, target.value)
            current = target

    async def transition(self, instance: Any, target: LifecycleState) -> None:
        """
        Move an instance to the target state.

        Raises:
            InvalidTransitionError: If the target is not reachable from the current state
        """
        target = LifecycleState(target)
        instance_id = _instance_id(instance)
        current = self.get_current_state(instance_id)

        if target not in TRANSITIONS[current]:
            raise InvalidTransitionError(instance_id, current.value, target.value)

        await self._run_hooks(f"before_{target.value}", instance)

        self._states[instance_id] = target
        logger.debug(f"Game {instance_id}: {current.value} -> {target.value}")
        await self.event_bus.publish(GameEvents.STATE_CHANGED, {
            "game_id": getattr(instance, "id", instance_id),
            "instance_id": instance_id,
            "from": current.value,
            "to": target.value
        })

        await self._run_hooks(f"after_{target.value}", instance)

    async def _run_composite(
        self,
        name: str,
        instance: Any,
        path: Sequence[LifecycleState],
        *hook_args: Any
    ) -> None:
        instance_id = _instance_id(instance)
        self._validate_path(instance_id, path)
        original = self.get_current_state(instance_id)

        await self._run_hooks(f"before_{name}", instance, *hook_args)
        try:
            for target in path:
                await self.transition(instance, target)
        except Exception:
            logger.error(f"Lifecycle {name} failed for {instance_id}; restoring {original.value}")
            self._states[instance_id] = original
            raise
        await self._run_hooks(f"after_{name}", instance, *hook_args)

    async def load(self, instance: Any) -> None:
        await self._run_composite("load", instance, (S.LOADING, S.LOADED))
        await self.event_bus.publish(GameEvents.LOADED, {
            "game_id": getattr(instance, "id", None),
            "instance_id": _instance_id(instance),
            "game_type": getattr(instance, "type", None)
        })

    async def initialize(self, instance: Any, session: Any = None) -> None:
        await self._run_composite("initialize", instance, (S.INITIALIZING, S.INITIALIZED), session)

    async def start(self, instance: Any, session: Any = None) -> None:
        await self._run_composite("start", instance, (S.STARTING, S.RUNNING), session)

    async def pause(self, instance: Any, session: Any = None) -> None:
        await self._run_composite("pause", instance, (S.PAUSED,), session)

    async def resume(self, instance: Any, session: Any = None) -> None:
        await self._run_composite("resume", instance, (S.RESUMING, S.RUNNING), session)

    async def complete(self, instance: Any, session: Any = None) -> None:
        await self._run_composite("complete", instance, (S.COMPLETING, S.COMPLETED), session)

    async def fail(self, instance: Any, error: Optional[BaseException] = None) -> None:
        await self._run_hooks("on_error", instance, error)
        await self.transition(instance, S.ERROR)

    async def unload(self, instance: Any) -> None:
        """Unload an instance and forget its state."""
        instance_id = _instance_id(instance)
        await self._run_composite("unload", instance, (S.UNLOADED,))
        self._states.pop(instance_id, None)
        await self.event_bus.publish(GameEvents.UNLOADED, {
            "game_id": getattr(instance, "id", None),
            "instance_id": instance_id
        })

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_state_history(self, instance_id: str) -> List[GameEvent]:
        history = self.event_bus.get_event_history(GameEvents.STATE_CHANGED, limit=0)
        return [e for e in history if e.data.get("instance_id") == instance_id]

    def get_running_games(self) -> List[str]:
        return [i for i, state in self._states.items() if state == S.RUNNING]

    def get_lifecycle_stats(self) -> Dict[str, Any]:
        games_by_state = {state.value: 0 for state in LifecycleState}
        for state in self._states.values():
            games_by_state[state.value] += 1
        return {"total_games": len(self._states), "games_by_state": games_by_state}

    def cleanup(self) -> None:
        self._states.clear()
        self._hooks.clear()
