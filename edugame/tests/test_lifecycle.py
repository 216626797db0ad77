import pytest

from edugame.common.error_handling import InvalidTransitionError
from edugame.engine.lifecycle import TRANSITIONS, LifecycleManager, LifecycleState
from edugame.events.bus import EventBus
from edugame.events.names import GameEvents


class FakeInstance:
    def __init__(self, instance_id="instance-1", game_id="game-1"):
        self.id = game_id
        self.instance_id = instance_id
        self.type = "quiz"


@pytest.fixture
def manager():
    return LifecycleManager(EventBus())


def test_unseen_instance_is_unloaded(manager):
    assert manager.get_current_state("unknown") == LifecycleState.UNLOADED
    assert manager.can_transition("unknown", LifecycleState.LOADING)
    assert not manager.can_transition("unknown", LifecycleState.RUNNING)


@pytest.mark.asyncio
async def test_full_lifecycle_path(manager):
    instance = FakeInstance()

    await manager.load(instance)
    assert manager.get_current_state(instance.instance_id) == LifecycleState.LOADED
    await manager.initialize(instance)
    await manager.start(instance)
    assert manager.get_running_games() == [instance.instance_id]
    await manager.pause(instance)
    assert manager.get_current_state(instance.instance_id) == LifecycleState.PAUSED
    await manager.resume(instance)
    assert manager.get_current_state(instance.instance_id) == LifecycleState.RUNNING
    await manager.complete(instance)
    assert manager.get_current_state(instance.instance_id) == LifecycleState.COMPLETED
    await manager.unload(instance)

    assert manager.get_current_state(instance.instance_id) == LifecycleState.UNLOADED
    assert manager.get_lifecycle_stats()["total_games"] == 0

    names = [e.name for e in manager.event_bus.get_event_history(limit=0)]
    assert names[0] == GameEvents.STATE_CHANGED
    assert GameEvents.LOADED in names
    assert names[-1] == GameEvents.UNLOADED


@pytest.mark.asyncio
async def test_every_transition_outside_the_table_fails_without_mutation(manager):
    instance = FakeInstance()
    for current in LifecycleState:
        for target in LifecycleState:
            if target in TRANSITIONS[current]:
                continue
            manager._states[instance.instance_id] = current
            with pytest.raises(InvalidTransitionError):
                await manager.transition(instance, target)
            assert manager.get_current_state(instance.instance_id) == current


@pytest.mark.asyncio
async def test_transition_error_names_current_and_target(manager):
    instance = FakeInstance()
    with pytest.raises(InvalidTransitionError) as exc_info:
        await manager.transition(instance, LifecycleState.RUNNING)

    assert "unloaded" in str(exc_info.value)
    assert "running" in str(exc_info.value)


@pytest.mark.asyncio
async def test_state_changed_event_carries_from_and_to(manager):
    instance = FakeInstance()
    await manager.load(instance)

    history = manager.get_state_history(instance.instance_id)
    assert [(e.data["from"], e.data["to"]) for e in history] == [
        ("unloaded", "loading"),
        ("loading", "loaded")
    ]
    assert history[0].data["game_id"] == "game-1"


@pytest.mark.asyncio
async def test_hooks_run_before_and_after_including_async_hooks(manager):
    instance = FakeInstance()
    calls = []

    async def after_running(inst):
        calls.append(("after_running", manager.get_current_state(inst.instance_id)))

    manager.add_hook("before_running", lambda inst: calls.append(
        ("before_running", manager.get_current_state(inst.instance_id))
    ))
    manager.add_hook("after_running", after_running)
    manager.add_hook("before_start", lambda inst, session: calls.append(("before_start", session)))

    await manager.load(instance)
    await manager.initialize(instance)
    await manager.start(instance, "session-1")

    assert calls == [
        ("before_start", "session-1"),
        ("before_running", LifecycleState.STARTING),
        ("after_running", LifecycleState.RUNNING)
    ]


@pytest.mark.asyncio
async def test_failing_hook_does_not_abort_transition(manager):
    instance = FakeInstance()

    def broken(inst):
        raise RuntimeError("observer failure")

    manager.add_hook("before_loading", broken)
    await manager.load(instance)

    assert manager.get_current_state(instance.instance_id) == LifecycleState.LOADED
    assert manager.remove_hook("before_loading", broken) is True


@pytest.mark.asyncio
async def test_composite_validates_whole_path_before_committing(manager):
    instance = FakeInstance()
    await manager.load(instance)

    with pytest.raises(InvalidTransitionError):
        await manager.start(instance)

    assert manager.get_current_state(instance.instance_id) == LifecycleState.LOADED


@pytest.mark.asyncio
async def test_composite_rolls_back_when_a_later_step_fails(manager):
    instance = FakeInstance()
    await manager.load(instance)
    await manager.initialize(instance)

    def reject_running(event):
        if event.data["to"] == "running":
            raise RuntimeError("cannot enter running")

    manager.event_bus.subscribe(GameEvents.STATE_CHANGED, reject_running)

    with pytest.raises(RuntimeError):
        await manager.start(instance)

    assert manager.get_current_state(instance.instance_id) == LifecycleState.INITIALIZED


@pytest.mark.asyncio
async def test_fail_runs_error_hooks_and_allows_unload(manager):
    instance = FakeInstance()
    seen = []
    manager.add_hook("on_error", lambda inst, error: seen.append(error))

    await manager.load(instance)
    await manager.initialize(instance)
    await manager.start(instance)
    error = RuntimeError("boom")
    await manager.fail(instance, error)

    assert seen == [error]
    assert manager.get_current_state(instance.instance_id) == LifecycleState.ERROR
    await manager.unload(instance)
    assert manager.get_current_state(instance.instance_id) == LifecycleState.UNLOADED


@pytest.mark.asyncio
async def test_instances_of_the_same_game_are_tracked_separately(manager):
    first = FakeInstance("instance-a")
    second = FakeInstance("instance-b")

    await manager.load(first)
    await manager.initialize(first)
    await manager.start(first)
    await manager.load(second)

    assert manager.get_current_state("instance-a") == LifecycleState.RUNNING
    assert manager.get_current_state("instance-b") == LifecycleState.LOADED
    stats = manager.get_lifecycle_stats()
    assert stats["games_by_state"]["running"] == 1
    assert stats["games_by_state"]["loaded"] == 1
