import asyncio

import pytest

from edugame.common.error_handling import EventTimeoutError
from edugame.events.bus import EventBus
from edugame.events.names import GameEvents


@pytest.mark.asyncio
async def test_publish_runs_sync_then_wildcard_then_async_handlers():
    bus = EventBus()
    order = []

    async def async_handler(event):
        order.append("async")

    bus.on_async(GameEvents.STARTED, async_handler)
    bus.subscribe(GameEvents.WILDCARD, lambda event: order.append("wildcard"))
    bus.subscribe(GameEvents.STARTED, lambda event: order.append("sync"))

    delivered = await bus.publish(GameEvents.STARTED, {"game_id": "g1"})

    assert delivered is True
    assert order == ["sync", "wildcard", "async"]


@pytest.mark.asyncio
async def test_subscribers_receive_event_payload():
    bus = EventBus()
    received = []
    bus.subscribe(GameEvents.PROGRESS, received.append)

    await bus.publish(GameEvents.PROGRESS, {"score": 10})

    assert len(received) == 1
    assert received[0].name == GameEvents.PROGRESS
    assert received[0].data == {"score": 10}


@pytest.mark.asyncio
async def test_filter_suppresses_delivery_but_event_is_recorded():
    bus = EventBus()
    received = []
    bus.subscribe("custom:event", received.append)
    bus.add_filter("custom:event", lambda event: event.data.get("muted", False))

    assert await bus.publish("custom:event", {"muted": True}) is False
    assert await bus.publish("custom:event", {"muted": False}) is True

    assert len(received) == 1
    assert len(bus.get_event_history("custom:event")) == 2
    assert bus.get_event_stats()["suppressed"] == 1


@pytest.mark.asyncio
async def test_history_is_bounded_and_evicts_oldest():
    bus = EventBus(history_limit=3)
    for i in range(5):
        await bus.publish("tick", {"i": i})

    history = bus.get_event_history()
    assert [e.data["i"] for e in history] == [2, 3, 4]
    assert bus.get_event_stats()["total_published"] == 5


@pytest.mark.asyncio
async def test_async_handler_failure_is_republished_as_bus_error():
    bus = EventBus()
    errors = []
    bus.subscribe(GameEvents.BUS_ERROR, errors.append)

    async def broken(event):
        raise RuntimeError("handler exploded")

    after = []

    async def healthy(event):
        after.append(event)

    bus.on_async(GameEvents.COMPLETED, broken)
    bus.on_async(GameEvents.COMPLETED, healthy)

    assert await bus.publish(GameEvents.COMPLETED, {"game_id": "g1"}) is True

    assert len(errors) == 1
    assert errors[0].data["original_event"]["name"] == GameEvents.COMPLETED
    assert errors[0].data["error"] == "handler exploded"
    assert errors[0].data["error_type"] == "RuntimeError"
    assert len(after) == 1


@pytest.mark.asyncio
async def test_failing_bus_error_handler_is_only_logged():
    bus = EventBus()

    async def broken(event):
        raise ValueError("broken")

    bus.on_async("custom:event", broken)
    bus.on_async(GameEvents.BUS_ERROR, broken)

    assert await bus.publish("custom:event") is True
    assert len(bus.get_event_history(GameEvents.BUS_ERROR)) == 1


@pytest.mark.asyncio
async def test_subscribe_once_fires_a_single_time():
    bus = EventBus()
    received = []
    bus.subscribe_once("custom:event", received.append)

    await bus.publish("custom:event")
    await bus.publish("custom:event")

    assert len(received) == 1
    assert bus.listener_count("custom:event") == 0


@pytest.mark.asyncio
async def test_unsubscribe_and_returned_unsubscriber():
    bus = EventBus()
    received = []
    handler = received.append
    remove = bus.subscribe("custom:event", handler)

    assert remove() is True
    assert bus.unsubscribe("custom:event", handler) is False

    await bus.publish("custom:event")
    assert received == []


@pytest.mark.asyncio
async def test_remove_all_for_one_name_or_everything():
    bus = EventBus()
    bus.subscribe("a", lambda e: None)
    bus.subscribe("b", lambda e: None)

    bus.remove_all("a")
    assert bus.listener_count("a") == 0
    assert bus.listener_count("b") == 1

    bus.remove_all()
    assert bus.listener_count("b") == 0


@pytest.mark.asyncio
async def test_wait_for_resolves_with_the_next_matching_event():
    bus = EventBus()

    async def publish_later():
        await asyncio.sleep(0.01)
        await bus.publish(GameEvents.QUESTION_SHOWN, {"question_id": "q2"})

    task = asyncio.create_task(publish_later())
    event = await bus.wait_for(GameEvents.QUESTION_SHOWN, timeout_ms=1000)
    await task

    assert event.data["question_id"] == "q2"
    assert bus.listener_count(GameEvents.QUESTION_SHOWN) == 0


@pytest.mark.asyncio
async def test_wait_for_times_out_and_removes_listener():
    bus = EventBus()

    with pytest.raises(EventTimeoutError) as exc_info:
        await bus.wait_for("never:published", timeout_ms=20)

    assert exc_info.value.details["event_name"] == "never:published"
    assert bus.listener_count("never:published") == 0


@pytest.mark.asyncio
async def test_once_async_resolves_on_next_event():
    bus = EventBus()
    waiter = asyncio.create_task(bus.once_async(GameEvents.PAUSED))
    await asyncio.sleep(0)

    await bus.publish(GameEvents.PAUSED, {"game_id": "g1"})

    event = await asyncio.wait_for(waiter, 1)
    assert event.data["game_id"] == "g1"
    assert bus.listener_count(GameEvents.PAUSED) == 0


@pytest.mark.asyncio
async def test_history_filtering_limits_and_reset():
    bus = EventBus()
    for i in range(4):
        await bus.publish("a", {"i": i})
    await bus.publish("b")

    assert len(bus.get_event_history("a", limit=2)) == 2
    assert len(bus.get_event_history(limit=0)) == 5
    assert bus.get_event_stats()["event_counts"] == {"a": 4, "b": 1}

    bus.subscribe("a", lambda e: None)
    bus.reset()
    assert bus.get_event_history() == []
    assert bus.listener_count("a") == 0
    assert bus.get_event_stats()["total_published"] == 0


@pytest.mark.asyncio
async def test_event_chain_runs_steps_in_order():
    bus = EventBus()
    seen = []
    bus.subscribe(GameEvents.WILDCARD, lambda event: seen.append(event.name))

    async def finish_later():
        await asyncio.sleep(0.05)
        await bus.publish(GameEvents.COMPLETED, {"score": 30})

    chain = (bus.create_event_chain()
             .emit(GameEvents.STARTED, {"game_id": "g1"})
             .delay(5)
             .wait(GameEvents.COMPLETED, timeout_ms=1000)
             .emit("chain:done"))
    assert len(chain) == 4

    finisher = asyncio.ensure_future(finish_later())
    results = await chain.execute()
    await finisher

    assert [r["action"] for r in results] == ["emit", "delay", "wait", "emit"]
    assert results[0]["result"] is True
    assert results[1]["result"] is None
    assert results[2]["result"].data == {"score": 30}
    assert seen == [GameEvents.STARTED, GameEvents.COMPLETED, "chain:done"]


@pytest.mark.asyncio
async def test_event_chain_stops_at_a_timed_out_wait():
    bus = EventBus()
    chain = bus.create_event_chain().wait("never:happens", timeout_ms=20).emit("after:wait")

    with pytest.raises(EventTimeoutError):
        await chain.execute()

    assert bus.get_event_history("after:wait") == []
    assert bus.listener_count("never:happens") == 0
