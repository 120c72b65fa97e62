"""Event hub fan-out tests: delivery, isolation of broken subscribers, idempotence."""

from __future__ import annotations

import asyncio
import json

import pytest

from src.core.hub import EventHub, Subscriber
from src.models.events import PaymentEvent, StageEvent, StageStatus, parse_event


def _stage(message: str = "working", status: StageStatus = StageStatus.in_progress) -> StageEvent:
    return StageEvent(correlation_id="c1", stage="processing", message=message, status=status)


async def _drain(hub: EventHub, subscriber: Subscriber) -> list[str]:
    hub.unsubscribe(subscriber)
    return [frame async for frame in subscriber.frames()]


@pytest.mark.asyncio
async def test_connected_notice_goes_only_to_new_subscriber():
    hub = EventHub()
    first = hub.subscribe()
    second = hub.subscribe()

    first_frames = await _drain(hub, first)
    second_frames = await _drain(hub, second)

    assert len(first_frames) == 1
    assert len(second_frames) == 1
    assert json.loads(first_frames[0])["type"] == "connected"


@pytest.mark.asyncio
async def test_publish_reaches_every_subscriber_with_identical_bytes():
    hub = EventHub()
    subscribers = [hub.subscribe() for _ in range(3)]
    event = _stage()

    delivered = hub.publish(event)

    assert delivered == 3
    received = [(await _drain(hub, s))[1:] for s in subscribers]
    assert received[0] == received[1] == received[2] == [event.to_json()]
    assert parse_event(received[0][0]) == event


@pytest.mark.asyncio
async def test_late_subscriber_gets_no_backlog():
    hub = EventHub()
    hub.publish(_stage("before"))
    late = hub.subscribe()

    frames = await _drain(hub, late)

    assert [json.loads(f)["type"] for f in frames] == ["connected"]


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent():
    hub = EventHub()
    sub = hub.subscribe()
    other = hub.subscribe()

    hub.unsubscribe(sub)
    hub.unsubscribe(sub)

    assert hub.subscriber_count == 1
    assert hub.publish(_stage()) == 1
    assert len(await _drain(hub, other)) == 2


@pytest.mark.asyncio
async def test_closed_subscriber_is_removed_and_others_keep_receiving():
    hub = EventHub()
    broken = hub.subscribe()
    healthy = hub.subscribe()
    broken.close()  # connection went away without unsubscribing

    assert hub.publish(_stage("one")) == 1
    assert hub.subscriber_count == 1
    assert hub.publish(_stage("two")) == 1

    frames = await _drain(hub, healthy)
    assert [json.loads(f).get("message") for f in frames[1:]] == ["one", "two"]


@pytest.mark.asyncio
async def test_overflowing_subscriber_is_dropped_without_blocking_publish():
    hub = EventHub(max_buffer=2)
    slow = hub.subscribe()  # buffer holds the connected notice
    fast = hub.subscribe()

    hub.publish(_stage("a"))
    # `fast` drains between publishes, `slow` never reads.
    fast_frames = [await fast.frames().__anext__() for _ in range(2)]
    hub.publish(_stage("b"))

    assert slow.closed
    assert hub.subscriber_count == 1
    assert len(fast_frames) == 2
    remaining = await _drain(hub, fast)
    assert json.loads(remaining[0])["message"] == "b"


@pytest.mark.asyncio
async def test_payment_events_are_broadcast():
    hub = EventHub()
    sub = hub.subscribe()
    payment = PaymentEvent(
        account_id="acct",
        resource_url="https://image.mcp.atxp.ai",
        network="base",
        currency="USDC",
        amount="0.05",
    )

    hub.publish(payment)

    body = json.loads((await _drain(hub, sub))[1])
    assert body["type"] == "payment"
    assert body["accountId"] == "acct"
    assert body["amount"] == "0.05"


@pytest.mark.asyncio
async def test_frames_yields_heartbeat_marker_when_idle():
    hub = EventHub()
    sub = hub.subscribe()
    stream = sub.frames(heartbeat_s=0.01)

    assert json.loads(await stream.__anext__())["type"] == "connected"
    assert await stream.__anext__() is None

    hub.close()
    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(stream.__anext__(), timeout=1)


@pytest.mark.asyncio
async def test_close_ends_every_stream():
    hub = EventHub()
    subs = [hub.subscribe() for _ in range(2)]

    hub.close()

    assert hub.subscriber_count == 0
    for sub in subs:
        assert sub.closed
        assert len([f async for f in sub.frames()]) == 1


def test_closing_a_full_subscriber_logs_the_dropped_frame(monkeypatch):
    calls = []

    class DummyLog:
        def debug(self, event, **kw):
            calls.append((event, kw))

        def info(self, event, **kw):
            _ = (event, kw)

        def warning(self, event, **kw):
            _ = (event, kw)

    monkeypatch.setattr("src.core.hub.log", DummyLog())
    sub = Subscriber(max_buffer=2)
    sub.write("one")
    sub.write("two")

    sub.close()
    sub.close()

    assert calls == [("subscriber_frame_dropped_on_close", {"subscriber_id": sub.id})]
    assert sub.pending == 2


@pytest.mark.asyncio
async def test_closing_a_full_subscriber_still_ends_its_stream():
    sub = Subscriber(max_buffer=2)
    sub.write("one")
    sub.write("two")

    sub.close()

    assert [f async for f in sub.frames()] == ["two"]
