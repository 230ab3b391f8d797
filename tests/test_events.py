"""Tests for the in-process event bus and SSE channels."""

import asyncio

from live_check.events import EventBus, EventKind


def test_publish_fans_out_to_all_listeners():
    bus = EventBus()
    seen_a, seen_b = [], []
    bus.subscribe(seen_a.append)
    bus.subscribe(seen_b.append)

    assert bus.publish(EventKind.stats, {"pending": 1}) == 2
    assert [e.data for e in seen_a] == [{"pending": 1}]
    assert [e.kind for e in seen_b] == [EventKind.stats]


def test_unsubscribe_stops_delivery():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(seen.append)
    bus.publish(EventKind.result, {"resource_id": "r1"})
    unsubscribe()
    bus.publish(EventKind.result, {"resource_id": "r2"})

    assert [e.data["resource_id"] for e in seen] == ["r1"]
    assert bus.listener_count == 0
    unsubscribe()


def test_failing_listener_does_not_block_others():
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(broken)
    bus.subscribe(seen.append)
    assert bus.publish(EventKind.completed) == 1
    assert len(seen) == 1


def test_listener_may_unsubscribe_during_publish():
    bus = EventBus()
    seen = []
    holder = {}

    def once(event):
        seen.append(event)
        holder["off"]()

    holder["off"] = bus.subscribe(once)
    bus.publish(EventKind.stats)
    bus.publish(EventKind.stats)
    assert len(seen) == 1


def test_late_subscriber_gets_no_replay():
    bus = EventBus()
    bus.publish(EventKind.result, {"resource_id": "r1"})
    seen = []
    bus.subscribe(seen.append)
    assert seen == []


def test_channel_receives_in_order():
    async def scenario():
        bus = EventBus()
        async with bus.channel() as channel:
            bus.publish(EventKind.result, {"n": 1})
            bus.publish(EventKind.result, {"n": 2})
            first = await channel.get()
            second = await channel.get()
        return first.data["n"], second.data["n"], bus.listener_count

    assert asyncio.run(scenario()) == (1, 2, 0)


def test_channel_drops_oldest_when_full():
    async def scenario():
        bus = EventBus()
        channel = bus.channel(maxsize=2)
        for n in range(5):
            bus.publish(EventKind.stats, {"n": n})
        received = [(await channel.get()).data["n"] for _ in range(channel.pending())]
        channel.close()
        return received, channel.dropped

    received, dropped = asyncio.run(scenario())
    assert received == [3, 4]
    assert dropped == 3


def test_channel_get_times_out():
    async def scenario():
        bus = EventBus()
        with_timeout = bus.channel()
        result = await with_timeout.get(timeout=0.01)
        with_timeout.close()
        return result

    assert asyncio.run(scenario()) is None
