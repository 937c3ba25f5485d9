from __future__ import annotations

import asyncio

import pytest

from backend import RoomStore
from broadcast import RoomBroadcaster
from gateway import Session
from sweeper import ExpirySweeper

from conftest import T0, FakeClock, drain


@pytest.fixture
def sweeper(store: RoomStore, broadcaster: RoomBroadcaster) -> ExpirySweeper:
    return ExpirySweeper(store, broadcaster, interval=0.01)


@pytest.mark.asyncio
async def test_room_lifecycle_from_create_to_expiry(
    store: RoomStore, broadcaster: RoomBroadcaster, sweeper: ExpirySweeper, clock: FakeClock
) -> None:
    a = Session(store, broadcaster, connection_id="a")
    b = Session(store, broadcaster, connection_id="b")

    await a.handle("createRoom", {"name": "Test", "durationMinutes": 1})
    created = drain(a)[0]["data"]
    room_id = created["id"]
    assert created["expiresAt"] == T0 + 60_000

    await a.handle("joinRoom", {"roomId": room_id})
    await a.handle("sendMessage", {"roomId": room_id, "content": "hi", "sender": "A"})
    drain(a)

    clock.advance(10_000)
    await b.handle("joinRoom", {"roomId": room_id})
    history = drain(b)[1]["data"]["messages"]
    assert [(m["content"], m["sender"], m["timestamp"]) for m in history] == [("hi", "A", T0)]

    clock.advance(51_000)
    assert await sweeper.tick() == [room_id]

    assert drain(a) == [{"type": "roomExpired", "data": {}}]
    assert drain(b) == [{"type": "roomExpired", "data": {}}]

    await b.handle("joinRoom", {"roomId": room_id})
    assert drain(b) == [{"type": "error", "data": {"message": "Room not found"}}]


@pytest.mark.asyncio
async def test_tick_leaves_live_rooms_alone(store: RoomStore, sweeper: ExpirySweeper, clock: FakeClock) -> None:
    short = store.create("short", 1)
    long = store.create("long", 10)

    clock.advance(60_000 - 1)
    assert await sweeper.tick() == []

    clock.advance(1)
    assert await sweeper.tick() == [short.id]
    assert long.id in store
    assert short.id not in store


@pytest.mark.asyncio
async def test_room_expired_broadcast_exactly_once_and_last(
    store: RoomStore, broadcaster: RoomBroadcaster, sweeper: ExpirySweeper, clock: FakeClock
) -> None:
    member = Session(store, broadcaster)
    room = store.create("Test", 1)
    await member.handle("joinRoom", {"roomId": room.id})
    drain(member)

    clock.advance(60_000)
    await sweeper.tick()
    await sweeper.tick()
    assert await store.evict(room.id) is None

    # a late send can no longer reach the (dropped) group
    await member.handle("sendMessage", {"roomId": room.id, "content": "hi", "sender": "x"})

    events = drain(member)
    assert events[0] == {"type": "roomExpired", "data": {}}
    assert [e["type"] for e in events].count("roomExpired") == 1
    assert events[1]["type"] == "error"
    assert broadcaster.count(room.id) == 0


@pytest.mark.asyncio
async def test_concurrent_sends_and_sweep_never_deliver_after_expiry(
    store: RoomStore, broadcaster: RoomBroadcaster, sweeper: ExpirySweeper, clock: FakeClock
) -> None:
    listener = Session(store, broadcaster)
    sender = Session(store, broadcaster)
    room = store.create("Test", 1)
    await listener.handle("joinRoom", {"roomId": room.id})
    drain(listener)

    async def send(i: int) -> None:
        await sender.handle("sendMessage", {"roomId": room.id, "content": f"m{i}", "sender": "s"})

    clock.advance(60_000)
    await asyncio.gather(*(send(i) for i in range(5)), sweeper.tick(), *(send(i) for i in range(5, 10)))

    types = [e["type"] for e in drain(listener)]
    assert types == ["roomExpired"]


@pytest.mark.asyncio
async def test_start_and_stop_background_sweep(store: RoomStore, sweeper: ExpirySweeper, clock: FakeClock) -> None:
    room = store.create("Test", 1)
    clock.advance(60_000)

    sweeper.start()
    assert sweeper.running
    for _ in range(50):
        if room.id not in store:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert room.id not in store
    assert not sweeper.running


@pytest.mark.asyncio
async def test_background_sweep_survives_a_failing_tick(
    store: RoomStore, sweeper: ExpirySweeper, clock: FakeClock, monkeypatch: pytest.MonkeyPatch
) -> None:
    calls = 0
    original_tick = sweeper.tick

    async def flaky_tick() -> list[str]:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("boom")
        return await original_tick()

    monkeypatch.setattr(sweeper, "tick", flaky_tick)
    room = store.create("Test", 1)
    clock.advance(60_000)

    sweeper.start()
    for _ in range(50):
        if room.id not in store:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert calls >= 2
    assert room.id not in store
