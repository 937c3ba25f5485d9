from __future__ import annotations

import pytest

from backend import RoomStore, room_store
from broadcast import RoomBroadcaster, room_broadcaster

T0 = 1_700_000_000_000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> RoomStore:
    return RoomStore(clock=clock)


@pytest.fixture
def broadcaster() -> RoomBroadcaster:
    return RoomBroadcaster()


@pytest.fixture
def app_state(clock: FakeClock):
    """Isolate tests that go through the app's module-level singletons."""
    room_store.clear()
    room_broadcaster.clear()
    original_clock = room_store.clock
    room_store.clock = clock
    yield clock
    room_store.clock = original_clock
    room_store.clear()
    room_broadcaster.clear()


def drain(session) -> list[dict]:
    events = []
    while not session.outbox.empty():
        events.append(session.outbox.get_nowait())
    return events
