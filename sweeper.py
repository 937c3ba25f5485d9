import asyncio
from contextlib import suppress
from typing import Optional

from backend import RoomStore
from broadcast import RoomBroadcaster
from constants import SWEEP_INTERVAL_SECONDS
from events import ROOM_EXPIRED, make_event
from logging_config import get_logger
from schemas.rooms import Room

logger = get_logger(__name__)


class ExpirySweeper:
    """Evicts rooms whose lifetime has elapsed and tells their subscribers.

    ``start()``/``stop()`` are tied to the application lifespan. Tests drive
    ``tick()`` directly instead of waiting on the timer.
    """

    def __init__(
        self,
        store: RoomStore,
        broadcaster: RoomBroadcaster,
        interval: float = SWEEP_INTERVAL_SECONDS,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _notify_expired(self, room: Room) -> None:
        # runs under the room lock, so nothing can be broadcast to the group after this
        delivered = self.broadcaster.publish(room.id, make_event(ROOM_EXPIRED))
        self.broadcaster.drop(room.id)
        logger.info(f"Room {room.id} expired, notified {delivered} connections")

    async def tick(self) -> list[str]:
        now = self.store.clock()
        evicted = []
        for room_id, expires_at in self.store.snapshot():
            if expires_at > now:
                continue
            room = await self.store.evict(room_id, on_evict=self._notify_expired)
            if room is not None:
                evicted.append(room_id)
        return evicted

    async def _run(self) -> None:
        logger.info(f"Expiry sweeper started (interval={self.interval}s)")
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Error during expiry sweep: {e}", exc_info=True)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Expiry sweeper stopped")
