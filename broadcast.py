import asyncio
from collections import defaultdict
from typing import Any

from logging_config import get_logger

logger = get_logger(__name__)


class RoomBroadcaster:
    """Per-room subscriber sets for fan-out delivery.

    Members are connection outboxes keyed by connection id. Groups are kept
    apart from RoomStore: a group can exist for a room that is gone, which is
    how the final ``roomExpired`` reaches everyone.

    All methods are synchronous so they can run under a RoomStore lock;
    everything here happens on the event loop thread. Outboxes are unbounded,
    so publishing never blocks and never drops.
    """

    def __init__(self) -> None:
        self._groups: dict[str, dict[str, asyncio.Queue]] = defaultdict(dict)

    def subscribe(self, room_id: str, connection_id: str, outbox: asyncio.Queue) -> None:
        self._groups[room_id][connection_id] = outbox
        logger.debug(f"Connection {connection_id} subscribed to room {room_id} ({len(self._groups[room_id])} members)")

    def unsubscribe(self, room_id: str, connection_id: str) -> None:
        group = self._groups.get(room_id)
        if not group:
            return
        group.pop(connection_id, None)
        if not group:
            self._groups.pop(room_id, None)
        logger.debug(f"Connection {connection_id} unsubscribed from room {room_id}")

    def publish(self, room_id: str, event: dict[str, Any]) -> int:
        group = self._groups.get(room_id)
        if not group:
            return 0
        for outbox in group.values():
            outbox.put_nowait(event)
        logger.debug(f"Broadcast {event.get('type')} to {len(group)} connections in room {room_id}")
        return len(group)

    def drop(self, room_id: str) -> int:
        group = self._groups.pop(room_id, None) or {}
        return len(group)

    def members(self, room_id: str) -> set[str]:
        return set(self._groups.get(room_id, ()))

    def count(self, room_id: str) -> int:
        return len(self._groups.get(room_id, ()))

    def clear(self) -> None:
        self._groups.clear()


room_broadcaster = RoomBroadcaster()
