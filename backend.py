import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from constants import MS_PER_MINUTE
from errors import InvalidParameters, RoomExpired, RoomNotFound
from logging_config import get_logger
from schemas.rooms import Message, Room

logger = get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def build_message(content: str, sender: str, now: int) -> Message:
    """Message factory: fresh id, server-assigned timestamp, nothing else."""
    return Message(id=str(uuid.uuid4()), content=content, sender=sender, timestamp=now)


def _detached(room: Room) -> Room:
    # callers get their own list; Message records are immutable so sharing them is fine
    return room.model_copy(update={"messages": list(room.messages)})


class RoomStore:
    """In-memory owner of every room and message.

    All access for a given room id is serialized by that room's lock, so an
    append can never interleave with another append or with eviction. Rooms
    with different ids never contend. The lock is created with the room and
    discarded when the room is evicted.

    ``on_read`` / ``on_commit`` / ``on_evict`` hooks run while the room lock
    is held; they must be synchronous and must not touch the store.
    """

    def __init__(self, clock: Callable[[], int] = now_ms):
        self.clock = clock
        self._rooms: dict[str, Room] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        logger.info("Initializing in-memory RoomStore")

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def create(self, name: str, duration_minutes: float) -> Room:
        if not isinstance(name, str) or not name.strip():
            raise InvalidParameters("Room name must not be empty")
        if duration_minutes is None or duration_minutes <= 0:
            raise InvalidParameters("Duration must be a positive number of minutes")
        lifetime_ms = int(duration_minutes * MS_PER_MINUTE)
        if lifetime_ms <= 0:
            raise InvalidParameters("Duration is too short")

        created_at = self.clock()
        room = Room(
            id=str(uuid.uuid4()),
            name=name,
            created_at=created_at,
            expires_at=created_at + lifetime_ms,
        )
        self._locks[room.id] = asyncio.Lock()
        self._rooms[room.id] = room
        logger.info(f"Created room {room.id} ({name!r}), expires_at={room.expires_at}")
        return _detached(room)

    @asynccontextmanager
    async def _locked(self, room_id: str) -> AsyncIterator[Room]:
        lock = self._locks.get(room_id)
        if lock is None:
            raise RoomNotFound()
        async with lock:
            # may have been evicted while we waited for the lock
            room = self._rooms.get(room_id)
            if room is None:
                raise RoomNotFound()
            yield room

    async def get(
        self,
        room_id: str,
        *,
        require_live: bool = False,
        on_read: Optional[Callable[[Room], None]] = None,
    ) -> Room:
        async with self._locked(room_id) as room:
            if require_live and self.clock() >= room.expires_at:
                raise RoomExpired()
            if on_read is not None:
                on_read(room)
            return _detached(room)

    async def append(
        self,
        room_id: str,
        content: str,
        sender: str,
        *,
        on_commit: Optional[Callable[[Message], None]] = None,
    ) -> Message:
        if not isinstance(content, str) or not content.strip():
            raise InvalidParameters("Message content must not be empty")
        if not isinstance(sender, str) or not sender.strip():
            raise InvalidParameters("Sender must not be empty")

        async with self._locked(room_id) as room:
            now = self.clock()
            if now >= room.expires_at:
                logger.debug(f"Rejected append to expired room {room_id}")
                raise RoomExpired()
            if room.messages:
                now = max(now, room.messages[-1].timestamp)
            message = build_message(content, sender, now)
            room.messages.append(message)
            if on_commit is not None:
                on_commit(message)
            logger.debug(f"Appended message {message.id} to room {room_id} ({len(room.messages)} total)")
            return message

    async def evict(
        self,
        room_id: str,
        *,
        on_evict: Optional[Callable[[Room], None]] = None,
    ) -> Optional[Room]:
        lock = self._locks.get(room_id)
        if lock is None:
            return None
        async with lock:
            room = self._rooms.pop(room_id, None)
            if room is None:
                return None
            self._locks.pop(room_id, None)
            if on_evict is not None:
                on_evict(room)
        logger.info(f"Evicted room {room_id} with {len(room.messages)} messages")
        return room

    def snapshot(self) -> list[tuple[str, int]]:
        return [(room_id, room.expires_at) for room_id, room in self._rooms.items()]

    def clear(self) -> None:
        self._rooms.clear()
        self._locks.clear()


room_store = RoomStore()
