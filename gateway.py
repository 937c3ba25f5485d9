import asyncio
import json
import uuid
from enum import Enum
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from backend import RoomStore
from broadcast import RoomBroadcaster
from errors import InvalidParameters, RoomError, RoomNotFound
from events import (
    CREATE_ROOM,
    ERROR,
    JOIN_ROOM,
    MESSAGE_HISTORY,
    NEW_MESSAGE,
    ROOM_CREATED,
    ROOM_JOINED,
    SEND_MESSAGE,
    SYNC_TIME,
    make_event,
)
from logging_config import get_logger
from schemas.rooms import (
    CreateRoomRequest,
    JoinRoomRequest,
    Message,
    Room,
    SendMessageRequest,
    SyncTimeRequest,
)

logger = get_logger(__name__)

RequestT = TypeVar("RequestT", bound=BaseModel)


class SessionState(str, Enum):
    UNJOINED = "unjoined"
    JOINED = "joined"
    CLOSED = "closed"


def _parse(model: Type[RequestT], data: Any) -> RequestT:
    # joinRoom / syncTime may carry the bare room id instead of an object
    if isinstance(data, str) and "room_id" in model.model_fields:
        data = {"roomId": data}
    try:
        return model.model_validate(data if data is not None else {})
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(part) for part in first.get("loc", ())) or "payload"
        raise InvalidParameters(f"Invalid {where}: {first.get('msg', 'invalid value')}")


def _room_summary(room: Room) -> dict[str, Any]:
    return {"id": room.id, "name": room.name, "expiresAt": room.expires_at}


def _message_payload(message: Message) -> dict[str, Any]:
    return message.model_dump(by_alias=True)


class Session:
    """Protocol handler for one connection.

    Holds no room data, only which room (if any) the connection is subscribed
    to. Everything sent to the client, targeted or broadcast, lands in
    ``outbox``; the transport drains it to the socket.
    """

    def __init__(
        self,
        store: RoomStore,
        broadcaster: RoomBroadcaster,
        connection_id: Optional[str] = None,
    ):
        self.connection_id = connection_id or str(uuid.uuid4())
        self.store = store
        self.broadcaster = broadcaster
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.state = SessionState.UNJOINED
        self.room_id: Optional[str] = None
        self._handlers = {
            CREATE_ROOM: self.create_room,
            JOIN_ROOM: self.join_room,
            SYNC_TIME: self.sync_time,
            SEND_MESSAGE: self.send_message,
        }

    def emit(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.outbox.put_nowait(make_event(event_type, data))

    def emit_error(self, message: str) -> None:
        self.emit(ERROR, {"message": message})

    async def handle_text(self, text: str) -> None:
        try:
            frame = json.loads(text)
        except json.JSONDecodeError:
            logger.debug(f"Connection {self.connection_id} sent a non-JSON frame")
            self.emit_error("Malformed event: expected JSON")
            return
        if not isinstance(frame, dict):
            self.emit_error("Malformed event: expected an object with 'type' and 'data'")
            return
        await self.handle(frame.get("type"), frame.get("data"))

    async def handle(self, event_type: Any, data: Any = None) -> None:
        if self.state is SessionState.CLOSED:
            logger.debug(f"Ignoring {event_type} on closed connection {self.connection_id}")
            return
        if not isinstance(event_type, str):
            self.emit_error("Malformed event: 'type' must be a string")
            return
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info(f"Connection {self.connection_id} sent unknown event {event_type!r}")
            self.emit_error(f"Unknown event: {event_type}")
            return
        try:
            await handler(data)
        except RoomError as e:
            logger.info(f"{event_type} from connection {self.connection_id} failed: {e.message}")
            self.emit_error(e.message)

    async def create_room(self, data: Any) -> None:
        request = _parse(CreateRoomRequest, data)
        room = self.store.create(request.name, request.duration_minutes)
        self.emit(ROOM_CREATED, {"id": room.id, "expiresAt": room.expires_at})

    async def join_room(self, data: Any) -> None:
        request = _parse(JoinRoomRequest, data)

        def subscribe_and_reply(room: Room) -> None:
            # under the room lock: no append can land between the history
            # snapshot and the subscription, so nothing is lost or duplicated
            if self.room_id is not None and self.room_id != room.id:
                self.broadcaster.unsubscribe(self.room_id, self.connection_id)
            self.broadcaster.subscribe(room.id, self.connection_id, self.outbox)
            self.state = SessionState.JOINED
            self.room_id = room.id
            self.emit(ROOM_JOINED, _room_summary(room))
            self.emit(MESSAGE_HISTORY, {"messages": [_message_payload(m) for m in room.messages]})

        await self.store.get(request.room_id, require_live=True, on_read=subscribe_and_reply)
        logger.info(f"Connection {self.connection_id} joined room {request.room_id}")

    async def sync_time(self, data: Any) -> None:
        request = _parse(SyncTimeRequest, data)
        try:
            room = await self.store.get(request.room_id)
        except RoomNotFound:
            return
        self.emit(ROOM_JOINED, _room_summary(room))

    async def send_message(self, data: Any) -> None:
        request = _parse(SendMessageRequest, data)

        def broadcast(message: Message) -> None:
            self.broadcaster.publish(request.room_id, make_event(NEW_MESSAGE, {"message": _message_payload(message)}))

        await self.store.append(request.room_id, request.content, request.sender, on_commit=broadcast)

    def close(self) -> None:
        if self.state is SessionState.JOINED and self.room_id is not None:
            self.broadcaster.unsubscribe(self.room_id, self.connection_id)
        self.state = SessionState.CLOSED
        self.room_id = None
