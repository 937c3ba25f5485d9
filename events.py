from typing import Any, Optional

# Client -> server
CREATE_ROOM = "createRoom"
JOIN_ROOM = "joinRoom"
SYNC_TIME = "syncTime"
SEND_MESSAGE = "sendMessage"

# Server -> client (targeted)
ROOM_CREATED = "roomCreated"
ROOM_JOINED = "roomJoined"
MESSAGE_HISTORY = "messageHistory"
ERROR = "error"

# Server -> room group (broadcast)
NEW_MESSAGE = "newMessage"
ROOM_EXPIRED = "roomExpired"

# Every frame, in both directions:
# {"type": "<event name>", "data": {...}}


def make_event(event_type: str, data: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    return {"type": event_type, "data": data if data is not None else {}}
