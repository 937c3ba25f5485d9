from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # snake_case in Python, camelCase on the wire
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Message(CamelModel):
    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    sender: str
    timestamp: int


class Room(CamelModel):
    # frozen fields; `messages` is appended in place by RoomStore only
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    created_at: int
    expires_at: int
    messages: list[Message] = Field(default_factory=list)


# Inbound event payloads (also reused as HTTP request bodies)

class CreateRoomRequest(CamelModel):
    name: str
    duration_minutes: float = Field(
        validation_alias=AliasChoices("durationMinutes", "duration_minutes", "duration"),
        allow_inf_nan=False,
    )


class JoinRoomRequest(CamelModel):
    room_id: str


class SyncTimeRequest(CamelModel):
    room_id: str


class SendMessageRequest(CamelModel):
    room_id: str
    content: str
    sender: str


# HTTP responses

class CreateRoomResponse(CamelModel):
    id: str
    expires_at: int
    ws_url: str


class RoomDetailsResponse(CamelModel):
    id: str
    name: str
    created_at: int
    expires_at: int
    message_count: int
    online_users_count: int
    is_expired: bool
