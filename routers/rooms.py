from fastapi import APIRouter, HTTPException, Request

from backend import room_store
from broadcast import room_broadcaster
from constants import WS_PATH
from errors import InvalidParameters, RoomNotFound
from logging_config import get_logger
from schemas.rooms import CreateRoomRequest, CreateRoomResponse, RoomDetailsResponse

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


def build_ws_url(request: Request) -> str:
    # Replace http/https with ws/wss
    base_url = str(request.base_url).rstrip("/")
    ws_base = base_url.replace("http://", "ws://").replace("https://", "wss://")
    return f"{ws_base}{WS_PATH}"


@rooms_router.post("/", response_model=CreateRoomResponse, status_code=201)
async def create_room(room: CreateRoomRequest, request: Request):
    # Same as the createRoom event; creating a room does not join it
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Room creation request from {client_host}, name: {room.name!r}, duration: {room.duration_minutes}")
    try:
        created = room_store.create(room.name, room.duration_minutes)
    except InvalidParameters as e:
        logger.warning(f"Room creation rejected: {e.message}")
        raise HTTPException(status_code=400, detail=e.message)

    return CreateRoomResponse(
        id=created.id,
        expires_at=created.expires_at,
        ws_url=build_ws_url(request),
    )


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str):
    """
    Read-only room details.

    Returns:
    - id, name, createdAt, expiresAt
    - messageCount: messages posted so far
    - onlineUsersCount: connections currently subscribed to the room
    - isExpired: lifetime elapsed but the sweeper has not evicted it yet
    """
    try:
        room = await room_store.get(room_id)
    except RoomNotFound as e:
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail=e.message)

    return RoomDetailsResponse(
        id=room.id,
        name=room.name,
        created_at=room.created_at,
        expires_at=room.expires_at,
        message_count=len(room.messages),
        online_users_count=room_broadcaster.count(room_id),
        is_expired=room_store.clock() >= room.expires_at,
    )
