import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from backend import room_store
from broadcast import room_broadcaster
from constants import CORS_ORIGINS, LOG_FILE, LOG_LEVEL, WS_PATH
from gateway import Session
from logging_config import get_logger, setup_logging
from routers.rooms import rooms_router
from sweeper import ExpirySweeper

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)

sweeper = ExpirySweeper(room_store, room_broadcaster)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()


app = FastAPI(title="Ephemeral Rooms", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)

logger.info("FastAPI application initialized")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


async def pump_outbox(websocket: WebSocket, session: Session) -> None:
    """Drain the session outbox to the socket, in order."""
    while True:
        event = await session.outbox.get()
        try:
            await websocket.send_json(event)
        except Exception as e:
            logger.warning(f"Error sending {event.get('type')} to connection {session.connection_id}: {e}")
            return


@app.websocket(WS_PATH)
async def websocket_endpoint(websocket: WebSocket):
    """One persistent connection speaking the room event protocol.

    Frames are JSON objects: {"type": "<event>", "data": {...}}.
    """
    await websocket.accept()
    session = Session(room_store, room_broadcaster)
    logger.info(f"WebSocket connection {session.connection_id} accepted from {websocket.client}")
    writer = asyncio.create_task(pump_outbox(websocket, session))

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            text = message.get("text")
            if text is None:
                session.emit_error("Malformed event: expected a JSON text frame")
                continue
            await session.handle_text(text)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {session.connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {session.connection_id}: {e}", exc_info=True)
    finally:
        session.close()
        writer.cancel()
        with suppress(asyncio.CancelledError):
            await writer
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")
