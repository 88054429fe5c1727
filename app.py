import asyncio
import os
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as redis
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketState

from bridge import GameBridge
from coordinator import RoomCoordinator
from errors import BridgeHandshakeTimeout, PlayRoomsError, RoomNotFound
from logging_config import get_logger, setup_logging
from models import SessionContext
from repository import RoomRepository
from routers.rooms import rooms_router
from store import create_redis_client, ping_store
from watcher import RoomWatcher

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


def attach_services(app: FastAPI, redis_client: redis.Redis) -> None:
    """Wire repository, coordinator and watcher onto the app around one Redis client."""
    repository = RoomRepository(redis_client)
    app.state.redis_client = redis_client
    app.state.repository = repository
    app.state.coordinator = RoomCoordinator(repository)
    app.state.watcher = RoomWatcher(redis_client, repository)


@asynccontextmanager
async def lifespan(app: FastAPI):
    owned_client: Optional[redis.Redis] = None
    if getattr(app.state, "coordinator", None) is None:
        owned_client = create_redis_client()
        await ping_store(owned_client)
        attach_services(app, owned_client)
    yield
    if owned_client is not None:
        await owned_client.aclose()
        logger.info("Redis client closed")


app = FastAPI(title="PlayRooms", lifespan=lifespan)

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)


@app.exception_handler(PlayRoomsError)
async def room_error_handler(request: Request, exc: PlayRoomsError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": type(exc).__name__, "detail": exc.message},
    )


@app.get("/health")
async def health():
    return {"status": "ok"}


logger.info("FastAPI application initialized")


async def pump_payload_messages(websocket: WebSocket, bridge: GameBridge) -> None:
    """Forward everything the payload sends to the bridge until the socket closes."""
    while not bridge.closed:
        data = await websocket.receive_text()
        await bridge.handle_message(data)


async def close_socket(websocket: WebSocket, code: int = 1000, reason: Optional[str] = None) -> None:
    """Close the socket unless either side already has."""
    if websocket.client_state != WebSocketState.CONNECTED or websocket.application_state != WebSocketState.CONNECTED:
        return
    try:
        await websocket.close(code=code, reason=reason)
    except RuntimeError as e:
        logger.debug(f"Socket already closing: {e}")


@app.websocket("/rooms/{room_id}/ws")
async def game_bridge_endpoint(room_id: str, websocket: WebSocket, user_id: str = None, display_name: str = None):
    """
    One GameBridge session per socket; the socket peer is the embedded game.

    Query parameters:
    - user_id: identity issued by the identity provider
    - display_name: optional display name
    """
    logger.info(f"Bridge connection attempt for room: {room_id}, user: {user_id}")
    session = SessionContext(identity=user_id or None, display_name=display_name or None)
    if not session.is_authenticated:
        await websocket.close(code=1008, reason="Sign in to continue")
        return

    coordinator: RoomCoordinator = websocket.app.state.coordinator
    try:
        room = await coordinator.get_room(room_id)
    except RoomNotFound as e:
        logger.info(f"Bridge connection rejected: room {room_id} not found")
        await websocket.close(code=1008, reason=e.message)
        return
    if not room.has_player(session.identity):
        logger.warning(f"Bridge connection rejected: {session.identity} is not in room {room_id}")
        await websocket.close(code=1008, reason="You are not a player in this room")
        return

    await websocket.accept()
    bridge = GameBridge(coordinator, websocket.app.state.watcher, session, room_id, websocket.send_json)
    receive_task = asyncio.create_task(pump_payload_messages(websocket, bridge))
    start_task = asyncio.create_task(bridge.start())
    room_gone_task = asyncio.create_task(bridge.wait_room_gone())
    close_code, close_reason = 1000, None
    try:
        done, _ = await asyncio.wait({receive_task, start_task, room_gone_task}, return_when=asyncio.FIRST_COMPLETED)
        if start_task in done:
            start_task.result()
            done, _ = await asyncio.wait({receive_task, room_gone_task}, return_when=asyncio.FIRST_COMPLETED)
        if receive_task in done:
            receive_task.result()
        if bridge.room_gone:
            logger.info(f"Room {room_id} was deleted, closing bridge socket for {session.identity}")
            close_reason = RoomNotFound.message
    except WebSocketDisconnect:
        logger.info(f"Payload disconnected from room {room_id} ({session.identity})")
    except BridgeHandshakeTimeout as e:
        close_code, close_reason = 1011, e.message
    except PlayRoomsError as e:
        logger.error(f"Bridge error in room {room_id}: {e.message}")
        close_code, close_reason = 1011, e.message
    finally:
        for task in (start_task, receive_task, room_gone_task):
            task.cancel()
        await asyncio.gather(start_task, receive_task, room_gone_task, return_exceptions=True)
        await bridge.close()
        await close_socket(websocket, close_code, close_reason)
        logger.info(f"Bridge session ended for {session.identity} in room {room_id}")
