from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Request

from coordinator import RoomCoordinator
from invites import build_invite_link
from logging_config import get_logger
from models import Room, SessionContext
from schemas.rooms import (
    CreateRoomRequest,
    CreateRoomResponse,
    InviteRequest,
    InviteResponse,
    JoinByLinkRequest,
    LeaveRoomResponse,
    OutcomeRequest,
)

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


def get_coordinator(request: Request) -> RoomCoordinator:
    return request.app.state.coordinator


def get_session(
    x_user_id: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
) -> SessionContext:
    # Identity headers are set by the upstream identity provider
    return SessionContext(identity=x_user_id or None, display_name=x_user_name or None)


def build_ws_url(request: Request, room_id: str) -> str:
    base_url = str(request.base_url).rstrip('/')
    ws_base = base_url.replace("http://", "ws://").replace("https://", "wss://")
    return f"{ws_base}/rooms/{room_id}/ws"


@rooms_router.post("/", response_model=CreateRoomResponse, status_code=201)
async def create_room(
    body: CreateRoomRequest,
    request: Request,
    session: SessionContext = Depends(get_session),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    logger.info(f"Room creation request for game {body.game_slug} from {session.identity}")
    room_id = await coordinator.create_room(body.game_slug, session)
    return CreateRoomResponse(
        room_id=room_id,
        invite_url=build_invite_link(body.game_slug, room_id),
        ws_url=build_ws_url(request, room_id),
    )


@rooms_router.get("/open/{game_slug}", response_model=List[Room])
async def list_open_rooms(game_slug: str, coordinator: RoomCoordinator = Depends(get_coordinator)):
    return await coordinator.list_open_rooms(game_slug)


@rooms_router.post("/join-link", response_model=Room)
async def join_by_invite_link(
    body: JoinByLinkRequest,
    session: SessionContext = Depends(get_session),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    return await coordinator.join_by_invite_link(body.link, session)


@rooms_router.get("/{room_id}", response_model=Room)
async def get_room(room_id: str, coordinator: RoomCoordinator = Depends(get_coordinator)):
    return await coordinator.get_room(room_id)


@rooms_router.post("/{room_id}/join", response_model=Room)
async def join_room(
    room_id: str,
    session: SessionContext = Depends(get_session),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    logger.info(f"Join room request for {room_id} from {session.identity}")
    return await coordinator.join_room(room_id, session)


@rooms_router.post("/{room_id}/leave", response_model=LeaveRoomResponse)
async def leave_room(
    room_id: str,
    session: SessionContext = Depends(get_session),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    logger.info(f"Leave room request for {room_id} from {session.identity}")
    await coordinator.leave_room(room_id, session)
    return LeaveRoomResponse(message="Left room")


@rooms_router.post("/{room_id}/outcome", response_model=Room)
async def report_outcome(
    room_id: str,
    body: OutcomeRequest,
    session: SessionContext = Depends(get_session),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    return await coordinator.report_outcome(room_id, session, body.winner)


@rooms_router.post("/{room_id}/invite", response_model=InviteResponse)
async def create_invite(
    room_id: str,
    body: InviteRequest,
    session: SessionContext = Depends(get_session),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    invite_url = await coordinator.create_invite(room_id, session, body.valid_for_secs)
    return InviteResponse(invite_url=invite_url)
