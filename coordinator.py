from typing import Any, Dict, List, Optional

from constants import INVITE_TTL_SECONDS
from errors import NotParticipant, NotYourTurn, RoomFull, RoomNotFound, Unauthenticated
from invites import build_invite_link, parse_invite_link
from logging_config import get_logger
from models import Room, RoomStatus, SessionContext
from repository import RoomRepository

logger = get_logger(__name__)


def require_session(session: Optional[SessionContext]) -> SessionContext:
    if session is None or not session.is_authenticated:
        raise Unauthenticated()
    return session


class RoomCoordinator:
    """
    Room lifecycle entry points.

    Every call takes the caller's SessionContext explicitly; membership
    changes are delegated to the repository's atomic primitives.
    """

    def __init__(self, repository: RoomRepository):
        self.repository = repository

    async def create_room(self, game_slug: str, session: SessionContext) -> str:
        session = require_session(session)
        return await self.repository.create(game_slug, session.identity, session.display_name)

    async def get_room(self, room_id: str) -> Room:
        return await self.repository.get(room_id)

    async def list_open_rooms(self, game_slug: str) -> List[Room]:
        return await self.repository.list_open(game_slug)

    async def join_room(self, room_id: str, session: SessionContext) -> Room:
        session = require_session(session)
        try:
            return await self.repository.conditional_add_player(room_id, session.identity, session.display_name)
        except (RoomFull, RoomNotFound) as e:
            logger.warning(f"Join room failed for {session.identity} in {room_id}: {e.message}")
            raise

    async def join_by_invite_link(self, link_token: str, session: SessionContext) -> Room:
        """
        Join through a shared link. The caller must already be signed in;
        an unauthenticated call fails instead of being queued.
        """
        session = require_session(session)
        room_id = await self.resolve_invite(link_token)
        if not room_id:
            logger.warning(f"Invite link {link_token!r} does not point at a room")
            raise RoomNotFound(None)
        return await self.join_room(room_id, session)

    async def resolve_invite(self, link_token: str) -> Optional[str]:
        """
        Room id a link or token points at.

        A link that carries an invite token is only honoured while the token
        is live and names the same room.
        """
        target = parse_invite_link(link_token)
        if target.room_id and target.token:
            room_id = await self.repository.resolve_invite(target.token)
            if room_id != target.room_id:
                logger.warning(f"Invite for room {target.room_id} is expired or does not match ({room_id})")
                raise RoomNotFound(target.room_id)
            return room_id
        if target.room_id:
            return target.room_id
        if target.token:
            room_id = await self.repository.resolve_invite(target.token)
            # Not a known invite token: treat it as a bare room id
            return room_id or target.token
        return None

    async def create_invite(self, room_id: str, session: SessionContext, valid_for_secs: int = INVITE_TTL_SECONDS) -> str:
        session = require_session(session)
        room = await self.repository.get(room_id)
        if not room.has_player(session.identity):
            raise NotParticipant()
        token = await self.repository.create_invite(room_id, valid_for_secs)
        return build_invite_link(room.game_slug, room_id, token)

    async def leave_room(self, room_id: str, session: SessionContext) -> None:
        session = require_session(session)
        try:
            await self.repository.remove_player(room_id, session.identity)
        except RoomNotFound:
            logger.debug(f"Leave ignored, room {room_id} no longer exists")

    async def report_move(
        self,
        room_id: str,
        session: SessionContext,
        new_state: Dict[str, Any],
        next_turn: Optional[str] = None,
    ) -> Room:
        session = require_session(session)
        room = await self.repository.get(room_id)
        if room.status != RoomStatus.PLAYING or room.current_turn != session.identity:
            logger.warning(f"Move rejected in room {room_id}: {session.identity} is not on turn ({room.current_turn})")
            raise NotYourTurn(room_id, session.identity)
        # The write re-checks the turn at commit time
        return await self.repository.update_game_state(
            room_id, new_state, next_turn, expected_turn=session.identity
        )

    async def report_outcome(self, room_id: str, session: SessionContext, winner: str) -> Room:
        session = require_session(session)
        return await self.repository.set_winner(room_id, winner, reported_by=session.identity)
