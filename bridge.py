"""
Host side of the message protocol with the embedded game payload.

The payload runs sandboxed and untrusted; it only ever sees these messages:

    payload -> host   {"type": "READY"}
    host -> payload   {"type": "INIT_MULTIPLAYER", "identity", "displayName", "roomId", "gameState", "currentTurn"}
    host -> payload   {"type": "STATE_SYNC", "roomId", "gameState", "currentTurn"}
    payload -> host   {"type": "MOVE", "roomId", "newState", "nextTurn"}
    host -> payload   {"type": "MOVE_REJECTED", "roomId"}
    payload -> host   {"type": "OUTCOME", "roomId", "winner"}

Messages are addressed by roomId; anything addressed to another room is
ignored on both sides.
"""
import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from constants import BRIDGE_HANDSHAKE_TIMEOUT
from coordinator import RoomCoordinator
from errors import (
    BridgeHandshakeTimeout,
    InvalidNextTurn,
    InvalidWinner,
    NotParticipant,
    NotYourTurn,
    RoomNotFound,
)
from logging_config import get_logger
from models import DELETED, Room, SessionContext
from watcher import RoomWatcher, Subscription

logger = get_logger(__name__)

READY = "READY"
INIT_MULTIPLAYER = "INIT_MULTIPLAYER"
STATE_SYNC = "STATE_SYNC"
MOVE = "MOVE"
MOVE_REJECTED = "MOVE_REJECTED"
OUTCOME = "OUTCOME"

Send = Callable[[Dict[str, Any]], Awaitable[None]]


def init_message(session: SessionContext, room: Room) -> Dict[str, Any]:
    return {
        "type": INIT_MULTIPLAYER,
        "identity": session.identity,
        "displayName": session.display_name or "",
        "roomId": room.id,
        "gameState": room.game_state,
        "currentTurn": room.current_turn,
    }


def state_sync_message(room: Room) -> Dict[str, Any]:
    return {
        "type": STATE_SYNC,
        "roomId": room.id,
        "gameState": room.game_state,
        "currentTurn": room.current_turn,
    }


def move_rejected_message(room_id: str) -> Dict[str, Any]:
    return {"type": MOVE_REJECTED, "roomId": room_id}


def accepts_message(message: Dict[str, Any], room_id: str) -> bool:
    """
    Addressing rule shared by both ends of the bridge.

    The host applies it to every inbound MOVE and OUTCOME; payload authors
    apply it to every host message before acting on it.
    """
    return isinstance(message, dict) and message.get("roomId") == room_id


class GameBridge:
    """
    One bridge per (session, room, embedded payload).

    `send` delivers a message to the payload; inbound payload messages are
    fed to `handle_message`. `start()` performs the READY handshake and then
    keeps the payload in sync with the room until `close()`.
    """

    def __init__(
        self,
        coordinator: RoomCoordinator,
        watcher: RoomWatcher,
        session: SessionContext,
        room_id: str,
        send: Send,
        handshake_timeout: float = BRIDGE_HANDSHAKE_TIMEOUT,
    ):
        self.coordinator = coordinator
        self.watcher = watcher
        self.session = session
        self.room_id = room_id
        self._send = send
        self.handshake_timeout = handshake_timeout
        self._ready = asyncio.Event()
        self._send_lock = asyncio.Lock()
        self._initialized = False
        self._closed = False
        self._room_gone = asyncio.Event()
        self._subscription: Optional[Subscription] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def room_gone(self) -> bool:
        return self._room_gone.is_set()

    async def wait_room_gone(self) -> None:
        """Return once the room has been deleted underneath the bridge."""
        await self._room_gone.wait()

    async def start(self) -> None:
        """
        Wait for READY, then send INIT_MULTIPLAYER.

        Without READY inside the timeout, INIT_MULTIPLAYER is sent once anyway
        and the bridge waits one more window before giving up.
        """
        if not await self._wait_ready():
            logger.warning(f"No READY from payload for room {self.room_id} after {self.handshake_timeout}s, resending init once")
            await self._send_init()
            if not await self._wait_ready():
                logger.error(f"Payload for room {self.room_id} never became ready")
                raise BridgeHandshakeTimeout()
        await self._send_init()
        self._initialized = True
        logger.info(f"Bridge handshake complete for {self.session.identity} in room {self.room_id}")

        self._subscription = self.watcher.watch_room(self.room_id, self._on_room_change, self._on_watch_error)
        await self._subscription.ready()

    async def handle_message(self, message: Union[str, Dict[str, Any]]) -> None:
        if isinstance(message, str):
            try:
                message = json.loads(message)
            except json.JSONDecodeError as e:
                logger.warning(f"Invalid JSON from payload in room {self.room_id}: {e}")
                return
        if not isinstance(message, dict):
            logger.warning(f"Ignoring non-object payload message in room {self.room_id}")
            return

        message_type = message.get("type")
        if message_type == READY:
            self._ready.set()
            if self._initialized:
                # Payload reloaded; hand it the current state again
                await self._send_init()
            return

        if not accepts_message(message, self.room_id):
            logger.debug(f"Ignoring {message_type} addressed to room {message.get('roomId')} (bridge is {self.room_id})")
            return

        if message_type == MOVE:
            await self._handle_move(message)
        elif message_type == OUTCOME:
            await self._handle_outcome(message)
        else:
            logger.warning(f"Unknown payload message type {message_type!r} in room {self.room_id}")

    async def close(self) -> None:
        self._closed = True
        if self._subscription is None:
            return
        subscription, self._subscription = self._subscription, None
        subscription.cancel()
        await subscription.wait_closed()
        logger.debug(f"Bridge closed for room {self.room_id}")

    async def __aenter__(self) -> "GameBridge":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ---- internals ----

    async def _wait_ready(self) -> bool:
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=self.handshake_timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _send_init(self) -> None:
        room = await self.coordinator.get_room(self.room_id)
        await self._deliver(init_message(self.session, room))

    async def _deliver(self, message: Dict[str, Any]) -> None:
        async with self._send_lock:
            await self._send(message)

    async def _handle_move(self, message: Dict[str, Any]) -> None:
        new_state = message.get("newState")
        next_turn = message.get("nextTurn")
        if not isinstance(new_state, dict):
            logger.warning(f"Move without a state object from {self.session.identity} in room {self.room_id}")
            await self._deliver(move_rejected_message(self.room_id))
            return
        try:
            await self.coordinator.report_move(self.room_id, self.session, new_state, next_turn)
        except (NotYourTurn, InvalidNextTurn, RoomNotFound) as e:
            logger.info(f"Move from {self.session.identity} rejected in room {self.room_id}: {e.message}")
            await self._deliver(move_rejected_message(self.room_id))

    async def _handle_outcome(self, message: Dict[str, Any]) -> None:
        winner = message.get("winner")
        try:
            await self.coordinator.report_outcome(self.room_id, self.session, winner)
        except (InvalidWinner, NotParticipant, RoomNotFound) as e:
            logger.warning(f"Outcome {winner!r} from {self.session.identity} rejected in room {self.room_id}: {e.message}")

    async def _on_room_change(self, snapshot) -> None:
        if self._closed:
            return
        if snapshot is DELETED:
            logger.info(f"Room {self.room_id} was deleted, closing bridge")
            self._closed = True
            self._room_gone.set()
            return
        await self._deliver(state_sync_message(snapshot))

    async def _on_watch_error(self, error) -> None:
        logger.error(f"Bridge for room {self.room_id} lost its room subscription: {error}")
