import json
import secrets
import uuid
from typing import Any, Callable, Dict, List, Optional, Union

import redis.asyncio as redis
from redis.exceptions import WatchError

from constants import MAX_PLAYERS, STORE_MAX_TX_RETRIES
from errors import (
    InvalidNextTurn,
    InvalidWinner,
    NotParticipant,
    NotYourTurn,
    RoomFull,
    RoomNotFound,
    StoreUnavailable,
)
from logging_config import get_logger
from models import DELETED, DRAW, Room, RoomStatus
from redis_keys import (
    REDIS_GAME_CHANNEL,
    REDIS_INVITE_KEY,
    REDIS_META_KEY,
    REDIS_OPEN_ROOMS_KEY,
    REDIS_ROOM_CHANNEL,
)
from store import store_operation

logger = get_logger(__name__)

ROOM_CHANGED = "room_changed"

# apply(room, now_ms) -> new Room, DELETED, or None for "leave as is"
Mutation = Callable[[Room, int], Union[Room, object, None]]


class RoomRepository:
    """
    Typed access to Room records stored as Redis hashes.

    Every mutation of an existing room goes through `_transact`: WATCH the
    record, re-read it, apply the change in memory, then MULTI/EXEC. A
    concurrent writer touching the record makes EXEC fail with WatchError
    and the whole attempt is repeated against the fresh record. Change
    events are queued inside the same MULTI so subscribers hear about a
    write if and only if it committed.
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    # ---- reads ----

    @store_operation
    async def get(self, room_id: str) -> Room:
        logger.debug(f"Fetching room {room_id}")
        raw = await self.redis_client.hgetall(REDIS_META_KEY.format(room_id=room_id))
        if not raw:
            logger.debug(f"Room {room_id} not found in Redis")
            raise RoomNotFound(room_id)
        return Room.from_redis(raw)

    @store_operation
    async def list_open(self, game_slug: str) -> List[Room]:
        """All waiting rooms for a game, newest first."""
        room_ids = await self.redis_client.zrevrange(REDIS_OPEN_ROOMS_KEY.format(slug=game_slug), 0, -1)
        if not room_ids:
            return []
        async with self.redis_client.pipeline(transaction=False) as pipe:
            for room_id in room_ids:
                pipe.hgetall(REDIS_META_KEY.format(room_id=room_id))
            records = await pipe.execute()

        rooms = []
        for raw in records:
            if not raw:
                continue  # deleted between the index read and the fetch
            room = Room.from_redis(raw)
            if room.status == RoomStatus.WAITING:
                rooms.append(room)
        logger.debug(f"Game {game_slug} has {len(rooms)} open rooms")
        return rooms

    # ---- writes ----

    @store_operation
    async def create(self, game_slug: str, creator_identity: str, creator_name: Optional[str] = None) -> str:
        room_id = uuid.uuid4().hex
        now = await self._server_time_ms(self.redis_client)
        room = Room(
            id=room_id,
            game_slug=game_slug,
            players=[creator_identity],
            player_names=[creator_name or ""],
            current_turn=creator_identity,
            game_state={},
            status=RoomStatus.WAITING,
            winner=None,
            created_by=creator_identity,
            created_at=now,
            updated_at=now,
        )
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.hset(REDIS_META_KEY.format(room_id=room_id), mapping=room.to_redis())
            pipe.zadd(REDIS_OPEN_ROOMS_KEY.format(slug=game_slug), {room_id: now})
            self._queue_change_events(pipe, room)
            await pipe.execute()
        logger.info(f"Room {room_id} created for game {game_slug} by {creator_identity}")
        return room_id

    async def conditional_add_player(self, room_id: str, identity: str, name: Optional[str] = None) -> Room:
        """
        The only sanctioned way to add a participant.

        Rejoining is a no-op; a third identity, or anyone joining a
        finished room, gets RoomFull. The status flips to playing exactly
        when this append brings the room to two players.
        """
        def apply(room: Room, now: int):
            if room.has_player(identity):
                logger.debug(f"{identity} is already in room {room_id}")
                return None
            if len(room.players) >= MAX_PLAYERS or room.status == RoomStatus.FINISHED:
                raise RoomFull(room_id)
            players = room.players + [identity]
            player_names = room.player_names + [name or ""]
            status = RoomStatus.PLAYING if len(players) == MAX_PLAYERS else room.status
            return room.model_copy(update={
                "players": players,
                "player_names": player_names,
                "status": status,
                "updated_at": now,
            })

        room = await self._transact(room_id, apply)
        logger.info(f"{identity} joined room {room_id} ({len(room.players)}/{MAX_PLAYERS}, {room.status.value})")
        return room

    async def remove_player(self, room_id: str, identity: str):
        """Remove a player; returns the updated room, or DELETED when nobody is left."""
        def apply(room: Room, now: int):
            if not room.has_player(identity):
                return None
            index = room.players.index(identity)
            players = [p for p in room.players if p != identity]
            if not players:
                return DELETED
            player_names = list(room.player_names)
            if index < len(player_names):
                del player_names[index]
            return room.model_copy(update={
                "players": players,
                "player_names": player_names,
                "status": RoomStatus.FINISHED,
                "updated_at": now,
            })

        result = await self._transact(room_id, apply)
        if result is DELETED:
            logger.info(f"Room {room_id} deleted (last player {identity} left)")
        else:
            logger.info(f"Room {room_id} now {result.status.value} with players {result.players}")
        return result

    async def update_game_state(
        self,
        room_id: str,
        new_state: Dict[str, Any],
        next_turn: Optional[str] = None,
        expected_turn: Optional[str] = None,
    ) -> Room:
        """
        Replace gameState, and currentTurn when `next_turn` is given.

        With `expected_turn` the write only commits while the room is
        playing and `currentTurn == expected_turn`; otherwise NotYourTurn
        and nothing is written.
        """
        def apply(room: Room, now: int):
            if expected_turn is not None and (
                room.status != RoomStatus.PLAYING or room.current_turn != expected_turn
            ):
                raise NotYourTurn(room_id, expected_turn)
            if next_turn is not None and not room.has_player(next_turn):
                raise InvalidNextTurn()
            update = {"game_state": new_state, "updated_at": now}
            if next_turn is not None:
                update["current_turn"] = next_turn
            return room.model_copy(update=update)

        room = await self._transact(room_id, apply)
        logger.debug(f"Game state updated for room {room_id}, current turn {room.current_turn}")
        return room

    async def set_winner(self, room_id: str, winner: str, reported_by: Optional[str] = None) -> Room:
        """Record the outcome and finish the room. A finished room keeps its first outcome."""
        def apply(room: Room, now: int):
            if reported_by is not None and not room.has_player(reported_by):
                raise NotParticipant()
            if winner != DRAW and not room.has_player(winner):
                raise InvalidWinner()
            if room.status == RoomStatus.FINISHED:
                logger.debug(f"Room {room_id} already finished, ignoring outcome {winner}")
                return None
            return room.model_copy(update={
                "winner": winner,
                "status": RoomStatus.FINISHED,
                "updated_at": now,
            })

        room = await self._transact(room_id, apply)
        logger.info(f"Room {room_id} finished. Winner: {room.winner}")
        return room

    # ---- invites ----

    @store_operation
    async def create_invite(self, room_id: str, valid_for_secs: int) -> str:
        await self.get(room_id)
        token = secrets.token_urlsafe(16)
        await self.redis_client.set(REDIS_INVITE_KEY.format(token=token), room_id, ex=valid_for_secs)
        logger.info(f"Invite created for room {room_id}, valid for {valid_for_secs}s")
        return token

    @store_operation
    async def resolve_invite(self, token: str) -> Optional[str]:
        return await self.redis_client.get(REDIS_INVITE_KEY.format(token=token))

    # ---- internals ----

    @store_operation
    async def _transact(self, room_id: str, apply: Mutation):
        key = REDIS_META_KEY.format(room_id=room_id)
        async with self.redis_client.pipeline(transaction=True) as pipe:
            for attempt in range(1, STORE_MAX_TX_RETRIES + 1):
                try:
                    await pipe.watch(key)
                    raw = await pipe.hgetall(key)
                    if not raw:
                        raise RoomNotFound(room_id)
                    room = Room.from_redis(raw)
                    now = max(await self._server_time_ms(pipe), room.updated_at)

                    result = apply(room, now)
                    if result is None:
                        await pipe.unwatch()
                        return room

                    pipe.multi()
                    open_key = REDIS_OPEN_ROOMS_KEY.format(slug=room.game_slug)
                    if result is DELETED:
                        pipe.delete(key)
                        pipe.zrem(open_key, room_id)
                        self._queue_change_events(pipe, room)
                    else:
                        # Replace the whole hash so dropped fields do not linger
                        pipe.delete(key)
                        pipe.hset(key, mapping=result.to_redis())
                        if result.status == RoomStatus.WAITING:
                            pipe.zadd(open_key, {room_id: result.created_at})
                        else:
                            pipe.zrem(open_key, room_id)
                        self._queue_change_events(pipe, result)
                    await pipe.execute()
                    return result
                except WatchError:
                    logger.debug(f"Room {room_id} changed concurrently, retrying (attempt {attempt})")
                    continue

        logger.error(f"Gave up updating room {room_id} after {STORE_MAX_TX_RETRIES} conflicting attempts")
        raise StoreUnavailable()

    @staticmethod
    def _queue_change_events(pipe, room: Room) -> None:
        event = json.dumps({"type": ROOM_CHANGED, "room_id": room.id, "game_slug": room.game_slug})
        pipe.publish(REDIS_ROOM_CHANNEL.format(room_id=room.id), event)
        pipe.publish(REDIS_GAME_CHANNEL.format(slug=room.game_slug), event)

    @staticmethod
    async def _server_time_ms(client) -> int:
        seconds, microseconds = await client.time()
        return int(seconds) * 1000 + int(microseconds) // 1000
