import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Union

import redis.asyncio as redis

from constants import WATCH_POLL_TIMEOUT
from errors import PlayRoomsError, RoomNotFound, StoreUnavailable
from logging_config import get_logger
from models import DELETED
from redis_keys import REDIS_GAME_CHANNEL, REDIS_ROOM_CHANNEL
from repository import RoomRepository
from store import TRANSIENT_ERRORS

logger = get_logger(__name__)

Callback = Callable[..., Union[None, Awaitable[None]]]


async def _invoke(callback: Optional[Callback], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class Subscription:
    """
    Handle for one live change subscription.

    Calling `cancel()` (or the handle itself) is idempotent. A delivery that
    is already running may still complete once after cancellation.

    Usage:
        async with watcher.watch_room(room_id, on_change) as sub:
            ...  # deliveries arrive while inside the block
    """

    def __init__(self, name: str):
        self.name = name
        self._subscribed = asyncio.Event()
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None

    def _start(self, coro) -> "Subscription":
        self._task = asyncio.create_task(coro, name=self.name)
        return self

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def closed(self) -> bool:
        return self._task is None or self._task.done()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._task and not self._task.done():
            self._task.cancel()
        logger.debug(f"Subscription {self.name} cancelled")

    __call__ = cancel

    async def ready(self) -> None:
        """Wait until the channel is subscribed (or the listener already ended)."""
        if self._task is None:
            return
        waiter = asyncio.ensure_future(self._subscribed.wait())
        try:
            await asyncio.wait([waiter, self._task], return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.wait([self._task])

    async def __aenter__(self) -> "Subscription":
        await self.ready()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.cancel()
        await self.wait_closed()


class RoomWatcher:
    """
    Push subscriptions over the Redis change channels.

    Each subscription owns a single listener task, so its deliveries never
    overlap. Every delivery is a fresh full read of the record (or of the
    open-rooms query), which makes delivery latest-state-wins.
    """

    def __init__(self, redis_client: redis.Redis, repository: RoomRepository):
        self.redis_client = redis_client
        self.repository = repository

    def watch_room(self, room_id: str, on_change: Callback, on_error: Optional[Callback] = None) -> Subscription:
        """
        Deliver the room's current snapshot, then a new one after every change.

        Once the room is gone `on_change(DELETED)` is called a single time and
        the subscription ends on its own. Must be called from a running loop.
        """
        sub = Subscription(f"watch-room:{room_id}")
        channel = REDIS_ROOM_CHANNEL.format(room_id=room_id)

        async def deliver() -> bool:
            try:
                room = await self.repository.get(room_id)
            except RoomNotFound:
                logger.info(f"Room {room_id} deleted, ending subscription")
                await _invoke(on_change, DELETED)
                return False
            logger.debug(f"Delivering room {room_id} snapshot ({room.status.value}, updated {room.updated_at})")
            await _invoke(on_change, room)
            return True

        return sub._start(self._listen(sub, channel, deliver, on_error))

    def watch_open_rooms(self, game_slug: str, on_change: Callback, on_error: Optional[Callback] = None) -> Subscription:
        """Deliver the full list of open rooms for a game on every change."""
        sub = Subscription(f"watch-open:{game_slug}")
        channel = REDIS_GAME_CHANNEL.format(slug=game_slug)

        async def deliver() -> bool:
            rooms = await self.repository.list_open(game_slug)
            logger.debug(f"Delivering {len(rooms)} open rooms for {game_slug}")
            await _invoke(on_change, rooms)
            return True

        return sub._start(self._listen(sub, channel, deliver, on_error))

    async def _listen(self, sub: Subscription, channel: str, deliver, on_error: Optional[Callback]) -> None:
        pubsub = self.redis_client.pubsub()
        try:
            # Subscribe before the first read so no change can slip in between
            await pubsub.subscribe(channel)
            sub._subscribed.set()
            logger.debug(f"Subscribed to channel {channel}")

            if not await self._safe_deliver(deliver, channel, on_error):
                return
            while not sub.cancelled:
                # Bounded wait so cancellation is noticed even if Task.cancel() is lost
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=WATCH_POLL_TIMEOUT)
                if message is None or message["type"] != "message":
                    continue
                if sub.cancelled:
                    break
                if not await self._safe_deliver(deliver, channel, on_error):
                    return
            logger.debug(f"Listener for {channel} stopped after cancel")
        except asyncio.CancelledError:
            logger.debug(f"Listener for {channel} cancelled")
            raise
        except TRANSIENT_ERRORS as e:
            logger.error(f"Lost subscription to {channel}: {e}", exc_info=True)
            await _invoke(on_error, StoreUnavailable())
        except PlayRoomsError as e:
            logger.error(f"Watching {channel} failed: {e.message}")
            await _invoke(on_error, e)
        except Exception as e:
            logger.error(f"Error in listener for {channel}: {e}", exc_info=True)
        finally:
            sub._subscribed.set()
            sub._cancelled = True
            try:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
                logger.debug(f"Closed pub/sub connection for {channel}")
            except Exception as e:
                logger.debug(f"Error closing pub/sub for {channel}: {e}")

    @staticmethod
    async def _safe_deliver(deliver, channel: str, on_error: Optional[Callback]) -> bool:
        try:
            return await deliver()
        except PlayRoomsError:
            raise
        except TRANSIENT_ERRORS:
            raise
        except Exception as e:
            # A failing callback does not end the subscription
            logger.error(f"Subscriber callback for {channel} failed: {e}", exc_info=True)
            await _invoke(on_error, e)
            return True
