from functools import wraps

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from constants import REDIS_URL, STORE_RETRIES
from errors import StoreUnavailable
from logging_config import get_logger

logger = get_logger(__name__)

TRANSIENT_ERRORS = (RedisConnectionError, RedisTimeoutError)


def create_redis_client(url: str = REDIS_URL) -> redis.Redis:
    """
    Build the async Redis client used as the document store.

    Transient connection failures are retried by the client itself with
    exponential backoff, `STORE_RETRIES` times, before the error reaches us.
    """
    logger.info(f"Creating Redis client for {url.split('@')[-1]} (retries={STORE_RETRIES})")
    return redis.from_url(
        url,
        decode_responses=True,
        retry=Retry(ExponentialBackoff(cap=1.0, base=0.05), STORE_RETRIES),
        retry_on_error=list(TRANSIENT_ERRORS),
    )


async def ping_store(client: redis.Redis) -> None:
    try:
        await client.ping()
    except TRANSIENT_ERRORS as e:
        logger.error(f"Redis is not reachable: {e}", exc_info=True)
        raise StoreUnavailable() from e
    logger.info("Redis client connected successfully")


def store_operation(func):
    """
    Translate transient Redis failures into StoreUnavailable.

    Usage:
        @store_operation
        async def get(self, room_id): ...

    Domain errors raised inside the operation pass through untouched.
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except TRANSIENT_ERRORS as e:
            logger.error(f"Store operation {func.__name__} failed: {e}", exc_info=True)
            raise StoreUnavailable() from e

    return wrapper
