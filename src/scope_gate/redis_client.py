"""Shared Redis connection for the scope store."""

import asyncio
from typing import Optional, Tuple

from loguru import logger
from redis import asyncio as aioredis

from .config import Config
from .errors import BackendUnavailable

_redis_client: Optional[aioredis.Redis] = None
_redis_pool: Optional[aioredis.ConnectionPool] = None


def _retry_delay(attempt: int) -> float:
    """Exponential backoff between connection attempts, capped."""
    return min(
        Config.REDIS_CONNECT_RETRY_DELAY * (2 ** (attempt - 1)),
        Config.REDIS_CONNECT_RETRY_MAX_DELAY,
    )


async def _discard_connection() -> None:
    global _redis_client, _redis_pool

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None


async def get_redis_client() -> aioredis.Redis:
    """
    Get or create the pooled client used by RedisScopeStore.

    The first call pings Redis, retrying with backoff up to
    Config.REDIS_CONNECT_RETRIES times.

    Raises:
        BackendUnavailable: Redis could not be reached
    """
    global _redis_client, _redis_pool

    if _redis_client is not None:
        return _redis_client

    for attempt in range(1, Config.REDIS_CONNECT_RETRIES + 1):
        try:
            _redis_pool = aioredis.ConnectionPool.from_url(
                Config.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                max_connections=Config.REDIS_MAX_CONNECTIONS,
                socket_connect_timeout=Config.REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
            )
            _redis_client = aioredis.Redis(connection_pool=_redis_pool)
            await _redis_client.ping()
        except (aioredis.ConnectionError, aioredis.TimeoutError) as exc:
            logger.warning(
                f"Scope store connection attempt {attempt}/{Config.REDIS_CONNECT_RETRIES} "
                f"failed: {exc}"
            )
            await _discard_connection()
            if attempt >= Config.REDIS_CONNECT_RETRIES:
                logger.error(f"Scope store unreachable at {Config.REDIS_URL}")
                raise BackendUnavailable(f"scope store unreachable: {exc}") from exc
            await asyncio.sleep(_retry_delay(attempt))
        else:
            logger.debug(f"Scope store connected ({Config.REDIS_URL})")
            break
    return _redis_client


async def close_redis_client() -> None:
    """Close the shared client and its pool."""
    await _discard_connection()


async def check_redis_health(prefix: Optional[str] = None) -> Tuple[bool, str]:
    """
    Report whether the scope store is reachable and how many scopes it holds.

    Returns:
        (healthy, message) tuple; never raises
    """
    prefix = prefix or Config.SCOPE_KEY_PREFIX
    try:
        redis = await get_redis_client()
        count = await redis.scard(f"{prefix}:scopes")
    except BackendUnavailable as exc:
        return False, str(exc)
    except (aioredis.ConnectionError, aioredis.TimeoutError) as exc:
        return False, f"scope store unreachable: {exc}"
    except aioredis.RedisError as exc:
        return False, f"scope store health check error: {exc}"
    return True, f"Scope store reachable ({count} permission scopes)"
