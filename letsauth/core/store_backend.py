"""Shared plumbing for the TTL stores.

Provides the Redis client factory used by the Redis-backed stores and the
timeout guard every store call runs under. Any timeout or Redis failure is
mapped to StoreUnavailableError so callers fail closed.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

import redis.asyncio as redis
import structlog

from letsauth.core.errors import StoreUnavailableError

logger = structlog.get_logger()

T = TypeVar("T")

KEY_PREFIX = "letsauth"


def create_redis_client(url: str, timeout: float) -> redis.Redis:
    """Create an async Redis client with bounded socket timeouts.

    Args:
        url: Redis connection URL.
        timeout: Connect and socket timeout in seconds.

    Returns:
        Redis client (connection is established lazily on first command).
    """
    return redis.from_url(
        url,
        decode_responses=True,
        socket_connect_timeout=timeout,
        socket_timeout=timeout,
    )


async def guarded(operation: str, awaitable: Awaitable[T], timeout: float) -> T:
    """Await a store operation with a deadline.

    Args:
        operation: Operation name, for logging.
        awaitable: The pending store call.
        timeout: Deadline in seconds.

    Returns:
        Whatever the store operation returns.

    Raises:
        StoreUnavailableError: On timeout or any Redis error.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except TimeoutError as exc:
        logger.error("Store operation timed out", operation=operation, timeout=timeout)
        raise StoreUnavailableError() from exc
    except redis.RedisError as exc:
        logger.error(
            "Store operation failed",
            operation=operation,
            error=type(exc).__name__,
        )
        raise StoreUnavailableError() from exc
