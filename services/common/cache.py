"""Shared async Redis clients (used by the cross-process sync lock)."""

from __future__ import annotations

from redis.asyncio import Redis

from .config import ServiceSettings

REDIS_SOCKET_TIMEOUT_SECONDS = 5.0

_CLIENTS: dict[str, Redis] = {}


def get_redis_client(redis_url: str) -> Redis:
    """Return the process-wide client for ``redis_url``."""

    client = _CLIENTS.get(redis_url)
    if client is None:
        client = _CLIENTS[redis_url] = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
            health_check_interval=30,
        )
    return client


def resolve_redis(settings: ServiceSettings) -> Redis | None:
    """Redis client from settings, or ``None`` so callers fall back to in-process locking."""

    if not settings.redis_url:
        return None
    return get_redis_client(settings.redis_url)


async def close_redis_connections() -> None:
    clients = list(_CLIENTS.values())
    _CLIENTS.clear()
    for client in clients:
        await client.aclose()
