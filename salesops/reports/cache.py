"""
Report Payload Cache

Assembled reports are stored in Redis as JSON under
`reports:<kind>:<from>..<to>:<options>` for a short TTL.
"""

import json
from typing import Any, Optional

import structlog
from redis.asyncio import Redis, ConnectionPool

from salesops.config import get_settings

logger = structlog.get_logger(__name__)

_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[Redis] = None


async def init_redis(url: Optional[str] = None) -> Redis:
    """Open the shared pool and check the server answers"""
    global _redis_pool, _redis_client

    if _redis_client is not None:
        return _redis_client

    redis_settings = get_settings().redis
    _redis_pool = ConnectionPool.from_url(
        url or redis_settings.get_url(),
        max_connections=redis_settings.max_connections,
        socket_timeout=redis_settings.socket_timeout,
        decode_responses=True,
    )
    _redis_client = Redis(connection_pool=_redis_pool)

    try:
        await _redis_client.ping()
    except Exception as e:
        logger.error("Report cache unreachable", error=str(e))
        await close_redis()
        raise

    logger.info("Report cache connected", db=redis_settings.db)
    return _redis_client


async def close_redis() -> None:
    global _redis_pool, _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None


def get_redis() -> Redis:
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


class CacheManager:
    """
    JSON values under one key namespace.

    Example:
        cache = CacheManager("reports", default_ttl=300)
        await cache.set("overview:2025-01-01..2025-01-31", payload)
        payload = await cache.get("overview:2025-01-01..2025-01-31")
    """

    def __init__(self, namespace: str, default_ttl: int = 300, client: Optional[Redis] = None):
        self.namespace = namespace
        self.default_ttl = default_ttl
        self._client = client

    @property
    def client(self) -> Redis:
        return self._client or get_redis()

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        raw = await self.client.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable cache entry", key=self._key(key))
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        # Decimal and date values fall back to their string form
        await self.client.setex(self._key(key), ttl or self.default_ttl, json.dumps(value, default=str))


def reports_cache(client: Optional[Redis] = None) -> CacheManager:
    """Cache for assembled report payloads"""
    return CacheManager("reports", default_ttl=get_settings().reports.cache_ttl_seconds, client=client)
