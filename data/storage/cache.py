# data/storage/cache.py

import logging
from typing import Any, Dict, Optional

import orjson
import redis.asyncio as redis
from redis.asyncio.client import Redis
from redis.exceptions import RedisError

from utils.errors import CacheError

logger = logging.getLogger(__name__)


class CacheManager:
    """
    Redis fast-path cache for analysis results.

    Values are JSON documents encoded with orjson. Backend failures are raised
    as CacheError; callers decide whether a failure is a miss.
    """

    def __init__(self, redis_url: str, default_ttl: int = 1800, client: Optional[Redis] = None):
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self.redis_client: Optional[Redis] = client
        self.is_connected = client is not None
        self.stats = {'hits': 0, 'misses': 0, 'errors': 0, 'writes': 0}

    async def connect(self) -> None:
        """Establish connection to Redis server."""
        try:
            self.redis_client = redis.from_url(
                self.redis_url,
                decode_responses=False,
                socket_keepalive=True,
                health_check_interval=30,
            )
            await self.redis_client.ping()
            self.is_connected = True
            logger.info("Successfully connected to Redis cache")
        except (RedisError, OSError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise CacheError(f"Redis connection failed: {e}") from e

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            self.is_connected = False
            logger.info("Disconnected from Redis cache")

    def _require_client(self) -> Redis:
        if self.redis_client is None:
            raise CacheError("Redis cache is not connected")
        return self.redis_client

    async def get_json(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Get a JSON document.

        Returns:
            The decoded document, or None when the key is missing or holds
            something that is not a JSON object.
        """
        client = self._require_client()
        try:
            value = await client.get(key)
        except RedisError as e:
            self.stats['errors'] += 1
            raise CacheError(f"Cache get failed for {key}: {e}") from e

        if value is None:
            self.stats['misses'] += 1
            return None

        try:
            document = orjson.loads(value)
        except orjson.JSONDecodeError:
            logger.warning(f"Discarding undecodable cache value at {key}")
            self.stats['misses'] += 1
            return None

        if not isinstance(document, dict):
            self.stats['misses'] += 1
            return None

        self.stats['hits'] += 1
        return document

    async def set_json(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        """Store a JSON document with a TTL in seconds (no expiry when ttl <= 0)"""
        client = self._require_client()
        ttl = self.default_ttl if ttl is None else ttl
        serialized = orjson.dumps(value)
        try:
            if ttl > 0:
                await client.setex(key, ttl, serialized)
            else:
                await client.set(key, serialized)
        except RedisError as e:
            self.stats['errors'] += 1
            raise CacheError(f"Cache set failed for {key}: {e}") from e
        self.stats['writes'] += 1

    async def delete(self, key: str) -> bool:
        client = self._require_client()
        try:
            return bool(await client.delete(key))
        except RedisError as e:
            raise CacheError(f"Cache delete failed for {key}: {e}") from e

    def get_stats(self) -> Dict[str, Any]:
        lookups = self.stats['hits'] + self.stats['misses']
        return {
            **self.stats,
            'hit_rate': self.stats['hits'] / lookups if lookups else 0.0,
            'connected': self.is_connected,
        }
