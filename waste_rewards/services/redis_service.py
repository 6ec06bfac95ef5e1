#!/usr/bin/env python3
"""
Redis Service for the Waste Rewards API

Holds short-lived shared state that must survive across API workers:

- Revoked anonymous session ids (sign-out), expiring with the token
- Cached advisory text (handling guides) keyed by classification/priority

Redis is optional. When REDIS_URL is missing or the server is unreachable the
service reports is_connected=False and every call degrades to a no-op.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import redis.asyncio as redis
from redis.asyncio import ConnectionPool
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

REVOKED_PREFIX = "waste_rewards:revoked:"
ADVICE_PREFIX = "waste_rewards:advice:"


class RedisService:
    """
    Redis access with graceful fallback when unavailable.
    """

    def __init__(self, redis_url: str = "", default_ttl: int = 300):
        self.redis_url = (redis_url or "").strip()
        self.default_ttl = default_ttl
        self.redis_client: Optional[redis.Redis] = None
        self.connection_pool: Optional[ConnectionPool] = None
        self.is_connected = False

    async def connect(self) -> bool:
        """
        Establish connection to Redis with connection pooling.

        Returns:
            bool: True if connection successful, False otherwise
        """
        redis_url = self.redis_url
        if not redis_url:
            logger.info("ℹ️ REDIS_URL not set. Redis disabled.")
            return False

        # Fix malformed URLs (missing scheme) commonly found in dev environments
        if not redis_url.startswith(("redis://", "rediss://", "unix://")):
            logger.warning(f"⚠️ Malformed REDIS_URL detected. Auto-fixing to 'redis://{redis_url}'")
            redis_url = f"redis://{redis_url}"

        pool_kwargs = {
            "decode_responses": True,
            "max_connections": 20,
            "retry_on_timeout": True,
            "socket_connect_timeout": 5,
            "socket_timeout": 5,
            "health_check_interval": 30,
        }
        if urlparse(redis_url).scheme == "rediss":
            pool_kwargs["ssl_cert_reqs"] = None
            logger.info("🔒 TLS (rediss) detected")

        try:
            self.connection_pool = ConnectionPool.from_url(redis_url, **pool_kwargs)
            self.redis_client = redis.Redis(connection_pool=self.connection_pool)
            await asyncio.wait_for(self.redis_client.ping(), timeout=5.0)
            self.is_connected = True
            logger.info("✅ Redis connected successfully")
            return True
        except asyncio.TimeoutError:
            logger.warning("⏰ Redis connection timeout")
        except (RedisError, OSError) as e:
            logger.warning(f"⚠️ Redis connection failed: {e}")
        self.is_connected = False
        return False

    async def disconnect(self):
        """
        Gracefully close Redis connection.
        """
        try:
            if self.redis_client:
                await self.redis_client.aclose()
            if self.connection_pool:
                await self.connection_pool.disconnect()
            logger.info("🔌 Redis connection closed")
        except (RedisError, OSError) as e:
            logger.error(f"❌ Error closing Redis connection: {e}")
        finally:
            self.is_connected = False
            self.redis_client = None
            self.connection_pool = None

    def _serialize_data(self, data: Any) -> str:
        def json_serializer(obj):
            if isinstance(obj, datetime):
                return obj.isoformat()
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

        return json.dumps(data, default=json_serializer, ensure_ascii=False)

    async def get(self, key: str) -> Optional[Any]:
        if not self.is_connected or not self.redis_client:
            return None
        try:
            cached_data = await self.redis_client.get(key)
        except RedisError as e:
            logger.warning(f"⚠️ Redis GET error for key {key}: {e}")
            return None
        if cached_data is None:
            logger.debug(f"❌ Cache MISS for key: {key}")
            return None
        logger.debug(f"🎯 Cache HIT for key: {key}")
        return json.loads(cached_data)

    async def set(self, key: str, data: Any, ttl: Optional[int] = None) -> bool:
        if not self.is_connected or not self.redis_client:
            return False
        ttl = ttl or self.default_ttl
        try:
            await self.redis_client.setex(key, ttl, self._serialize_data(data))
        except RedisError as e:
            logger.warning(f"⚠️ Redis SET error for key {key}: {e}")
            return False
        logger.debug(f"💾 Cache SET for key: {key} (TTL: {ttl}s)")
        return True

    # ---------------------------
    # Session revocation
    # ---------------------------
    async def revoke_session(self, session_id: str, ttl: int) -> bool:
        return await self.set(f"{REVOKED_PREFIX}{session_id}", True, ttl=max(1, ttl))

    async def is_session_revoked(self, session_id: str) -> bool:
        return bool(await self.get(f"{REVOKED_PREFIX}{session_id}"))

    # ---------------------------
    # Advisory text cache
    # ---------------------------
    async def cache_advice(self, key: str, text: str, ttl: int) -> bool:
        return await self.set(f"{ADVICE_PREFIX}{key}", text, ttl=ttl)

    async def get_cached_advice(self, key: str) -> Optional[str]:
        return await self.get(f"{ADVICE_PREFIX}{key}")

    async def health_check(self) -> Dict[str, Any]:
        if not self.is_connected or not self.redis_client:
            return {"status": "disabled"}
        try:
            await self.redis_client.ping()
            return {"status": "ok"}
        except RedisError as e:
            return {"status": "error", "error": str(e)}
