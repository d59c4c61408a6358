# /engagehub/services/cache_service.py

import logging
from typing import Optional
import redis.asyncio as redis

from engagehub.config.settings import settings
from engagehub.utils.circuit_breaker import CircuitBreaker
from engagehub.utils.metrics import cache_operations

# Redis access for short-lived state: login lockouts, the per-phone OTP
# resend cooldown and the shared circuit-breaker state of the adapters.

logger = logging.getLogger(__name__)

class CacheService:
    def __init__(self, redis_url: str):
        self.redis = None
        self.circuit_breaker = CircuitBreaker("redis")
        if not redis_url:
            logger.info("REDIS_URL is empty; Redis-backed features are disabled.")
            return
        try:
            self.redis_pool = redis.ConnectionPool.from_url(redis_url, max_connections=20)
            self.redis = redis.Redis(connection_pool=self.redis_pool)
        except Exception as e:
            logger.critical(f"Failed to configure Redis at {redis_url}: {e}")
            self.redis = None

    async def get(self, key: str) -> Optional[str]:
        if not self.redis: return None
        try:
            result = await self.circuit_breaker.call(self.redis.get, key)
            cache_operations.labels(operation="get", status="hit" if result else "miss").inc()
            return result.decode('utf-8') if result else None
        except Exception as e:
            cache_operations.labels(operation="get", status="error").inc()
            logger.warning(f"Cache get failed for key {key}: {e}")
            return None

    async def set(self, key: str, value: str, ttl: int = 300):
        if not self.redis: return
        try:
            await self.circuit_breaker.call(self.redis.setex, key, ttl, value)
            cache_operations.labels(operation="set", status="success").inc()
        except Exception as e:
            cache_operations.labels(operation="set", status="error").inc()
            logger.warning(f"Cache set failed for key {key}: {e}")

    async def close(self):
        if self.redis:
            await self.redis.aclose()

# Globally accessible instance
cache_service = CacheService(settings.redis_url)
