"""
Redis read-through cache for coupon and corporate domain lookups.
"""

from typing import Optional

import redis.asyncio as redis

from shared.errors import ExternalServiceError
from shared.logging import get_logger

from ..models import CorporateEmailDomainDiscount, CouponRecord, CouponUsage, CouponUsageRecord
from ..stores import CouponStore


class RedisCouponCache:
    """Caches coupon and corporate domain rows in front of a CouponStore.

    Usage counters are never cached. Redis errors fall back to the store.
    """

    COUPON_PREFIX = "pricing:coupon:"
    DOMAIN_PREFIX = "pricing:corporate_domain:"

    def __init__(
        self,
        store: CouponStore,
        redis_url: str,
        ttl_seconds: int = 300,
        client: Optional[redis.Redis] = None,
    ):
        self.store = store
        self.redis_url = redis_url
        self.ttl_seconds = int(ttl_seconds)
        self.logger = get_logger("pricing.cache.redis")
        self.redis: Optional[redis.Redis] = client

    async def start(self):
        """Start the Redis cache."""
        try:
            if self.redis is None:
                self.redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True,
                    health_check_interval=30
                )

            await self.redis.ping()

            self.logger.info("Redis cache started")

        except Exception as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise ExternalServiceError("redis", str(e)) from e

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.close()
            self.logger.info("Redis cache stopped")

    async def get_coupon_by_code(self, code: str) -> Optional[CouponRecord]:
        cache_key = f"{self.COUPON_PREFIX}{code}"
        cached = await self._get(cache_key)
        if cached:
            self.logger.debug("Cache hit for coupon", cache_key=cache_key)
            return CouponRecord.model_validate_json(cached)

        coupon = await self.store.get_coupon_by_code(code)
        if coupon is not None:
            await self._set(cache_key, coupon.model_dump_json())
        return coupon

    async def get_corporate_domain(self, domain: str) -> Optional[CorporateEmailDomainDiscount]:
        cache_key = f"{self.DOMAIN_PREFIX}{domain.lower()}"
        cached = await self._get(cache_key)
        if cached:
            self.logger.debug("Cache hit for corporate domain", cache_key=cache_key)
            return CorporateEmailDomainDiscount.model_validate_json(cached)

        corporate = await self.store.get_corporate_domain(domain)
        if corporate is not None:
            await self._set(cache_key, corporate.model_dump_json())
        return corporate

    async def get_coupon_usage(self, coupon_id: str, user_id: Optional[str] = None) -> CouponUsage:
        return await self.store.get_coupon_usage(coupon_id, user_id)

    async def log_coupon_usage(self, record: CouponUsageRecord) -> None:
        await self.store.log_coupon_usage(record)

    async def invalidate_coupon(self, code: str) -> int:
        """Drop a cached coupon, e.g. after it was edited."""
        try:
            return await self.redis.delete(f"{self.COUPON_PREFIX}{code}")
        except Exception as e:
            self.logger.error("Error invalidating coupon", code=code, error=str(e))
            return 0

    async def clear_cache(self) -> bool:
        """Clear all coupon and corporate domain entries."""
        try:
            for prefix in (self.COUPON_PREFIX, self.DOMAIN_PREFIX):
                keys = await self.redis.keys(f"{prefix}*")
                if keys:
                    await self.redis.delete(*keys)

            self.logger.info("Cache cleared")
            return True

        except Exception as e:
            self.logger.error("Error clearing cache", error=str(e))
            return False

    async def _get(self, cache_key: str) -> Optional[str]:
        try:
            return await self.redis.get(cache_key)
        except Exception as e:
            self.logger.error("Error reading cache", cache_key=cache_key, error=str(e))
            return None

    async def _set(self, cache_key: str, payload: str) -> bool:
        try:
            await self.redis.setex(cache_key, self.ttl_seconds, payload)
            return True
        except Exception as e:
            self.logger.error("Error writing cache", cache_key=cache_key, error=str(e))
            return False

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False
