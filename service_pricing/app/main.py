"""
Pricing service wiring.

Builds the calculator on top of PostgreSQL and Redis and manages their
lifecycle for the API layer that embeds it.
"""

from typing import Any, Dict, Mapping, Optional, Union

from prometheus_client import CollectorRegistry

from shared.config import PricingSettings, get_settings
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import get_metrics_collector

from .cache.redis_cache import RedisCouponCache
from .calculator import PricingCalculator
from .loaders.coupon_loader import CouponService
from .loaders.rule_cache import RuleCache
from .loaders.rule_loader import RuleLoader
from .models import PricingResult, RequestFacts
from .persistence.postgres import PostgreSQLPricingStore


class PricingService:
    """Pricing service implementation."""

    def __init__(
        self,
        settings: Optional[PricingSettings] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        self.settings = settings or get_settings()
        configure_logging(self.settings.service_name, self.settings.log_level)
        self.logger = get_logger("pricing.service")
        self.metrics = get_metrics_collector(self.settings.service_name, registry)

        self.persistence = PostgreSQLPricingStore(
            self.settings.postgres_dsn,
            command_timeout=self.settings.postgres_command_timeout,
        )
        self.cache = RedisCouponCache(
            self.persistence,
            self.settings.redis_url,
            ttl_seconds=int(self.settings.coupon_cache_ttl_seconds),
        )

        self.rule_loader = RuleLoader(
            self.persistence,
            cache=RuleCache(self.settings.rule_cache_ttl_seconds, metrics=self.metrics),
            strict_params=self.settings.strict_rule_params,
        )
        self.coupon_service = CouponService(
            self.cache,
            cache_ttl_seconds=self.settings.coupon_cache_ttl_seconds,
            metrics=self.metrics,
        )
        self.calculator = PricingCalculator(
            self.persistence,
            self.rule_loader,
            coupon_service=self.coupon_service,
            settings=self.settings,
            metrics=self.metrics,
        )

    async def calculate_pricing(
        self,
        request: Union[RequestFacts, Mapping[str, Any]],
        request_id: Optional[str] = None,
    ) -> PricingResult:
        """Price one request with a fresh logging context."""
        set_request_id(request_id)
        try:
            return await self.calculator.calculate_pricing(request)
        finally:
            clear_context()

    async def check_dependencies(self) -> Dict[str, str]:
        """Check pricing service dependencies."""
        return {
            "postgres": "ok" if await self.persistence.health_check() else "error",
            "redis": "ok" if await self.cache.health_check() else "error",
        }

    async def start(self):
        """Start pricing service components."""
        await self.persistence.start()
        await self.cache.start()

        self.logger.info("Pricing service started", env=self.settings.env)

    async def stop(self):
        """Stop pricing service components."""
        await self.calculator.flush_background_tasks()
        await self.persistence.stop()
        await self.cache.stop()

        self.logger.info("Pricing service stopped")
