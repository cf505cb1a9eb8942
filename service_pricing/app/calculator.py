"""
Pricing calculator: the engine's single entry point.

Seeds a per-request almanac, loads the active rule set, evaluates it into
events and folds those through the pipeline into a PricingResult.
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import ValidationError

from shared.config import PricingSettings, get_settings
from shared.logging import get_logger, set_pricing_context
from shared.metrics import MetricsCollector

from .engine.almanac import Almanac
from .engine.models import EventType
from .engine.registry import RuleRegistry
from .errors import (
    FactComputationError,
    InvalidRequestError,
    PricingEngineError,
    PricingTimeoutError,
)
from .facts import runtime_facts
from .facts.bundle_facts import register_bundle_facts
from .facts.discount_facts import register_discount_facts
from .loaders.coupon_loader import CouponService
from .loaders.rule_loader import RuleLoader, validation_errors
from .models import PricingResult, RequestFacts, VolumeDiscountTier
from .pipeline.breakdown import build_breakdown
from .pipeline.processor import EventBag, EventProcessor, PipelineContext
from .stores import BundleCatalog


class PricingCalculator:
    """Computes bundle prices from the active pricing rules."""

    def __init__(
        self,
        catalog: BundleCatalog,
        rule_loader: RuleLoader,
        coupon_service: Optional[CouponService] = None,
        settings: Optional[PricingSettings] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings or get_settings()
        self.catalog = catalog
        self.rule_loader = rule_loader
        self.coupon_service = coupon_service
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger("pricing.calculator")

        self.processor = EventProcessor(
            retention_factor=self.settings.unused_days_retention_factor,
            markup_aggregation=self.settings.markup_aggregation,
        )
        self.volume_tiers = [
            VolumeDiscountTier.model_validate(tier) for tier in self.settings.volume_discount_tiers
        ]

    async def calculate_pricing(self, request: Union[RequestFacts, Mapping[str, Any]]) -> PricingResult:
        """Price one request.

        Raises BundleNotFoundError when no bundle covers the requested days,
        RuleLoadError when no rule set can be loaded and PricingTimeoutError
        when the configured time budget is exceeded.
        """
        request = self._coerce_request(request)
        set_pricing_context(request.user_id, request.strategy_id, request.coupon_code)

        timeout = self.settings.calculation_timeout_seconds
        strategy = request.strategy_id or "default"
        start_time = time.time()

        try:
            if timeout:
                result = await asyncio.wait_for(self._calculate(request), timeout)
            else:
                result = await self._calculate(request)
        except asyncio.TimeoutError as e:
            self.logger.error("Pricing calculation timed out", timeout_seconds=timeout)
            self._record_outcome("timeout", "PRICING_TIMEOUT")
            raise PricingTimeoutError(timeout) from e
        except PricingEngineError as e:
            self.logger.error("Pricing calculation failed", code=e.code, error=e.message)
            self._record_outcome("error", e.code)
            raise

        duration = time.time() - start_time
        if self.metrics is not None:
            self.metrics.increment_counter("pricing_calculations_total", outcome="success")
            self.metrics.observe_histogram("pricing_calculation_duration_seconds", duration, strategy=strategy)

        self.logger.info(
            "Pricing calculated",
            group=request.group,
            requested_days=request.requested_days,
            bundle=result.selected_bundle.id,
            final_price=result.pricing.final_price,
            duration_ms=round(duration * 1000, 2),
        )
        return result

    async def _calculate(self, request: RequestFacts) -> PricingResult:
        almanac = Almanac(runtime_facts(request))
        register_bundle_facts(almanac, self.catalog, request)
        register_discount_facts(
            almanac,
            request,
            coupon_service=self.coupon_service,
            volume_tiers=self.volume_tiers,
            clock=self.clock,
        )

        rules = await self.rule_loader.load_rules(request.strategy_id)
        registry = RuleRegistry(rules)

        try:
            events = EventBag(await registry.evaluate(almanac))
            context = await self._pipeline_context(almanac, request, events)
        except FactComputationError as e:
            root = e.root_cause()
            if isinstance(root, PricingEngineError):
                raise root from e
            raise

        trace = self.processor.process(events, context)
        breakdown = build_breakdown(
            trace,
            context.selected_bundle,
            context.unused_days,
            rules_evaluated=len(registry),
        )

        if trace.coupon_usage is not None and self.coupon_service is not None:
            self.coupon_service.log_usage(trace.coupon_usage)

        return PricingResult(
            selected_bundle=context.selected_bundle,
            previous_bundle=context.previous_bundle,
            unused_days=context.unused_days,
            requested_days=request.requested_days,
            pricing=breakdown,
            applied_rules=breakdown.applied_rules,
        )

    async def _pipeline_context(self, almanac: Almanac, request: RequestFacts, events: EventBag) -> PipelineContext:
        context = PipelineContext(
            selected_bundle=await almanac.fact_value("selectedBundle"),
            previous_bundle=await almanac.fact_value("previousBundle"),
            requested_days=request.requested_days,
            unused_days=await almanac.fact_value("unusedDays"),
            is_exact_match=await almanac.fact_value("isExactMatch"),
            payment_method=request.payment_method.value,
            user_id=request.user_id,
        )

        # Discount sources are only looked up when a discount rule fired
        if events.get(EventType.APPLY_DISCOUNT.value):
            context.coupon = await almanac.fact_value("couponValidation")
            context.email_discount = await almanac.fact_value("emailDomainDiscount")
            context.volume_tier = await almanac.fact_value("volumeDiscount")

        return context

    def _coerce_request(self, request: Union[RequestFacts, Mapping[str, Any]]) -> RequestFacts:
        if isinstance(request, RequestFacts):
            return request
        data = dict(request)
        data.setdefault("payment_method", self.settings.default_payment_method)
        try:
            return RequestFacts.model_validate(data)
        except ValidationError as e:
            raise InvalidRequestError(
                "Invalid pricing request",
                {"errors": validation_errors(e)},
            ) from e

    def _record_outcome(self, outcome: str, error_type: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("pricing_calculations_total", outcome=outcome)
            self.metrics.record_error(error_type)

    async def flush_background_tasks(self) -> None:
        """Wait for fire-and-forget coupon usage writes."""
        if self.coupon_service is not None:
            await self.coupon_service.flush()
