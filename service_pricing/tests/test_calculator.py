"""
Unit tests for the pricing calculator.
"""

import asyncio
from datetime import datetime

import pytest
from prometheus_client import CollectorRegistry

from shared.config import PricingSettings
from shared.logging import clear_context, coupon_code_var, strategy_id_var, user_id_var
from shared.metrics import MetricsCollector
from service_pricing.app.calculator import PricingCalculator
from service_pricing.app.errors import (
    BundleNotFoundError,
    InvalidRequestError,
    PricingTimeoutError,
    RuleLoadError,
)
from service_pricing.app.loaders.coupon_loader import CouponService
from service_pricing.app.loaders.rule_cache import RuleCache
from service_pricing.app.loaders.rule_loader import RuleLoader
from service_pricing.app.models import CouponRecord, DiscountType, RequestFacts
from service_pricing.app.persistence.memory import (
    InMemoryBundleCatalog,
    InMemoryCouponStore,
    InMemoryRuleStore,
)
from service_pricing.app.stores import PricingBlock


FIXED_NOW = datetime(2026, 6, 16, 10, 0)


def coupon_block():
    return PricingBlock(
        id="block-coupon",
        name="Coupon discount",
        event_type="apply-discount",
        params={"source": "coupon"},
        priority=70,
    )


class SlowRuleStore(InMemoryRuleStore):
    async def list_active_blocks(self):
        await asyncio.sleep(1)
        return await super().list_active_blocks()


@pytest.fixture
def coupon_store():
    return InMemoryCouponStore([
        CouponRecord(id="coupon-summer10", code="SUMMER10", coupon_type=DiscountType.PERCENTAGE, value=10),
    ])


@pytest.fixture
def calculator_factory(us_bundles, pricing_blocks, coupon_store):
    def factory(blocks=None, settings=None, metrics=None, rule_store=None):
        settings = settings or PricingSettings(_env_file=None)
        store = rule_store or InMemoryRuleStore(pricing_blocks if blocks is None else blocks)
        return PricingCalculator(
            InMemoryBundleCatalog(us_bundles),
            RuleLoader(store, cache=RuleCache(ttl_seconds=60)),
            coupon_service=CouponService(coupon_store),
            settings=settings,
            metrics=metrics,
            clock=lambda: FIXED_NOW,
        )
    return factory


def request(**kwargs):
    fields = {"group": "Standard Unlimited Essential", "requested_days": 7, "country": "US"}
    fields.update(kwargs)
    return RequestFacts(**fields)


class TestPricingCalculator:
    """Test cases for PricingCalculator."""

    @pytest.mark.asyncio
    async def test_exact_match_scenario(self, calculator_factory):
        calculator = calculator_factory()

        result = await calculator.calculate_pricing(request())

        assert result.selected_bundle.validity_days == 7
        assert result.previous_bundle.validity_days == 5
        assert result.unused_days == 0
        assert result.requested_days == 7
        assert result.pricing.cost == 5.0
        assert result.pricing.markup == 12.0
        assert result.pricing.processing_cost == 0.24
        assert result.pricing.net_profit == 11.76
        assert result.pricing.final_price == 17.0
        assert result.pricing.rules_evaluated == 6
        assert [r.id for r in result.applied_rules] == ["block-markup", "block-fee", "block-rounding"]

    @pytest.mark.asyncio
    async def test_upgrade_scenario(self, calculator_factory):
        calculator = calculator_factory()

        result = await calculator.calculate_pricing(request(requested_days=8))

        assert result.selected_bundle.validity_days == 10
        assert result.unused_days == 2
        assert result.pricing.discount_value == 0.65
        assert result.pricing.final_price == 20.0
        assert "block-unused-days" in [r.id for r in result.applied_rules]

    @pytest.mark.asyncio
    async def test_mapping_request(self, calculator_factory):
        calculator = calculator_factory()

        result = await calculator.calculate_pricing({
            "group": "Standard Unlimited Essential",
            "requested_days": 7,
            "country": "US",
            "payment_method": "FOREIGN_CARD",
        })

        assert result.pricing.processing_rate == 3.9
        assert result.pricing.final_price == 18.0

    @pytest.mark.asyncio
    async def test_invalid_mapping_request(self, calculator_factory):
        calculator = calculator_factory()

        with pytest.raises(InvalidRequestError) as exc_info:
            await calculator.calculate_pricing({"group": "Standard Unlimited Essential", "requested_days": 0})

        assert exc_info.value.code == "INVALID_PRICING_REQUEST"
        assert exc_info.value.details["errors"]

    @pytest.mark.asyncio
    async def test_bundle_not_found(self, calculator_factory):
        calculator = calculator_factory()

        with pytest.raises(BundleNotFoundError) as exc_info:
            await calculator.calculate_pricing(request(requested_days=45))

        assert exc_info.value.requested_days == 45
        assert exc_info.value.details["durations"] == [1, 3, 5, 7, 10, 15, 30]

    @pytest.mark.asyncio
    async def test_rule_load_failure(self, calculator_factory):
        calculator = calculator_factory(blocks=[])

        with pytest.raises(RuleLoadError):
            await calculator.calculate_pricing(request())

    @pytest.mark.asyncio
    async def test_calculation_is_repeatable(self, calculator_factory):
        calculator = calculator_factory()

        first = await calculator.calculate_pricing(request(requested_days=8))
        second = await calculator.calculate_pricing(request(requested_days=8))

        assert first == second

    @pytest.mark.asyncio
    async def test_logging_context_follows_each_request(self, calculator_factory):
        calculator = calculator_factory()

        try:
            await calculator.calculate_pricing(request(user_id="user-1", coupon_code="SUMMER10"))
            assert user_id_var.get() == "user-1"
            assert coupon_code_var.get() == "SUMMER10"

            await calculator.calculate_pricing(request())

            assert user_id_var.get() is None
            assert strategy_id_var.get() is None
            assert coupon_code_var.get() is None
        finally:
            clear_context()

    @pytest.mark.asyncio
    async def test_timeout(self, calculator_factory, pricing_blocks):
        settings = PricingSettings(_env_file=None, calculation_timeout_seconds=0.01)
        calculator = calculator_factory(settings=settings, rule_store=SlowRuleStore(pricing_blocks))

        with pytest.raises(PricingTimeoutError):
            await calculator.calculate_pricing(request())

    @pytest.mark.asyncio
    async def test_metrics(self, calculator_factory):
        registry = CollectorRegistry()
        calculator = calculator_factory(metrics=MetricsCollector("pricing", registry))

        await calculator.calculate_pricing(request())
        with pytest.raises(BundleNotFoundError):
            await calculator.calculate_pricing(request(requested_days=45))

        assert registry.get_sample_value("pricing_calculations_total", {"outcome": "success"}) == 1
        assert registry.get_sample_value("pricing_calculations_total", {"outcome": "error"}) == 1
        assert registry.get_sample_value(
            "errors_total", {"error_type": "BUNDLE_NOT_FOUND", "service": "pricing"}
        ) == 1


class TestCouponPricing:
    """Test cases for coupon-driven pricing."""

    @pytest.mark.asyncio
    async def test_valid_coupon(self, calculator_factory, pricing_blocks, coupon_store):
        calculator = calculator_factory(blocks=[*pricing_blocks, coupon_block()])

        result = await calculator.calculate_pricing(request(coupon_code="summer10", user_id="user-1"))
        await calculator.flush_background_tasks()

        # 17 - 10% = 15.3, + 1.4% fee = 15.51
        assert result.pricing.discount_value == 1.7
        assert result.pricing.final_price == 16.0
        assert len(coupon_store.usage_log) == 1
        assert coupon_store.usage_log[0].coupon_id == "coupon-summer10"
        assert coupon_store.usage_log[0].discount_amount == 1.7

    @pytest.mark.asyncio
    async def test_invalid_coupon(self, calculator_factory, pricing_blocks, coupon_store):
        calculator = calculator_factory(blocks=[*pricing_blocks, coupon_block()])

        result = await calculator.calculate_pricing(request(coupon_code="NOPE", user_id="user-1"))
        await calculator.flush_background_tasks()

        assert result.pricing.final_price == 17.0
        note = next(r for r in result.applied_rules if r.id == "block-coupon")
        assert note.impact == 0
        assert note.details["reason"] == "Coupon not found"
        assert coupon_store.usage_log == []

    @pytest.mark.asyncio
    async def test_no_coupon_code(self, calculator_factory, pricing_blocks):
        calculator = calculator_factory(blocks=[*pricing_blocks, coupon_block()])

        result = await calculator.calculate_pricing(request())

        assert result.pricing.final_price == 17.0
        assert "block-coupon" not in [r.id for r in result.applied_rules]
