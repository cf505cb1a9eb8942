"""
Integration tests for the pricing flow over in-memory stores.
"""

import asyncio
from datetime import datetime

import pytest

from shared.config import PricingSettings
from service_pricing.app.calculator import PricingCalculator
from service_pricing.app.loaders.coupon_loader import CouponService
from service_pricing.app.loaders.rule_cache import RuleCache
from service_pricing.app.loaders.rule_loader import RuleLoader
from service_pricing.app.models import (
    Bundle,
    CorporateEmailDomainDiscount,
    CouponRecord,
    DiscountType,
)
from service_pricing.app.persistence.memory import (
    InMemoryBundleCatalog,
    InMemoryCouponStore,
    InMemoryRuleStore,
)
from service_pricing.app.stores import PricingBlock, StrategyBlock


GROUP = "Standard Unlimited Essential"
SATURDAY = datetime(2026, 6, 13, 11, 0)
TUESDAY = datetime(2026, 6, 16, 11, 0)


def bundle(days, price, country="US", region=None):
    return Bundle(
        id=f"esim_ULE_{days}D_{country or region}",
        name=f"esim_ULE_{days}D_{country or region}_V2",
        group_name=GROUP,
        countries=[country] if country else [],
        region=region,
        validity_days=days,
        price=price,
    )


def block(block_id, event_type, params=None, priority=0, conditions=None):
    return PricingBlock(
        id=block_id,
        name=block_id.replace("-", " ").title(),
        event_type=event_type,
        params=params or {},
        priority=priority,
        conditions=conditions,
    )


BASE_BLOCKS = [
    block("base-price", "set-base-price", priority=100),
    block("markup", "apply-markup", {"markupMatrix": {GROUP: {"7": 12, "10": 14, "15": 16}}}, priority=90),
    block(
        "unused-days",
        "apply-unused-days-discount",
        priority=80,
        conditions={"all": [{"fact": "isExactMatch", "operator": "equal", "value": False}]},
    ),
    block("profit-floor", "apply-profit-constraint", {"minimumProfit": 1.5}, priority=60),
    block("processing-fee", "apply-processing-fee", {"feesMatrix": {
        "ISRAELI_CARD": {"percentageFee": 1.4},
        "FOREIGN_CARD": {"percentageFee": 3.9},
    }}, priority=50),
    block("rounding", "apply-psychological-rounding", {"strategy": "nearest-whole"}, priority=10),
]

DISCOUNT_BLOCKS = [
    block("coupon", "apply-discount", {"source": "coupon"}, priority=75),
    block("corporate", "apply-discount", {"source": "corporate"}, priority=74),
    block(
        "volume",
        "apply-discount",
        {"source": "volume"},
        priority=73,
        conditions={"all": [{"fact": "quantity", "operator": "greaterThanInclusive", "value": 2}]},
    ),
    block(
        "weekend-promotion",
        "apply-discount",
        {"value": 20},
        priority=72,
        conditions={"all": [{"fact": "timeContext", "path": "$.is_weekend", "operator": "equal", "value": True}]},
    ),
]


class TestPricingFlow:
    """Integration tests for end-to-end pricing."""

    @pytest.fixture
    def catalog(self):
        return InMemoryBundleCatalog([
            bundle(5, 3.75),
            bundle(7, 5.0),
            bundle(10, 6.5),
            bundle(15, 9.0),
            bundle(7, 6.0, country=None, region="Europe"),
        ])

    @pytest.fixture
    def coupon_store(self):
        return InMemoryCouponStore(
            coupons=[
                CouponRecord(id="c-1", code="SUMMER10", coupon_type=DiscountType.PERCENTAGE, value=10),
                CouponRecord(id="c-2", code="FIVEOFF", coupon_type=DiscountType.FIXED_AMOUNT, value=5, min_spend=30),
            ],
            corporate_domains=[CorporateEmailDomainDiscount(domain="acme.com", discount_percentage=10)],
        )

    @pytest.fixture
    def rule_store(self):
        return InMemoryRuleStore(
            [*BASE_BLOCKS, *DISCOUNT_BLOCKS],
            strategies={"summer": [
                StrategyBlock(block=b, priority=b.priority) for b in BASE_BLOCKS[:-1]
            ] + [
                StrategyBlock(block=BASE_BLOCKS[-1], priority=10, config_overrides={"strategy": "nearest-99"}),
            ]},
        )

    @pytest.fixture
    def make_calculator(self, catalog, coupon_store, rule_store):
        def factory(now=TUESDAY, **settings):
            return PricingCalculator(
                catalog,
                RuleLoader(rule_store, cache=RuleCache(ttl_seconds=60)),
                coupon_service=CouponService(coupon_store),
                settings=PricingSettings(_env_file=None, **settings),
                clock=lambda: now,
            )
        return factory

    @pytest.mark.asyncio
    async def test_exact_match(self, make_calculator):
        result = await make_calculator().calculate_pricing(
            {"group": GROUP, "requested_days": 7, "country": "US"}
        )

        assert result.pricing.final_price == 17.0
        assert result.pricing.processing_cost == 0.24
        assert result.pricing.net_profit == 11.76
        assert result.pricing.rules_evaluated == 10

    @pytest.mark.asyncio
    async def test_longer_bundle_with_unused_days(self, make_calculator):
        result = await make_calculator().calculate_pricing(
            {"group": GROUP, "requested_days": 8, "country": "US"}
        )

        # 6.5 + 14 = 20.5, minus 6.5 / 10 * 2 * 0.5, plus 1.4%
        assert result.selected_bundle.validity_days == 10
        assert result.pricing.unused_days == 2
        assert result.pricing.customer_discounts[0].name == "Multi-day Savings"
        assert result.pricing.discount_value == 0.65
        assert result.pricing.final_price == 20.0

    @pytest.mark.asyncio
    async def test_region_request(self, make_calculator):
        result = await make_calculator().calculate_pricing(
            {"group": GROUP, "requested_days": 7, "region": "Europe"}
        )

        assert result.selected_bundle.id == "esim_ULE_7D_Europe"
        assert result.pricing.cost == 6.0

    @pytest.mark.asyncio
    async def test_strategy_overrides(self, make_calculator):
        result = await make_calculator().calculate_pricing(
            {"group": GROUP, "requested_days": 7, "country": "US", "strategy_id": "summer"}
        )

        assert result.pricing.final_price == 17.99

    @pytest.mark.asyncio
    async def test_coupon_wins_over_weekend_promotion(self, make_calculator, coupon_store):
        calculator = make_calculator(now=SATURDAY)

        result = await calculator.calculate_pricing({
            "group": GROUP,
            "requested_days": 7,
            "country": "US",
            "coupon_code": "SUMMER10",
            "user_id": "user-1",
        })
        await calculator.flush_background_tasks()

        discounts = [r for r in result.applied_rules if r.category == "DISCOUNT"]
        assert [d.id for d in discounts] == ["coupon"]
        assert result.pricing.final_price == 16.0
        assert [u.coupon_id for u in coupon_store.usage_log] == ["c-1"]

    @pytest.mark.asyncio
    async def test_weekend_promotion(self, make_calculator):
        saturday = await make_calculator(now=SATURDAY).calculate_pricing(
            {"group": GROUP, "requested_days": 7, "country": "US"}
        )
        tuesday = await make_calculator(now=TUESDAY).calculate_pricing(
            {"group": GROUP, "requested_days": 7, "country": "US"}
        )

        # 17 - 20% = 13.6, plus 1.4% = 13.79
        assert saturday.pricing.final_price == 14.0
        assert tuesday.pricing.final_price == 17.0

    @pytest.mark.asyncio
    async def test_coupon_min_spend_falls_back_to_corporate(self, make_calculator, coupon_store):
        calculator = make_calculator()

        result = await calculator.calculate_pricing({
            "group": GROUP,
            "requested_days": 7,
            "country": "US",
            "coupon_code": "FIVEOFF",
            "user_id": "user-1",
            "user_email": "jane@acme.com",
        })
        await calculator.flush_background_tasks()

        coupon_note = next(r for r in result.applied_rules if r.id == "coupon")
        assert coupon_note.impact == 0
        assert coupon_note.details["skipped"] == "min_spend_not_met"
        assert result.pricing.final_price == 16.0
        assert coupon_store.usage_log == []

    @pytest.mark.asyncio
    async def test_volume_discount(self, make_calculator):
        result = await make_calculator().calculate_pricing(
            {"group": GROUP, "requested_days": 7, "country": "US", "quantity": 5}
        )

        # 10% off for 5-9 bundles
        assert result.pricing.discount_value == 1.7
        assert result.pricing.customer_discounts[0].name == "Volume Discount"

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_rule_load(self, make_calculator, rule_store):
        calculator = make_calculator()
        requests = [
            {"group": GROUP, "requested_days": days, "country": "US"}
            for days in (5, 7, 8, 10, 15) * 4
        ]

        results = await asyncio.gather(*[calculator.calculate_pricing(r) for r in requests])

        assert rule_store.load_count == 1
        assert [r.pricing.final_price for r in results[:5]] == [r.pricing.final_price for r in results[5:10]]
