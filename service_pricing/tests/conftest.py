"""
Shared fixtures for pricing service tests.
"""

import pytest

from shared.config import PricingSettings
from service_pricing.app.models import Bundle
from service_pricing.app.stores import PricingBlock


GROUP = "Standard Unlimited Essential"

BUNDLE_COSTS = {1: 1.0, 3: 2.5, 5: 3.75, 7: 5.0, 10: 6.5, 15: 9.0, 30: 15.0}


def make_bundle(days, price, group=GROUP, countries=("US",), bundle_id=None, **kwargs):
    return Bundle(
        id=bundle_id or f"esim_ULE_{days}D_US",
        name=f"esim_ULE_{days}D_US_V2",
        group_name=group,
        countries=list(countries),
        validity_days=days,
        price=price,
        **kwargs,
    )


@pytest.fixture
def settings():
    """Settings isolated from the environment."""
    return PricingSettings(_env_file=None)


@pytest.fixture
def us_bundles():
    """US catalog slice with the standard durations."""
    return [make_bundle(days, price) for days, price in BUNDLE_COSTS.items()]


@pytest.fixture
def pricing_blocks():
    """Default block set: base price, markup, multi-day discount, profit floor, fee and rounding."""
    return [
        PricingBlock(
            id="block-base",
            name="Set base price",
            event_type="set-base-price",
            conditions=None,
            params={},
            priority=100,
        ),
        PricingBlock(
            id="block-markup",
            name="Apply markup",
            event_type="apply-markup",
            conditions=None,
            params={"markupMatrix": {GROUP: {"7": 12, "10": 14}}},
            priority=90,
        ),
        PricingBlock(
            id="block-unused-days",
            name="Unused days discount",
            event_type="apply-unused-days-discount",
            conditions={"all": [{"fact": "isExactMatch", "operator": "equal", "value": False}]},
            params={},
            priority=80,
        ),
        PricingBlock(
            id="block-profit",
            name="Minimum profit",
            event_type="apply-profit-constraint",
            conditions=None,
            params={"minimumProfit": 1.5},
            priority=60,
        ),
        PricingBlock(
            id="block-fee",
            name="Processing fee",
            event_type="apply-processing-fee",
            conditions=None,
            params={"feesMatrix": {
                "ISRAELI_CARD": {"percentageFee": 1.4, "fixedFee": 0},
                "FOREIGN_CARD": {"percentageFee": 3.9, "fixedFee": 0},
            }},
            priority=50,
        ),
        PricingBlock(
            id="block-rounding",
            name="Psychological rounding",
            event_type="apply-psychological-rounding",
            conditions=None,
            params={"strategy": "nearest-whole"},
            priority=10,
        ),
    ]
