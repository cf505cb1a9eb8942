"""
In-memory stores for tests and local runs.
"""

from typing import Dict, Iterable, List, Optional

from shared.logging import get_logger

from ..models import (
    Bundle,
    CorporateEmailDomainDiscount,
    CouponRecord,
    CouponUsage,
    CouponUsageRecord,
)
from ..stores import PricingBlock, StrategyBlock


class InMemoryBundleCatalog:
    """Bundle catalog over a fixed list of bundles."""

    def __init__(self, bundles: Iterable[Bundle] = ()):
        self.bundles: List[Bundle] = list(bundles)
        self.calls = 0

    async def find_bundles(
        self,
        group: str,
        region: Optional[str] = None,
        country: Optional[str] = None,
    ) -> List[Bundle]:
        self.calls += 1
        return [
            b for b in self.bundles
            if b.group_name == group
            and (region is None or b.region == region)
            and (country is None or country in b.countries)
        ]


class InMemoryRuleStore:
    """Rule store over in-memory blocks and strategies."""

    def __init__(
        self,
        blocks: Iterable[PricingBlock] = (),
        strategies: Optional[Dict[str, List[StrategyBlock]]] = None,
        default_strategy_id: Optional[str] = None,
    ):
        self.blocks: List[PricingBlock] = list(blocks)
        self.strategies: Dict[str, List[StrategyBlock]] = dict(strategies or {})
        self.default_strategy_id = default_strategy_id
        self.load_count = 0

    async def list_active_blocks(self) -> List[PricingBlock]:
        self.load_count += 1
        return [b for b in self.blocks if b.is_active]

    async def list_strategy_blocks(self, strategy_id: str) -> List[StrategyBlock]:
        self.load_count += 1
        return list(self.strategies.get(strategy_id, []))

    async def get_default_strategy_id(self) -> Optional[str]:
        return self.default_strategy_id


class InMemoryCouponStore:
    """Coupon store with an in-memory usage log."""

    def __init__(
        self,
        coupons: Iterable[CouponRecord] = (),
        corporate_domains: Iterable[CorporateEmailDomainDiscount] = (),
    ):
        self.logger = get_logger("pricing.persistence.memory")
        self.coupons: Dict[str, CouponRecord] = {c.code.upper(): c for c in coupons}
        self.corporate_domains: Dict[str, CorporateEmailDomainDiscount] = {
            d.domain.lower(): d for d in corporate_domains
        }
        self.usage_log: List[CouponUsageRecord] = []

    async def get_coupon_by_code(self, code: str) -> Optional[CouponRecord]:
        return self.coupons.get(code.upper())

    async def get_coupon_usage(self, coupon_id: str, user_id: Optional[str] = None) -> CouponUsage:
        records = [r for r in self.usage_log if r.coupon_id == coupon_id]
        return CouponUsage(
            total_usage=len(records),
            user_usage=len([r for r in records if user_id and r.user_id == user_id]),
        )

    async def get_corporate_domain(self, domain: str) -> Optional[CorporateEmailDomainDiscount]:
        corporate = self.corporate_domains.get(domain.lower())
        if corporate is None or not corporate.is_active:
            return None
        return corporate

    async def log_coupon_usage(self, record: CouponUsageRecord) -> None:
        self.usage_log.append(record)
        self.logger.debug("Coupon usage recorded", coupon_id=record.coupon_id, user_id=record.user_id)
