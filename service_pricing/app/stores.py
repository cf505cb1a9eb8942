"""
Collaborator interfaces consumed by the pricing engine.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from .models import Bundle, CorporateEmailDomainDiscount, CouponRecord, CouponUsage, CouponUsageRecord


class PricingBlock(BaseModel):
    """Stored rule definition."""
    id: str
    name: str
    event_type: str
    conditions: Any = None
    params: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    category: Optional[str] = None
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class StrategyBlock(BaseModel):
    """Block as configured inside a pricing strategy."""
    block: PricingBlock
    priority: int
    config_overrides: Dict[str, Any] = Field(default_factory=dict)
    is_enabled: bool = True


class BundleCatalog(Protocol):
    async def find_bundles(
        self,
        group: str,
        region: Optional[str] = None,
        country: Optional[str] = None,
    ) -> List[Bundle]: ...


class CouponStore(Protocol):
    async def get_coupon_by_code(self, code: str) -> Optional[CouponRecord]: ...

    async def get_coupon_usage(self, coupon_id: str, user_id: Optional[str] = None) -> CouponUsage: ...

    async def get_corporate_domain(self, domain: str) -> Optional[CorporateEmailDomainDiscount]: ...

    async def log_coupon_usage(self, record: CouponUsageRecord) -> None: ...


class RuleStore(Protocol):
    async def list_active_blocks(self) -> List[PricingBlock]: ...

    async def list_strategy_blocks(self, strategy_id: str) -> List[StrategyBlock]: ...

    async def get_default_strategy_id(self) -> Optional[str]: ...
