"""
Domain models for the pricing service.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PaymentMethod(str, Enum):
    """Payment methods accepted at checkout."""
    ISRAELI_CARD = "ISRAELI_CARD"
    FOREIGN_CARD = "FOREIGN_CARD"
    AMEX = "AMEX"
    DINERS = "DINERS"
    BIT = "BIT"


class RuleCategory(str, Enum):
    """Audit categories for applied rules."""
    BUNDLE_ADJUSTMENT = "BUNDLE_ADJUSTMENT"
    DISCOUNT = "DISCOUNT"
    FEE = "FEE"
    CONSTRAINT = "CONSTRAINT"


class DiscountType(str, Enum):
    """How a discount value is interpreted."""
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class Bundle(BaseModel):
    """Catalog snapshot of a purchasable data bundle."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Catalog bundle ID")
    name: str = Field(..., description="Provider bundle name")
    group_name: str = Field(..., description="Bundle group, e.g. 'Standard Unlimited Essential'")
    countries: List[str] = Field(default_factory=list, description="ISO codes covered")
    region: Optional[str] = Field(None, description="Region covered")
    validity_days: int = Field(..., ge=1, description="Validity period in days")
    price: Optional[float] = Field(None, ge=0, description="Bundle cost")
    is_unlimited: bool = Field(False, description="Unlimited data plan")
    currency: str = Field("USD", description="Cost currency")
    data_amount_mb: Optional[int] = Field(None, description="Data allowance in MB")


class RequestFacts(BaseModel):
    """Caller-supplied facts for one pricing request."""
    group: str = Field(..., min_length=1, description="Requested bundle group")
    requested_days: int = Field(..., ge=1, description="Requested trip duration in days")
    country: Optional[str] = Field(None, description="Destination country ISO code")
    region: Optional[str] = Field(None, description="Destination region")
    payment_method: PaymentMethod = Field(PaymentMethod.ISRAELI_CARD, description="Payment method")
    strategy_id: Optional[str] = Field(None, description="Pricing strategy to apply")
    coupon_code: Optional[str] = Field(None, description="Coupon code entered by the customer")
    user_id: Optional[str] = Field(None, description="Customer ID")
    user_email: Optional[str] = Field(None, description="Customer e-mail")
    quantity: int = Field(1, ge=1, description="Number of bundles purchased")

    @model_validator(mode="after")
    def _check_destination(self) -> "RequestFacts":
        if bool(self.country) == bool(self.region):
            raise ValueError("exactly one of country or region must be provided")
        return self


class AppliedRule(BaseModel):
    """Audit entry describing one price adjustment."""
    id: str
    name: str
    category: RuleCategory
    impact: float = Field(..., description="Signed price delta")
    event_type: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class PricingStep(BaseModel):
    """One step of the price trace."""
    order: int
    name: str
    price_before: float
    price_after: float
    impact: float
    rule_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CustomerDiscount(BaseModel):
    """Customer-facing description of a discount."""
    name: str
    amount: float
    percentage: float
    reason: str


class PricingBreakdown(BaseModel):
    """Caller-facing pricing figures derived from the pipeline trace."""
    cost: float
    markup: float
    currency: str = "USD"
    unused_days: int
    discount_value: float
    discount_rate: float
    discount_per_day: float
    price_after_discount: float
    processing_cost: float
    processing_rate: float
    total_cost: float
    final_revenue: float
    net_profit: float
    final_price: float
    savings_amount: float
    savings_percentage: float
    rules_evaluated: int = 0
    customer_discounts: List[CustomerDiscount] = Field(default_factory=list)
    pricing_steps: List[PricingStep] = Field(default_factory=list)
    applied_rules: List[AppliedRule] = Field(default_factory=list)


class PricingResult(BaseModel):
    """Result of a pricing calculation."""
    selected_bundle: Bundle
    previous_bundle: Optional[Bundle] = None
    unused_days: int
    requested_days: int
    pricing: PricingBreakdown
    applied_rules: List[AppliedRule] = Field(default_factory=list)


class CouponRecord(BaseModel):
    """Coupon row as stored."""
    id: str
    code: str
    coupon_type: DiscountType
    value: float
    is_active: bool = True
    min_spend: Optional[float] = None
    max_discount: Optional[float] = None
    max_total_usage: Optional[int] = None
    max_per_user: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    allowed_bundle_ids: List[str] = Field(default_factory=list)
    allowed_regions: List[str] = Field(default_factory=list)
    corporate_domain: Optional[str] = None
    description: Optional[str] = None


class CouponUsage(BaseModel):
    """Redemption counters for a coupon."""
    total_usage: int = 0
    user_usage: int = 0


class CouponUsageRecord(BaseModel):
    """Redemption to be written to the usage log."""
    coupon_id: str
    user_id: str
    original_amount: float
    discount_amount: float
    discounted_amount: float
    order_id: Optional[str] = None


class CouponValidation(BaseModel):
    """Outcome of validating a coupon code for one request."""
    is_valid: bool
    code: str
    reason: Optional[str] = None
    coupon_id: Optional[str] = None
    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount_value: float = 0.0
    min_spend: Optional[float] = None
    max_discount: Optional[float] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    usage_limit: Optional[int] = None
    total_usage_count: int = 0
    user_usage_count: int = 0
    applicable_bundles: List[str] = Field(default_factory=list)
    applicable_regions: List[str] = Field(default_factory=list)
    description: Optional[str] = None

    @classmethod
    def invalid(cls, code: str, reason: str) -> "CouponValidation":
        return cls(is_valid=False, code=code, reason=reason)


class CorporateEmailDomainDiscount(BaseModel):
    """Discount granted to customers with a corporate e-mail domain."""
    domain: str
    discount_percentage: float = Field(..., ge=0, le=100)
    max_discount: Optional[float] = None
    min_spend: Optional[float] = None
    is_active: bool = True


class EmailDomainDiscount(BaseModel):
    """Corporate discount eligibility of the request's e-mail."""
    is_eligible: bool
    domain: str
    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount_value: float = 0.0
    max_discount: Optional[float] = None
    min_spend: Optional[float] = None


class VolumeDiscountTier(BaseModel):
    """Quantity band and its discount."""
    min_quantity: int = Field(..., ge=1)
    max_quantity: Optional[int] = None
    discount_percentage: float = Field(..., ge=0, le=100)
    description: str = ""

    def contains(self, quantity: int) -> bool:
        if quantity < self.min_quantity:
            return False
        return self.max_quantity is None or quantity <= self.max_quantity
