"""
Discount and customer context facts.

Coupon validation, corporate e-mail domain discounts, volume tiers and the
time / market context rules can gate promotions on.
"""

import calendar
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from shared.logging import get_logger

from ..engine.almanac import Almanac
from ..models import (
    Bundle,
    CouponValidation,
    EmailDomainDiscount,
    RequestFacts,
    VolumeDiscountTier,
)


logger = get_logger("pricing.discount_facts")

Clock = Callable[[], datetime]

PREMIUM_COUNTRIES = {"US", "CA", "GB", "DE", "FR", "AU", "JP", "CH", "NO", "DK"}
EMERGING_COUNTRIES = {"IN", "BR", "MX", "ZA", "EG", "PH", "VN", "ID", "NG", "BD"}
PREMIUM_REGIONS = {"north america", "western europe", "oceania"}
EMERGING_REGIONS = {"south asia", "southeast asia", "africa", "latin america"}

# (month, day) of holidays; the day before and after count as well
HOLIDAYS = ((12, 25), (1, 1), (7, 4))


def season_for_month(month: int) -> str:
    """Northern hemisphere season for a 1-based month."""
    if 3 <= month <= 5:
        return "spring"
    if 6 <= month <= 8:
        return "summer"
    if 9 <= month <= 11:
        return "fall"
    return "winter"


def build_time_context(now: datetime) -> Dict[str, Any]:
    """Time-of-purchase attributes used by time-limited promotions."""
    hour = now.hour
    # Sunday = 0 .. Saturday = 6
    day_of_week = (now.weekday() + 1) % 7
    days_in_month = calendar.monthrange(now.year, now.month)[1]

    return {
        "current_hour": hour,
        "day_of_week": day_of_week,
        "day_of_month": now.day,
        "is_weekend": day_of_week in (0, 6),
        "is_early_bird": 6 <= hour < 10,
        "is_peak_hours": 12 <= hour < 20,
        "is_late_night": hour >= 22 or hour < 6,
        "is_end_of_month": now.day > days_in_month - 3,
        "is_holiday": any(
            month == now.month and abs(day - now.day) <= 1 for month, day in HOLIDAYS
        ),
        "seasonal_period": season_for_month(now.month),
    }


def market_tier(country: Optional[str] = None, region: Optional[str] = None) -> str:
    """Classify the destination market as premium, standard or emerging."""
    if country:
        code = country.strip().upper()
        if code in PREMIUM_COUNTRIES:
            return "premium"
        if code in EMERGING_COUNTRIES:
            return "emerging"
        return "standard"

    if region:
        name = region.strip().lower()
        if name in PREMIUM_REGIONS:
            return "premium"
        if name in EMERGING_REGIONS:
            return "emerging"

    return "standard"


def find_volume_tier(tiers: Sequence[VolumeDiscountTier], quantity: int) -> Optional[VolumeDiscountTier]:
    for tier in tiers:
        if tier.contains(quantity):
            return tier
    return None


def register_discount_facts(
    almanac: Almanac,
    request: RequestFacts,
    coupon_service=None,
    volume_tiers: Sequence[VolumeDiscountTier] = (),
    clock: Clock = datetime.now,
) -> None:
    """Register discount and context resolvers on `almanac`.

    Without a coupon service the coupon and corporate facts resolve to None.
    """
    tiers: List[VolumeDiscountTier] = sorted(volume_tiers, key=lambda t: t.min_quantity)

    async def coupon_validation(a: Almanac) -> Optional[CouponValidation]:
        if not request.coupon_code or coupon_service is None:
            return None
        selected: Bundle = await a.fact_value("selectedBundle")
        return await coupon_service.validate(
            request.coupon_code,
            user_id=request.user_id,
            bundle_id=selected.id,
            country=request.country,
            region=request.region,
        )

    async def email_domain_discount(a: Almanac) -> Optional[EmailDomainDiscount]:
        if not request.user_email or coupon_service is None:
            return None
        return await coupon_service.get_email_domain_discount(request.user_email)

    def volume_discount(a: Almanac) -> Optional[VolumeDiscountTier]:
        tier = find_volume_tier(tiers, request.quantity)
        if tier is not None:
            logger.debug(
                "Volume tier matched",
                quantity=request.quantity,
                discount_percentage=tier.discount_percentage,
            )
        return tier

    def time_context(a: Almanac) -> Dict[str, Any]:
        return build_time_context(clock())

    def destination_market_tier(a: Almanac) -> str:
        return market_tier(request.country, request.region)

    async def bundle_discount_eligibility(a: Almanac) -> Dict[str, bool]:
        selected: Bundle = await a.fact_value("selectedBundle")
        return {
            "is_unlimited_discount": selected.is_unlimited,
            "is_long_stay_discount": request.requested_days >= 15,
            "is_regional_discount": bool(request.region),
            "is_premium_bundle_discount": "Plus" in selected.group_name,
        }

    almanac.add_fact("couponValidation", coupon_validation)
    almanac.add_fact("emailDomainDiscount", email_domain_discount)
    almanac.add_fact("volumeDiscount", volume_discount)
    almanac.add_fact("timeContext", time_context)
    almanac.add_fact("marketTier", destination_market_tier)
    almanac.add_fact("bundleDiscountEligibility", bundle_discount_eligibility)
