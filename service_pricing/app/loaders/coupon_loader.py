"""
Coupon and corporate e-mail domain discounts.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, Optional, Set, Tuple, TypeVar

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..errors import CouponUsageLogError
from ..models import (
    CouponRecord,
    CouponUsageRecord,
    CouponValidation,
    DiscountType,
    EmailDomainDiscount,
)
from ..stores import CouponStore


T = TypeVar("T")

_MISSING = object()


def normalize_coupon_code(code: str) -> str:
    return code.strip().upper()


def email_domain(email: str) -> Optional[str]:
    """Lower-cased part after '@', or None for a malformed address."""
    _, sep, domain = email.strip().lower().partition("@")
    if not sep or not domain:
        return None
    return domain


def region_allowed(allowed_regions, destination: str) -> bool:
    """Case-insensitive substring match in either direction."""
    target = destination.lower()
    return any(
        allowed.lower() in target or target in allowed.lower()
        for allowed in allowed_regions
    )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TTLCache(Generic[T]):
    """Small in-process cache with per-entry expiry. Caches misses too."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Optional[T], float]] = {}

    def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        value, stored_at = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            return _MISSING
        return value

    def set(self, key: str, value: Optional[T]) -> None:
        self._entries[key] = (value, self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class CouponService:
    """Validates coupons, resolves corporate discounts and records redemptions."""

    def __init__(
        self,
        store: CouponStore,
        cache_ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.logger = get_logger("pricing.coupons")
        self.metrics = metrics
        self._now = now
        self._coupons: TTLCache[CouponRecord] = TTLCache(cache_ttl_seconds, clock)
        self._domains: TTLCache[Any] = TTLCache(cache_ttl_seconds, clock)
        self._background_tasks: Set[asyncio.Task] = set()

    async def get_coupon(self, code: str) -> Optional[CouponRecord]:
        """Coupon by normalized code, cached."""
        code = normalize_coupon_code(code)
        cached = self._coupons.get(code)
        if cached is not _MISSING:
            self.logger.debug("Coupon found in cache", code=code)
            return cached

        coupon = await self.store.get_coupon_by_code(code)
        self._coupons.set(code, coupon)
        return coupon

    async def validate(
        self,
        code: str,
        user_id: Optional[str] = None,
        bundle_id: Optional[str] = None,
        country: Optional[str] = None,
        region: Optional[str] = None,
    ) -> CouponValidation:
        """Validate `code` for this request.

        Invalid coupons are reported through `is_valid=False` and a reason;
        only store failures raise.
        """
        normalized = normalize_coupon_code(code or "")
        validation = await self._validate(normalized, user_id, bundle_id, country, region)

        self._record(validation)
        self.logger.info(
            "Coupon validated",
            code=normalized,
            valid=validation.is_valid,
            reason=validation.reason,
        )
        return validation

    async def _validate(
        self,
        code: str,
        user_id: Optional[str],
        bundle_id: Optional[str],
        country: Optional[str],
        region: Optional[str],
    ) -> CouponValidation:
        if not code:
            return CouponValidation.invalid(code, "Coupon code is empty")

        coupon = await self.get_coupon(code)
        if coupon is None:
            return CouponValidation.invalid(code, "Coupon not found")

        if not coupon.is_active:
            return CouponValidation.invalid(code, "Coupon is inactive")

        now = self._now()
        if coupon.valid_from is not None and _as_utc(coupon.valid_from) > now:
            return CouponValidation.invalid(code, "Coupon is not yet valid")
        if coupon.valid_until is not None and _as_utc(coupon.valid_until) < now:
            return CouponValidation.invalid(code, "Coupon has expired")

        usage = await self.store.get_coupon_usage(coupon.id, user_id)
        if coupon.max_total_usage is not None and usage.total_usage >= coupon.max_total_usage:
            return CouponValidation.invalid(code, "Coupon usage limit reached")
        if user_id and coupon.max_per_user is not None and usage.user_usage >= coupon.max_per_user:
            return CouponValidation.invalid(code, "Coupon usage limit reached for this user")

        if coupon.allowed_bundle_ids and bundle_id not in coupon.allowed_bundle_ids:
            return CouponValidation.invalid(code, "Coupon not valid for selected bundle")

        if coupon.allowed_regions:
            destination = region or country
            if not destination:
                return CouponValidation.invalid(code, "Cannot validate coupon region restrictions")
            if not region_allowed(coupon.allowed_regions, destination):
                return CouponValidation.invalid(code, "Coupon not valid for selected region")

        return CouponValidation(
            is_valid=True,
            code=code,
            coupon_id=coupon.id,
            discount_type=coupon.coupon_type,
            discount_value=coupon.value,
            min_spend=coupon.min_spend,
            max_discount=coupon.max_discount,
            valid_from=coupon.valid_from,
            valid_until=coupon.valid_until,
            usage_limit=coupon.max_total_usage,
            total_usage_count=usage.total_usage,
            user_usage_count=usage.user_usage,
            applicable_bundles=list(coupon.allowed_bundle_ids),
            applicable_regions=list(coupon.allowed_regions),
            description=coupon.description,
        )

    async def get_email_domain_discount(self, email: str) -> Optional[EmailDomainDiscount]:
        """Corporate discount for the e-mail's domain; None for a malformed address."""
        domain = email_domain(email)
        if domain is None:
            return None

        corporate = self._domains.get(domain)
        if corporate is _MISSING:
            corporate = await self.store.get_corporate_domain(domain)
            self._domains.set(domain, corporate)

        if corporate is None or not corporate.is_active:
            self.logger.debug("No corporate discount for domain", domain=domain)
            return EmailDomainDiscount(is_eligible=False, domain=domain)

        self.logger.debug(
            "Corporate discount found",
            domain=domain,
            discount_percentage=corporate.discount_percentage,
        )
        return EmailDomainDiscount(
            is_eligible=True,
            domain=domain,
            discount_type=DiscountType.PERCENTAGE,
            discount_value=corporate.discount_percentage,
            max_discount=corporate.max_discount,
            min_spend=corporate.min_spend,
        )

    def log_usage(self, record: CouponUsageRecord) -> asyncio.Task:
        """Record a redemption in the background; never raises into the caller."""
        task = asyncio.create_task(self._write_usage(record))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _write_usage(self, record: CouponUsageRecord) -> None:
        try:
            await self.store.log_coupon_usage(record)
            self.logger.info(
                "Coupon usage logged",
                coupon_id=record.coupon_id,
                user_id=record.user_id,
                discount_amount=record.discount_amount,
            )
        except Exception as e:
            error = CouponUsageLogError(record.coupon_id, str(e))
            self.logger.warning(
                "Failed to log coupon usage",
                code=error.code,
                coupon_id=record.coupon_id,
                error=str(e),
            )
            if self.metrics is not None:
                self.metrics.record_error(error.code)

    async def flush(self) -> None:
        """Wait for pending usage writes."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks))

    def clear_cache(self) -> None:
        self._coupons.clear()
        self._domains.clear()
        self.logger.info("Coupon and corporate domain caches cleared")

    def _record(self, validation: CouponValidation) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter(
                "coupon_validations_total",
                result="valid" if validation.is_valid else "invalid",
            )
