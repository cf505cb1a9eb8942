"""
Event processing pipeline.

Folds the events emitted by matched rules into a price, one canonical stage
at a time, and records the audit trail (applied rules and pricing steps).
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from shared.logging import get_logger

from ..engine.models import Event, EventType
from ..models import (
    AppliedRule,
    Bundle,
    CouponUsageRecord,
    CouponValidation,
    DiscountType,
    EmailDomainDiscount,
    PricingStep,
    RuleCategory,
    VolumeDiscountTier,
)
from ..schemas.event_params import (
    DiscountParams,
    MarkupParams,
    ProcessingFeeParams,
    ProfitConstraintParams,
    RoundingParams,
    RuleParams,
    SetBasePriceParams,
    UnusedDaysDiscountParams,
)


STAGE_ORDER = [
    EventType.SET_BASE_PRICE.value,
    EventType.APPLY_MARKUP.value,
    EventType.APPLY_UNUSED_DAYS_DISCOUNT.value,
    EventType.APPLY_DISCOUNT.value,
    EventType.APPLY_PROFIT_CONSTRAINT.value,
    EventType.APPLY_PROCESSING_FEE.value,
    EventType.APPLY_PSYCHOLOGICAL_ROUNDING.value,
]

STAGE_NAMES = {
    EventType.SET_BASE_PRICE.value: "Base Price",
    EventType.APPLY_MARKUP.value: "Markup Application",
    EventType.APPLY_UNUSED_DAYS_DISCOUNT.value: "Multi-day Discount",
    EventType.APPLY_DISCOUNT.value: "Discount",
    EventType.APPLY_PROFIT_CONSTRAINT.value: "Profit Adjustment",
    EventType.APPLY_PROCESSING_FEE.value: "Processing Fee",
    EventType.APPLY_PSYCHOLOGICAL_ROUNDING.value: "Price Rounding",
}

STAGE_CATEGORIES = {
    EventType.SET_BASE_PRICE.value: RuleCategory.BUNDLE_ADJUSTMENT,
    EventType.APPLY_MARKUP.value: RuleCategory.BUNDLE_ADJUSTMENT,
    EventType.APPLY_UNUSED_DAYS_DISCOUNT.value: RuleCategory.DISCOUNT,
    EventType.APPLY_DISCOUNT.value: RuleCategory.DISCOUNT,
    EventType.APPLY_PROFIT_CONSTRAINT.value: RuleCategory.CONSTRAINT,
    EventType.APPLY_PROCESSING_FEE.value: RuleCategory.FEE,
    EventType.APPLY_PSYCHOLOGICAL_ROUNDING.value: RuleCategory.CONSTRAINT,
}

# Lower rank wins
DISCOUNT_PRECEDENCE = {"coupon": 0, "corporate": 1, "volume": 2, "rule": 3}


def round_money(value: float) -> float:
    # + 0.0 turns -0.0 into 0.0
    return round(value, 2) + 0.0


def psychological_round(price: float, strategy: str) -> float:
    """Snap `price` to a price point."""
    if strategy == "nearest-99":
        return math.floor(price) + 0.99
    if strategy == "nearest-95":
        return math.floor(price) + 0.95
    if strategy == "nearest-9":
        return max(math.floor(price / 10 + 0.5) * 10 - 1, 0.0)
    return float(math.floor(price + 0.5))


class EventBag:
    """Events grouped by type, each group in emission (priority) order."""

    def __init__(self, events: Iterable[Event] = ()):
        self._events: Dict[str, List[Event]] = {}
        for event in events:
            self.add(event)

    def add(self, event: Event) -> None:
        self._events.setdefault(event.type, []).append(event)

    def get(self, event_type: str) -> List[Event]:
        return list(self._events.get(event_type, []))

    def unknown_types(self) -> List[str]:
        return [t for t in self._events if t not in STAGE_NAMES]

    def __len__(self) -> int:
        return sum(len(events) for events in self._events.values())


@dataclass
class PipelineContext:
    """Facts the stages read; resolved before the fold starts."""
    selected_bundle: Bundle
    requested_days: int
    unused_days: int
    is_exact_match: bool
    payment_method: str
    previous_bundle: Optional[Bundle] = None
    coupon: Optional[CouponValidation] = None
    email_discount: Optional[EmailDomainDiscount] = None
    volume_tier: Optional[VolumeDiscountTier] = None
    user_id: Optional[str] = None


@dataclass
class DiscountCandidate:
    source: str
    name: str
    event: Event
    discount_type: DiscountType
    value: float
    min_spend: Optional[float] = None
    max_discount: Optional[float] = None
    coupon_id: Optional[str] = None
    order: int = 0

    def amount_for(self, price: float) -> float:
        if self.discount_type == DiscountType.FIXED_AMOUNT:
            amount = self.value
        else:
            amount = price * self.value / 100
        if self.max_discount is not None:
            amount = min(amount, self.max_discount)
        return max(0.0, min(amount, price))


@dataclass
class PipelineResult:
    """Trace of one fold."""
    cost: float
    final_price: float
    applied_rules: List[AppliedRule] = field(default_factory=list)
    steps: List[PricingStep] = field(default_factory=list)
    processing_rate: float = 0.0
    coupon_usage: Optional[CouponUsageRecord] = None


class EventProcessor:
    """Applies events to a running price in canonical stage order."""

    def __init__(self, retention_factor: float = 0.5, markup_aggregation: str = "sum"):
        self.retention_factor = retention_factor
        self.markup_aggregation = markup_aggregation
        self.logger = get_logger("pricing.pipeline")

    def process(self, events: Iterable[Event], context: PipelineContext) -> PipelineResult:
        bag = events if isinstance(events, EventBag) else EventBag(events)

        for event_type in bag.unknown_types():
            self.logger.warning("Ignoring unknown event type", event_type=event_type, events=len(bag.get(event_type)))

        cost = self._bundle_cost(context)
        run = _Run(cost=cost)
        selected = context.selected_bundle
        run.steps.append(PricingStep(
            order=0,
            name="Bundle Selection",
            price_before=0.0,
            price_after=cost,
            impact=cost,
            metadata={
                "bundle": selected.name,
                "days": selected.validity_days,
                "selection_reason": "exact_match" if context.is_exact_match else "next_longer",
            },
        ))

        handlers = {
            EventType.SET_BASE_PRICE.value: self._set_base_price,
            EventType.APPLY_MARKUP.value: self._apply_markup,
            EventType.APPLY_UNUSED_DAYS_DISCOUNT.value: self._apply_unused_days,
            EventType.APPLY_DISCOUNT.value: self._apply_discount,
            EventType.APPLY_PROFIT_CONSTRAINT.value: self._apply_profit_constraint,
            EventType.APPLY_PROCESSING_FEE.value: self._apply_processing_fee,
            EventType.APPLY_PSYCHOLOGICAL_ROUNDING.value: self._apply_rounding,
        }

        for event_type in STAGE_ORDER:
            stage_events = bag.get(event_type)
            if not stage_events:
                continue
            self.logger.debug("Processing stage", event_type=event_type, events=len(stage_events))
            handlers[event_type](stage_events, context, run)

        self.logger.info(
            "Pipeline completed",
            cost=cost,
            final_price=run.price,
            applied_rules=len(run.applied_rules),
        )

        return PipelineResult(
            cost=cost,
            final_price=run.price,
            applied_rules=run.applied_rules,
            steps=run.steps,
            processing_rate=run.processing_rate,
            coupon_usage=run.coupon_usage,
        )

    def _bundle_cost(self, context: PipelineContext, source: str = "selected") -> float:
        bundles = [context.selected_bundle, context.previous_bundle]
        if source == "previous":
            bundles.reverse()
        for bundle in bundles:
            if bundle is not None and bundle.price is not None:
                return float(bundle.price)
        return 0.0

    def _params(self, event: Event, schema, run: "_Run") -> Optional[RuleParams]:
        try:
            return schema.model_validate(dict(event.params))
        except ValidationError as e:
            error = str(e)

        # Rules kept under the lenient policy are priced with their raw values
        params = schema.from_raw(event.params)
        if params is not None:
            self.logger.warning(
                "Using unvalidated event params",
                rule=event.rule_name,
                event_type=event.type,
                error=error,
            )
            return params

        self.logger.warning(
            "Skipping event with unusable params",
            rule=event.rule_name,
            event_type=event.type,
            error=error,
        )
        run.step(event, run.price, {"skipped": "invalid_params"})
        return None

    # Stages

    def _set_base_price(self, events: List[Event], context: PipelineContext, run: "_Run") -> None:
        for event in events:
            params = self._params(event, SetBasePriceParams, run)
            if params is None:
                continue
            run.apply(event, self._bundle_cost(context, params.source), {"source": params.source})

    def _apply_markup(self, events: List[Event], context: PipelineContext, run: "_Run") -> None:
        bundle = context.selected_bundle
        markups = []
        for event in events:
            params = self._params(event, MarkupParams, run)
            if params is None:
                continue
            markups.append((event, params.amount_for(bundle.group_name, bundle.validity_days)))

        if self.markup_aggregation == "max" and markups:
            winner = max(markups, key=lambda m: m[1])
            for event, amount in markups:
                if event is winner[0]:
                    run.apply(event, run.price + amount, {"markup": amount})
                else:
                    run.step(event, run.price, {"markup": amount, "superseded_by": winner[0].rule_id})
            return

        for event, amount in markups:
            run.apply(event, run.price + amount, {"markup": amount})

    def _apply_unused_days(self, events: List[Event], context: PipelineContext, run: "_Run") -> None:
        applied = False
        for event in events:
            if self._params(event, UnusedDaysDiscountParams, run) is None:
                continue
            if context.unused_days <= 0 or context.is_exact_match:
                run.step(event, run.price, {"skipped": "exact_match"})
                continue
            if applied:
                run.step(event, run.price, {"skipped": "already_applied"})
                continue

            daily_rate = self._bundle_cost(context) / context.selected_bundle.validity_days
            discount = daily_rate * context.unused_days * self.retention_factor
            run.apply(event, run.price - discount, {
                "unused_days": context.unused_days,
                "daily_rate": daily_rate,
                "retention_factor": self.retention_factor,
            })
            applied = True

    def _apply_discount(self, events: List[Event], context: PipelineContext, run: "_Run") -> None:
        candidates = self._discount_candidates(events, context, run)
        if not candidates:
            self.logger.debug("No eligible discount")
            return

        for candidate in candidates:
            event = candidate.event
            details = {"source": candidate.source, "discount_type": candidate.discount_type.value, "value": candidate.value}

            if candidate.min_spend is not None and run.price < candidate.min_spend:
                run.note(event, {**details, "skipped": "min_spend_not_met", "min_spend": candidate.min_spend},
                         name=candidate.name)
                continue

            price_before = run.price
            amount = candidate.amount_for(price_before)
            run.apply(event, price_before - amount, details, name=candidate.name)

            if candidate.source == "coupon" and amount > 0 and context.user_id and candidate.coupon_id:
                run.coupon_usage = CouponUsageRecord(
                    coupon_id=candidate.coupon_id,
                    user_id=context.user_id,
                    original_amount=round_money(price_before),
                    discount_amount=round_money(amount),
                    discounted_amount=round_money(price_before - amount),
                )
            return

    def _discount_candidates(
        self, events: List[Event], context: PipelineContext, run: "_Run"
    ) -> List[DiscountCandidate]:
        candidates: List[DiscountCandidate] = []
        for order, event in enumerate(events):
            params = self._params(event, DiscountParams, run)
            if params is None:
                continue
            candidate = self._candidate_for(event, params, context, order)
            if candidate is None:
                coupon = context.coupon
                if params.source == "coupon" and coupon is not None and not coupon.is_valid:
                    run.note(event, {"source": "coupon", "skipped": "coupon_invalid", "reason": coupon.reason},
                             name=f"Coupon {coupon.code}")
                else:
                    run.step(event, run.price, {"source": params.source, "skipped": "not_eligible"})
                continue
            candidates.append(candidate)

        candidates.sort(key=lambda c: (DISCOUNT_PRECEDENCE[c.source], c.order))
        return candidates

    def _candidate_for(
        self, event: Event, params: DiscountParams, context: PipelineContext, order: int
    ) -> Optional[DiscountCandidate]:
        rule_name = event.rule_name or event.type

        if params.source == "coupon":
            coupon = context.coupon
            if coupon is None or not coupon.is_valid or coupon.discount_value <= 0:
                return None
            return DiscountCandidate(
                source="coupon",
                name=f"Coupon {coupon.code}",
                event=event,
                discount_type=coupon.discount_type,
                value=coupon.discount_value,
                min_spend=coupon.min_spend,
                max_discount=coupon.max_discount,
                coupon_id=coupon.coupon_id,
                order=order,
            )

        if params.source == "corporate":
            corporate = context.email_discount
            if corporate is None or not corporate.is_eligible or corporate.discount_value <= 0:
                return None
            return DiscountCandidate(
                source="corporate",
                name=f"Corporate discount ({corporate.domain})",
                event=event,
                discount_type=corporate.discount_type,
                value=corporate.discount_value,
                min_spend=corporate.min_spend,
                max_discount=corporate.max_discount,
                order=order,
            )

        if params.source == "volume":
            tier = context.volume_tier
            if tier is None or tier.discount_percentage <= 0:
                return None
            return DiscountCandidate(
                source="volume",
                name=f"Volume discount ({tier.description or tier.min_quantity})",
                event=event,
                discount_type=DiscountType.PERCENTAGE,
                value=tier.discount_percentage,
                order=order,
            )

        return DiscountCandidate(
            source="rule",
            name=rule_name,
            event=event,
            discount_type=params.discount_type,
            value=params.value or 0.0,
            min_spend=params.min_spend,
            max_discount=params.max_discount,
            order=order,
        )

    def _apply_profit_constraint(self, events: List[Event], context: PipelineContext, run: "_Run") -> None:
        for event in events:
            params = self._params(event, ProfitConstraintParams, run)
            if params is None:
                continue
            floor_price = run.cost + params.minimum_profit
            details = {"minimum_profit": params.minimum_profit, "floor_price": floor_price}
            if run.price - run.cost < params.minimum_profit:
                run.apply(event, floor_price, details)
            else:
                run.step(event, run.price, details)

    def _apply_processing_fee(self, events: List[Event], context: PipelineContext, run: "_Run") -> None:
        for event in events:
            params = self._params(event, ProcessingFeeParams, run)
            if params is None:
                continue
            rate = params.rate_for(context.payment_method)
            if rate is None:
                run.step(event, run.price, {"payment_method": context.payment_method, "skipped": "no_fee_rate"})
                continue

            fee = run.price * rate.percentage_fee / 100 + rate.fixed_fee
            run.processing_rate = rate.percentage_fee
            run.apply(event, run.price + fee, {
                "payment_method": context.payment_method,
                "percentage_fee": rate.percentage_fee,
                "fixed_fee": rate.fixed_fee,
            })

    def _apply_rounding(self, events: List[Event], context: PipelineContext, run: "_Run") -> None:
        for event in events:
            params = self._params(event, RoundingParams, run)
            if params is None:
                continue
            run.apply(event, psychological_round(run.price, params.strategy), {"strategy": params.strategy})


class _Run:
    """Mutable state of one fold."""

    def __init__(self, cost: float):
        self.cost = cost
        self.price = cost
        self.applied_rules: List[AppliedRule] = []
        self.steps: List[PricingStep] = []
        self.processing_rate = 0.0
        self.coupon_usage: Optional[CouponUsageRecord] = None

    def apply(self, event: Event, new_price: float, details: Dict[str, Any], name: Optional[str] = None) -> None:
        """Move the price; audited only when it actually changes."""
        price_before = self.price
        self.price = new_price
        self.step(event, price_before, details)
        if new_price != price_before:
            self._audit(event, new_price - price_before, details, name)

    def note(self, event: Event, details: Dict[str, Any], name: Optional[str] = None) -> None:
        """Zero-impact audit entry explaining a skipped adjustment."""
        self.step(event, self.price, details)
        self._audit(event, 0.0, details, name)

    def step(self, event: Event, price_before: float, metadata: Dict[str, Any]) -> None:
        self.steps.append(PricingStep(
            order=len(self.steps),
            name=STAGE_NAMES.get(event.type, event.type),
            price_before=price_before,
            price_after=self.price,
            impact=self.price - price_before,
            rule_id=event.rule_id,
            metadata=dict(metadata),
        ))

    def _audit(self, event: Event, impact: float, details: Dict[str, Any], name: Optional[str]) -> None:
        self.applied_rules.append(AppliedRule(
            id=event.rule_id,
            name=name or event.rule_name or STAGE_NAMES.get(event.type, event.type),
            category=STAGE_CATEGORIES[event.type],
            impact=impact,
            event_type=event.type,
            details=dict(details),
        ))
