"""
Pricing breakdown assembler.

Derives the caller-facing figures from a pipeline trace. Intermediate values
keep full precision; money is rounded to cents only on the way out.
"""

from typing import List

from ..engine.models import EventType
from ..models import (
    AppliedRule,
    Bundle,
    CustomerDiscount,
    PricingBreakdown,
    PricingStep,
    RuleCategory,
)
from .processor import PipelineResult, round_money


def _impact(rules: List[AppliedRule], *event_types: str) -> float:
    return sum(r.impact for r in rules if r.event_type in event_types)


def _category_impact(rules: List[AppliedRule], category: RuleCategory) -> float:
    return sum(r.impact for r in rules if r.category == category)


def customer_discount_for(rule: AppliedRule, base_price: float) -> CustomerDiscount:
    """Customer-facing name and reason for one discount entry."""
    amount = abs(rule.impact)
    percentage = amount / base_price * 100 if base_price > 0 else 0.0
    lowered = rule.name.lower()

    if rule.event_type == EventType.APPLY_UNUSED_DAYS_DISCOUNT.value or "unused days" in lowered:
        name, reason = "Multi-day Savings", "Save more with longer validity periods"
    elif "volume" in lowered:
        name, reason = "Volume Discount", "Bulk purchase savings"
    elif "loyalty" in lowered:
        name, reason = "Loyalty Reward", "Thank you for being a valued customer"
    elif "promotional" in lowered:
        name, reason = "Special Promotion", "Limited time offer"
    else:
        name, reason = rule.name, "Special discount applied"

    return CustomerDiscount(
        name=name,
        amount=round_money(amount),
        percentage=round(percentage, 1),
        reason=reason,
    )


def _rounded_rule(rule: AppliedRule) -> AppliedRule:
    return rule.model_copy(update={"impact": round_money(rule.impact)})


def _rounded_step(step: PricingStep) -> PricingStep:
    return step.model_copy(update={
        "price_before": round_money(step.price_before),
        "price_after": round_money(step.price_after),
        "impact": round_money(step.impact),
    })


def build_breakdown(
    result: PipelineResult,
    selected_bundle: Bundle,
    unused_days: int,
    rules_evaluated: int = 0,
) -> PricingBreakdown:
    """Assemble the PricingBreakdown for a finished pipeline run."""
    rules = result.applied_rules
    cost = result.cost
    final_price = result.final_price

    markup = _impact(rules, EventType.APPLY_MARKUP.value)
    discount_value = abs(_category_impact(rules, RuleCategory.DISCOUNT))
    unused_days_discount = abs(_impact(rules, EventType.APPLY_UNUSED_DAYS_DISCOUNT.value))
    processing_cost = _category_impact(rules, RuleCategory.FEE)

    base_price = cost + markup
    total_cost = cost + processing_cost
    discount_rate = discount_value / base_price * 100 if base_price > 0 else 0.0
    discount_per_day = unused_days_discount / unused_days if unused_days > 0 else 0.0
    savings_percentage = discount_value / base_price * 100 if base_price > 0 else 0.0

    customer_discounts = [
        customer_discount_for(rule, base_price)
        for rule in rules
        if rule.category == RuleCategory.DISCOUNT and rule.impact < 0
    ]

    return PricingBreakdown(
        cost=round_money(cost),
        markup=round_money(markup),
        currency=selected_bundle.currency,
        unused_days=unused_days,
        discount_value=round_money(discount_value),
        discount_rate=round_money(discount_rate),
        discount_per_day=round_money(discount_per_day),
        price_after_discount=round_money(base_price - discount_value),
        processing_cost=round_money(processing_cost),
        processing_rate=result.processing_rate,
        total_cost=round_money(total_cost),
        final_revenue=round_money(final_price - processing_cost),
        net_profit=round_money(final_price - total_cost),
        final_price=round_money(final_price),
        savings_amount=round_money(discount_value),
        savings_percentage=round(savings_percentage, 1),
        rules_evaluated=rules_evaluated,
        customer_discounts=customer_discounts,
        pricing_steps=[_rounded_step(step) for step in result.steps],
        applied_rules=[_rounded_rule(rule) for rule in rules],
    )
