"""
Fact resolvers registered on each request's almanac.
"""

from typing import Any, Dict

from ..models import RequestFacts


def runtime_facts(request: RequestFacts) -> Dict[str, Any]:
    """Constant facts seeded from the request."""
    return {
        "group": request.group,
        "requestedGroup": request.group,
        "requestedDays": request.requested_days,
        "requestedValidityDays": request.requested_days,
        "country": request.country,
        "region": request.region,
        "paymentMethod": request.payment_method.value,
        "strategyId": request.strategy_id,
        "couponCode": request.coupon_code,
        "userId": request.user_id,
        "userEmail": request.user_email,
        "quantity": request.quantity,
    }
