"""
Error taxonomy for the pricing service.
"""

from typing import Any, Dict, Optional

from shared.errors import ServiceException


class PricingEngineError(ServiceException):
    """Base class for pricing engine errors."""


class InvalidRequestError(PricingEngineError):
    """Request facts failed validation."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_PRICING_REQUEST", message, details)


class BundleNotFoundError(PricingEngineError):
    """No catalog bundle covers the requested duration."""

    def __init__(self, requested_days: int, details: Optional[Dict[str, Any]] = None):
        self.requested_days = requested_days
        super().__init__(
            "BUNDLE_NOT_FOUND",
            f"No bundle covers {requested_days} days",
            details,
        )


class RuleLoadError(PricingEngineError):
    """Rule store unreachable, or no rules where a rule set was required."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("RULE_LOAD_FAILED", message, details)


class InvalidRuleParamsError(PricingEngineError):
    """Rule event params do not match the schema for their event type."""

    def __init__(self, rule_name: str, event_type: str, errors: Any = None):
        self.rule_name = rule_name
        self.event_type = event_type
        self.errors = errors
        super().__init__(
            "INVALID_RULE_PARAMS",
            f"Invalid params for rule '{rule_name}' ({event_type})",
            {"rule": rule_name, "event_type": event_type, "errors": errors},
        )


class CouponUsageLogError(PricingEngineError):
    """Recording a coupon redemption failed."""

    def __init__(self, coupon_id: str, message: str):
        self.coupon_id = coupon_id
        super().__init__("COUPON_USAGE_LOG_FAILED", message, {"coupon_id": coupon_id})


class UnknownFactError(PricingEngineError):
    """A fact name was requested that was never registered."""

    def __init__(self, fact: str):
        self.fact = fact
        super().__init__("UNKNOWN_FACT", f"Undefined fact: {fact}", {"fact": fact})


class FactComputationError(PricingEngineError):
    """A fact resolver raised; the original exception is kept as `cause`."""

    def __init__(self, fact: str, cause: BaseException):
        self.fact = fact
        self.cause = cause
        super().__init__(
            "FACT_COMPUTATION_FAILED",
            f"Failed to compute fact '{fact}': {cause}",
            {"fact": fact, "cause": type(cause).__name__},
        )

    def root_cause(self) -> BaseException:
        """Innermost non-fact exception behind a chain of dependent facts."""
        cause = self.cause
        while isinstance(cause, FactComputationError):
            cause = cause.cause
        return cause


class ConditionParseError(PricingEngineError):
    """A stored condition tree is malformed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("CONDITION_PARSE_ERROR", message, details)


class PricingTimeoutError(PricingEngineError):
    """The pricing request exceeded its time budget."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            "PRICING_TIMEOUT",
            f"Pricing calculation exceeded {timeout_seconds}s",
            {"timeout_seconds": timeout_seconds},
        )
