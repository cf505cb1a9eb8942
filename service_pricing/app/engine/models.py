"""
Rule and event data models for the pricing engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .conditions import Condition


class EventType(str, Enum):
    """Event types understood by the pricing pipeline."""
    SET_BASE_PRICE = "set-base-price"
    APPLY_MARKUP = "apply-markup"
    APPLY_UNUSED_DAYS_DISCOUNT = "apply-unused-days-discount"
    APPLY_DISCOUNT = "apply-discount"
    APPLY_PROFIT_CONSTRAINT = "apply-profit-constraint"
    APPLY_PROCESSING_FEE = "apply-processing-fee"
    APPLY_PSYCHOLOGICAL_ROUNDING = "apply-psychological-rounding"


def normalize_event_type(event_type: str) -> str:
    """Normalize stored event types ('APPLY_MARKUP' -> 'apply-markup')."""
    return event_type.strip().lower().replace("_", "-")


def _freeze(params: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(params or {}))


@dataclass(frozen=True)
class Event:
    """Event emitted by a matched rule."""
    type: str
    params: Mapping[str, Any] = field(default_factory=dict)
    rule_name: Optional[str] = None
    priority: int = 0

    def __post_init__(self):
        object.__setattr__(self, "type", normalize_event_type(self.type))
        object.__setattr__(self, "params", _freeze(self.params))

    @property
    def rule_id(self) -> str:
        """Audit ID: explicit `ruleId` param, else rule name, else event type."""
        return str(self.params.get("ruleId") or self.rule_name or self.type)


@dataclass(frozen=True)
class Rule:
    """Pricing rule: a condition tree paired with the event it emits."""
    name: str
    conditions: Condition
    event: Event
    priority: int = 0
    rule_id: Optional[str] = None
