"""
Per-event-type parameter schemas for pricing rules.

Stored params use camelCase keys (`markupMatrix`, `minimumProfit`); the
models accept either spelling and dump back to the stored form.
"""

import math
from typing import Any, Dict, Literal, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..engine.models import EventType
from ..models import DiscountType


def raw_number(value: Any) -> Optional[float]:
    """`value` as a float, or None when it is not numeric."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    return None if math.isnan(number) else number


def legacy_discount_actions(data: Any) -> Any:
    # Older blocks store {"actions": {"type": "APPLY_DISCOUNT_PERCENTAGE", "value": 10}}
    if isinstance(data, Mapping) and isinstance(data.get("actions"), Mapping):
        data = dict(data)
        actions = data.pop("actions")
        if actions.get("type") == "APPLY_FIXED_DISCOUNT":
            data.setdefault("discountType", DiscountType.FIXED_AMOUNT.value)
        data.setdefault("value", actions.get("value"))
    return data


def legacy_profit_value(data: Any) -> Any:
    if isinstance(data, Mapping) and "value" in data and "minimumProfit" not in data:
        data = dict(data)
        data["minimumProfit"] = data.pop("value")
    return data


class RuleParams(BaseModel):
    """Common base: unknown keys are kept, `ruleId` tags the audit entry."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    rule_id: Optional[str] = Field(None, alias="ruleId")

    @classmethod
    def from_raw(cls, params: Mapping[str, Any]) -> Optional["RuleParams"]:
        """Build params from stored values that failed validation.

        Used for rules loaded under the lenient policy. Returns None when a
        value the stage needs is missing or not numeric.
        """
        return cls.model_construct(**dict(params))


class SetBasePriceParams(RuleParams):
    source: Literal["selected", "previous"] = "selected"

    @classmethod
    def from_raw(cls, params: Mapping[str, Any]) -> Optional["SetBasePriceParams"]:
        source = params.get("source", "selected")
        if source not in ("selected", "previous"):
            return None
        return cls.model_construct(source=source)


class MarkupParams(RuleParams):
    markup_matrix: Optional[Dict[str, Dict[str, float]]] = Field(None, alias="markupMatrix")
    value: Optional[float] = Field(None, ge=0)

    @model_validator(mode="after")
    def _require_amount(self) -> "MarkupParams":
        if self.markup_matrix is None and self.value is None:
            raise ValueError("markup requires 'markupMatrix' or 'value'")
        return self

    def amount_for(self, group_name: str, validity_days: int) -> float:
        if self.markup_matrix is not None:
            return float(self.markup_matrix.get(group_name, {}).get(str(validity_days), 0.0))
        return float(self.value or 0.0)

    @classmethod
    def from_raw(cls, params: Mapping[str, Any]) -> Optional["MarkupParams"]:
        matrix = params.get("markupMatrix", params.get("markup_matrix"))
        if isinstance(matrix, Mapping):
            cleaned = {
                str(group): {
                    str(days): amount
                    for days, amount in ((d, raw_number(a)) for d, a in by_days.items())
                    if amount is not None
                }
                for group, by_days in matrix.items()
                if isinstance(by_days, Mapping)
            }
            return cls.model_construct(markup_matrix=cleaned)
        value = raw_number(params.get("value"))
        if value is None:
            return None
        return cls.model_construct(value=value)


class UnusedDaysDiscountParams(RuleParams):
    pass


class DiscountParams(RuleParams):
    source: Literal["rule", "coupon", "corporate", "volume"] = "rule"
    discount_type: DiscountType = Field(DiscountType.PERCENTAGE, alias="discountType")
    value: Optional[float] = Field(None, ge=0)
    min_spend: Optional[float] = Field(None, ge=0, alias="minSpend")
    max_discount: Optional[float] = Field(None, ge=0, alias="maxDiscount")

    @model_validator(mode="before")
    @classmethod
    def _from_actions(cls, data: Any) -> Any:
        return legacy_discount_actions(data)

    @model_validator(mode="after")
    def _require_value(self) -> "DiscountParams":
        if self.source == "rule" and self.value is None:
            raise ValueError("rule-defined discount requires 'value'")
        if self.discount_type == DiscountType.PERCENTAGE and self.value is not None and self.value > 100:
            raise ValueError("percentage discount cannot exceed 100")
        return self

    @classmethod
    def from_raw(cls, params: Mapping[str, Any]) -> Optional["DiscountParams"]:
        data = legacy_discount_actions(params)
        source = data.get("source", "rule")
        if source not in ("rule", "coupon", "corporate", "volume"):
            return None
        try:
            discount_type = DiscountType(data.get("discountType", data.get("discount_type", DiscountType.PERCENTAGE)))
        except ValueError:
            return None
        value = raw_number(data.get("value"))
        if source == "rule" and value is None:
            return None
        return cls.model_construct(
            source=source,
            discount_type=discount_type,
            value=value,
            min_spend=raw_number(data.get("minSpend", data.get("min_spend"))),
            max_discount=raw_number(data.get("maxDiscount", data.get("max_discount"))),
        )


class ProfitConstraintParams(RuleParams):
    minimum_profit: float = Field(1.5, ge=0, alias="minimumProfit")

    @model_validator(mode="before")
    @classmethod
    def _from_value(cls, data: Any) -> Any:
        return legacy_profit_value(data)

    @classmethod
    def from_raw(cls, params: Mapping[str, Any]) -> Optional["ProfitConstraintParams"]:
        data = legacy_profit_value(params)
        raw = data.get("minimumProfit", data.get("minimum_profit"))
        if raw is None:
            return cls.model_construct()
        minimum_profit = raw_number(raw)
        if minimum_profit is None:
            return None
        return cls.model_construct(minimum_profit=minimum_profit)


class FeeRate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    percentage_fee: float = Field(..., ge=0, alias="percentageFee")
    fixed_fee: float = Field(0.0, ge=0, alias="fixedFee")


class ProcessingFeeParams(RuleParams):
    fees_matrix: Optional[Dict[str, FeeRate]] = Field(None, alias="feesMatrix")
    value: Optional[float] = Field(None, ge=0)
    method: Optional[str] = None

    @model_validator(mode="after")
    def _require_rate(self) -> "ProcessingFeeParams":
        if self.fees_matrix is None and self.value is None:
            raise ValueError("processing fee requires 'feesMatrix' or 'value'")
        return self

    def rate_for(self, payment_method: str) -> Optional[FeeRate]:
        if self.fees_matrix is not None:
            return self.fees_matrix.get(payment_method)
        if self.method and self.method != payment_method:
            return None
        return FeeRate(percentage_fee=self.value or 0.0)

    @classmethod
    def from_raw(cls, params: Mapping[str, Any]) -> Optional["ProcessingFeeParams"]:
        matrix = params.get("feesMatrix", params.get("fees_matrix"))
        if isinstance(matrix, Mapping):
            rates = {}
            for method, rate in matrix.items():
                if not isinstance(rate, Mapping):
                    continue
                percentage_fee = raw_number(rate.get("percentageFee"))
                if percentage_fee is None:
                    continue
                rates[str(method)] = FeeRate.model_construct(
                    percentage_fee=percentage_fee,
                    fixed_fee=raw_number(rate.get("fixedFee")) or 0.0,
                )
            return cls.model_construct(fees_matrix=rates)
        value = raw_number(params.get("value"))
        if value is None:
            return None
        method = params.get("method")
        return cls.model_construct(value=value, method=method if isinstance(method, str) else None)


class RoundingParams(RuleParams):
    strategy: Literal["nearest-whole", "nearest-99", "nearest-95", "nearest-9"] = "nearest-whole"

    @classmethod
    def from_raw(cls, params: Mapping[str, Any]) -> Optional["RoundingParams"]:
        strategy = params.get("strategy", "nearest-whole")
        if not isinstance(strategy, str):
            return None
        return cls.model_construct(strategy=strategy)


EVENT_PARAMS_SCHEMAS: Dict[str, Type[RuleParams]] = {
    EventType.SET_BASE_PRICE.value: SetBasePriceParams,
    EventType.APPLY_MARKUP.value: MarkupParams,
    EventType.APPLY_UNUSED_DAYS_DISCOUNT.value: UnusedDaysDiscountParams,
    EventType.APPLY_DISCOUNT.value: DiscountParams,
    EventType.APPLY_PROFIT_CONSTRAINT.value: ProfitConstraintParams,
    EventType.APPLY_PROCESSING_FEE.value: ProcessingFeeParams,
    EventType.APPLY_PSYCHOLOGICAL_ROUNDING.value: RoundingParams,
}


def get_params_schema(event_type: str) -> Optional[Type[RuleParams]]:
    return EVENT_PARAMS_SCHEMAS.get(event_type)


def validate_event_params(event_type: str, params: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate params for `event_type` and return them in stored form.

    Raises KeyError for an unknown event type and pydantic's
    ValidationError for invalid params.
    """
    schema = EVENT_PARAMS_SCHEMAS[event_type]
    model = schema.model_validate(dict(params))
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)
