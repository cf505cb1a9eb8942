"""
Condition trees for pricing rules.

Conditions are stored as JSON and parsed into a small tagged union:

    {"all": [...]}  {"any": [...]}  {"not": {...}}
    {"fact": "selectedBundle", "path": "$.is_unlimited", "operator": "equal", "value": true}

Evaluation is total: a leaf whose fact value has the wrong type for its
operator evaluates to False instead of raising.
"""

import re
from dataclasses import dataclass
from numbers import Number
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from shared.logging import get_logger

from ..errors import ConditionParseError, UnknownFactError


logger = get_logger("pricing.conditions")

_MISSING = object()
_PATH_TOKEN = re.compile(r"\.([^.\[\]]+)|\[(\d+)\]|\[['\"]([^'\"]+)['\"]\]")


@dataclass(frozen=True)
class FactReference:
    """Reference to another fact used as a comparison value or event param."""
    fact: str
    path: Optional[str] = None


@dataclass(frozen=True)
class FactCondition:
    """Leaf condition comparing a fact (or a path into it) with a value."""
    fact: str
    operator: str
    value: Any = None
    path: Optional[str] = None


@dataclass(frozen=True)
class AllCondition:
    conditions: Tuple["Condition", ...] = ()


@dataclass(frozen=True)
class AnyCondition:
    conditions: Tuple["Condition", ...] = ()


@dataclass(frozen=True)
class NotCondition:
    condition: "Condition"


Condition = Union[FactCondition, AllCondition, AnyCondition, NotCondition]


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def _strict_equal(left: Any, right: Any) -> bool:
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    if _is_number(left) and _is_number(right):
        return left == right
    if type(left) is not type(right) and not (isinstance(left, str) and isinstance(right, str)):
        return left is None and right is None
    return left == right


def _numeric(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def op(fact_value: Any, value: Any) -> bool:
        if not (_is_number(fact_value) and _is_number(value)):
            return False
        return compare(fact_value, value)
    return op


def _in(fact_value: Any, value: Any) -> bool:
    if not isinstance(value, (list, tuple)):
        return False
    return any(_strict_equal(fact_value, item) for item in value)


def _not_in(fact_value: Any, value: Any) -> bool:
    if not isinstance(value, (list, tuple)):
        return False
    return not _in(fact_value, value)


def _contains(fact_value: Any, value: Any) -> bool:
    if isinstance(fact_value, str):
        return isinstance(value, str) and value in fact_value
    if isinstance(fact_value, (list, tuple, set, frozenset)):
        return any(_strict_equal(item, value) for item in fact_value)
    return False


def _does_not_contain(fact_value: Any, value: Any) -> bool:
    if not isinstance(fact_value, (str, list, tuple, set, frozenset)):
        return False
    return not _contains(fact_value, value)


def _between(fact_value: Any, value: Any) -> bool:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return False
    low, high = value
    if not (_is_number(fact_value) and _is_number(low) and _is_number(high)):
        return False
    return low <= fact_value <= high


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equal": _strict_equal,
    "notEqual": lambda fact_value, value: not _strict_equal(fact_value, value),
    "greaterThan": _numeric(lambda a, b: a > b),
    "lessThan": _numeric(lambda a, b: a < b),
    "greaterThanInclusive": _numeric(lambda a, b: a >= b),
    "lessThanInclusive": _numeric(lambda a, b: a <= b),
    "in": _in,
    "notIn": _not_in,
    "contains": _contains,
    "doesNotContain": _does_not_contain,
    "exists": lambda fact_value, value: fact_value is not None,
    "notExists": lambda fact_value, value: fact_value is None,
    "between": _between,
}


def resolve_path(value: Any, path: Optional[str]) -> Any:
    """Drill into `value` with a JSON-path-like accessor ('$.a.b', '$.items[0]').

    Returns None when any segment is missing.
    """
    if not path or path == "$":
        return value
    if not path.startswith("$"):
        path = "$." + path

    position = 1
    current = value
    while position < len(path):
        match = _PATH_TOKEN.match(path, position)
        if match is None:
            return None
        key, index, quoted = match.groups()
        position = match.end()
        current = _step(current, quoted or key, int(index) if index is not None else None)
        if current is _MISSING:
            return None
    return current


def _step(current: Any, key: Optional[str], index: Optional[int]) -> Any:
    if current is None:
        return _MISSING
    if index is not None:
        if isinstance(current, (list, tuple)) and -len(current) <= index < len(current):
            return current[index]
        return _MISSING
    if isinstance(current, Mapping):
        return current.get(key, _MISSING)
    return getattr(current, key, _MISSING)


def _parse_value(raw: Any) -> Any:
    if isinstance(raw, Mapping) and "fact" in raw and set(raw) <= {"fact", "path"}:
        return FactReference(fact=raw["fact"], path=raw.get("path"))
    return raw


def parse_condition(raw: Any) -> Condition:
    """Build a condition tree from its stored JSON form.

    `None` and `[]` parse to an empty `all`, which always matches.
    """
    if raw is None or raw == [] or raw == {}:
        return AllCondition(())

    if isinstance(raw, list):
        return AllCondition(tuple(parse_condition(item) for item in raw))

    if not isinstance(raw, Mapping):
        raise ConditionParseError("Condition must be an object", {"condition": repr(raw)})

    if "all" in raw or "any" in raw:
        key = "all" if "all" in raw else "any"
        children = raw[key]
        if not isinstance(children, list):
            raise ConditionParseError(f"'{key}' must hold a list", {"condition": repr(raw)})
        parsed = tuple(parse_condition(child) for child in children)
        return AllCondition(parsed) if key == "all" else AnyCondition(parsed)

    if "not" in raw:
        child = raw["not"]
        if isinstance(child, list):
            if len(child) != 1:
                raise ConditionParseError("'not' takes exactly one condition", {"condition": repr(raw)})
            child = child[0]
        return NotCondition(parse_condition(child))

    fact = raw.get("fact")
    operator = raw.get("operator")
    if not isinstance(fact, str) or not fact:
        raise ConditionParseError("Leaf condition requires a 'fact'", {"condition": repr(raw)})
    if operator not in OPERATORS:
        raise ConditionParseError(f"Unknown operator: {operator}", {"condition": repr(raw)})

    return FactCondition(
        fact=fact,
        operator=operator,
        value=_parse_value(raw.get("value")),
        path=raw.get("path"),
    )


async def read_fact(almanac, fact: str, path: Optional[str] = None) -> Any:
    """Read a fact for comparison; undefined facts read as None."""
    try:
        value = await almanac.fact_value(fact)
    except UnknownFactError:
        logger.debug("Undefined fact in condition", fact=fact)
        return None
    return resolve_path(value, path)


async def evaluate_condition(condition: Condition, almanac) -> bool:
    """Evaluate a condition tree against the almanac."""
    if isinstance(condition, AllCondition):
        for child in condition.conditions:
            if not await evaluate_condition(child, almanac):
                return False
        return True

    if isinstance(condition, AnyCondition):
        for child in condition.conditions:
            if await evaluate_condition(child, almanac):
                return True
        return False

    if isinstance(condition, NotCondition):
        return not await evaluate_condition(condition.condition, almanac)

    fact_value = await read_fact(almanac, condition.fact, condition.path)
    value = condition.value
    if isinstance(value, FactReference):
        value = await read_fact(almanac, value.fact, value.path)

    try:
        return bool(OPERATORS[condition.operator](fact_value, value))
    except TypeError:
        return False
