"""
Rule registry: ordered rule set and matching.
"""

from typing import Any, Dict, Iterable, List, Mapping, Tuple

from shared.logging import get_logger

from .conditions import FactReference, evaluate_condition, read_fact
from .models import Event, Rule


class RuleRegistry:
    """Priority-ordered snapshot of the active pricing rules."""

    def __init__(self, rules: Iterable[Rule] = ()):
        self.logger = get_logger("pricing.rule_registry")
        # sorted() is stable, so equal priorities keep their load order
        self._rules: Tuple[Rule, ...] = tuple(sorted(rules, key=lambda r: r.priority, reverse=True))
        self.results: Dict[str, bool] = {}

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    async def evaluate(self, almanac) -> List[Event]:
        """Evaluate every rule and return the events of all matches.

        Events are returned in rule priority order. Priority orders events
        within a pipeline stage; it never suppresses a match.
        """
        events: List[Event] = []
        self.results = {}

        for rule in self._rules:
            matched = await evaluate_condition(rule.conditions, almanac)
            self.results[rule.name] = matched

            if not matched:
                continue

            params = await self._resolve_params(rule.event.params, almanac)
            events.append(Event(
                type=rule.event.type,
                params=params,
                rule_name=rule.name,
                priority=rule.priority,
            ))

            self.logger.debug(
                "Rule matched",
                rule=rule.name,
                priority=rule.priority,
                event_type=rule.event.type,
            )

        self.logger.info(
            "Rules evaluated",
            total=len(self._rules),
            matched=len(events),
            event_types=[e.type for e in events],
        )
        return events

    async def _resolve_params(self, params: Mapping[str, Any], almanac) -> Dict[str, Any]:
        resolved: Dict[str, Any] = {}
        for key, value in params.items():
            resolved[key] = await self._resolve_value(value, almanac)
        return resolved

    async def _resolve_value(self, value: Any, almanac) -> Any:
        if isinstance(value, FactReference):
            return await read_fact(almanac, value.fact, value.path)
        if isinstance(value, Mapping):
            if "fact" in value and set(value) <= {"fact", "path"} and isinstance(value["fact"], str):
                return await read_fact(almanac, value["fact"], value.get("path"))
            return {k: await self._resolve_value(v, almanac) for k, v in value.items()}
        if isinstance(value, list):
            return [await self._resolve_value(v, almanac) for v in value]
        return value
