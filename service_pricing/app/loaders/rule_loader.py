"""
Database-backed rule loader.

Turns stored pricing blocks (and strategy block configurations) into
immutable Rule snapshots, validating event params on the way in.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from shared.logging import get_logger

from ..engine.conditions import parse_condition
from ..engine.models import Event, Rule, normalize_event_type
from ..errors import ConditionParseError, InvalidRuleParamsError, RuleLoadError
from ..schemas.event_params import get_params_schema, validate_event_params
from ..stores import PricingBlock, RuleStore
from .rule_cache import DEFAULT_KEY, RuleCache, RuleSet


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_block_live(block: PricingBlock, now: datetime) -> bool:
    """Active and inside its validity window."""
    if not block.is_active:
        return False
    if block.valid_from is not None and _as_utc(block.valid_from) > now:
        return False
    if block.valid_until is not None and _as_utc(block.valid_until) < now:
        return False
    return True


def merge_params(base: Mapping[str, Any], overrides: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Strategy overrides win over the block's own params, key by key."""
    merged = dict(base or {})
    merged.update(overrides or {})
    return merged


def validation_errors(error: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
        for err in error.errors()
    ]


class RuleLoader:
    """Loads and caches the rule set for a request."""

    def __init__(
        self,
        store: RuleStore,
        cache: Optional[RuleCache] = None,
        strict_params: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.cache = cache or RuleCache()
        self.strict_params = strict_params
        self.logger = get_logger("pricing.rule_loader")
        self._clock = clock

    async def load_rules(self, strategy_id: Optional[str] = None) -> RuleSet:
        """Rules for `strategy_id`, or the default rule set when None."""
        if strategy_id:
            return await self.load_strategy_rules(strategy_id)
        return await self.load_default_rules()

    async def load_default_rules(self) -> RuleSet:
        """Rules of the default strategy, falling back to all active blocks."""
        return await self.cache.get_or_load(DEFAULT_KEY, self._fetch_default_rules)

    async def load_strategy_rules(self, strategy_id: str) -> RuleSet:
        """Rules of one pricing strategy with its overrides applied."""
        return await self.cache.get_or_load(
            strategy_id, lambda: self._fetch_strategy_rules(strategy_id)
        )

    async def _fetch_default_rules(self) -> List[Rule]:
        try:
            default_strategy_id = await self.store.get_default_strategy_id()
        except Exception as e:
            self.logger.error("Failed to resolve default strategy", error=str(e))
            raise RuleLoadError("Failed to resolve default strategy", {"error": str(e)}) from e

        if default_strategy_id:
            self.logger.debug("Using default strategy", strategy_id=default_strategy_id)
            return await self._fetch_strategy_rules(default_strategy_id)

        try:
            blocks = await self.store.list_active_blocks()
        except Exception as e:
            self.logger.error("Failed to load pricing blocks", error=str(e))
            raise RuleLoadError("Failed to load pricing blocks", {"error": str(e)}) from e

        now = self._clock()
        entries = [(block, block.priority, None) for block in blocks if is_block_live(block, now)]
        rules = self._build_rules(entries)

        if not rules:
            raise RuleLoadError("No active pricing rules found")

        self.logger.info("Loaded default pricing rules", rules=len(rules))
        return rules

    async def _fetch_strategy_rules(self, strategy_id: str) -> List[Rule]:
        try:
            strategy_blocks = await self.store.list_strategy_blocks(strategy_id)
        except Exception as e:
            self.logger.error("Failed to load strategy blocks", strategy_id=strategy_id, error=str(e))
            raise RuleLoadError(
                f"Failed to load strategy '{strategy_id}'",
                {"strategy_id": strategy_id, "error": str(e)},
            ) from e

        now = self._clock()
        entries = [
            (sb.block, sb.priority, sb.config_overrides)
            for sb in strategy_blocks
            if sb.is_enabled and is_block_live(sb.block, now)
        ]
        rules = self._build_rules(entries)

        if not rules:
            raise RuleLoadError(
                f"Strategy '{strategy_id}' has no enabled pricing blocks",
                {"strategy_id": strategy_id},
            )

        self.logger.info("Loaded strategy pricing rules", strategy_id=strategy_id, rules=len(rules))
        return rules

    def _build_rules(
        self, entries: List[Tuple[PricingBlock, int, Optional[Mapping[str, Any]]]]
    ) -> List[Rule]:
        rules: List[Rule] = []
        for block, priority, overrides in entries:
            try:
                rules.append(self.block_to_rule(block, priority, overrides))
            except InvalidRuleParamsError as e:
                raise RuleLoadError(e.message, e.details) from e
            except ConditionParseError as e:
                if self.strict_params:
                    raise RuleLoadError(
                        f"Malformed conditions in block '{block.name}'",
                        {"block_id": block.id, **e.details},
                    ) from e
                self.logger.error(
                    "Skipping block with malformed conditions",
                    block_id=block.id,
                    block=block.name,
                    error=e.message,
                )
        return rules

    def block_to_rule(
        self,
        block: PricingBlock,
        priority: Optional[int] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> Rule:
        """Convert one stored block into a Rule.

        Raises ConditionParseError for malformed conditions, and
        InvalidRuleParamsError for invalid params only in strict mode.
        """
        event_type = normalize_event_type(block.event_type)
        params = merge_params(block.params, overrides)
        params.setdefault("ruleId", block.id)

        params = self._check_params(block, event_type, params)

        return Rule(
            name=block.name,
            conditions=parse_condition(block.conditions),
            event=Event(type=event_type, params=params, rule_name=block.name),
            priority=block.priority if priority is None else priority,
            rule_id=block.id,
        )

    def _check_params(self, block: PricingBlock, event_type: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if get_params_schema(event_type) is None:
            error = InvalidRuleParamsError(block.name, event_type, [{"loc": "type", "msg": "unknown event type"}])
            if self.strict_params:
                raise error
            self.logger.warning("Unknown event type in pricing block", block=block.name, event_type=event_type)
            return params

        try:
            return validate_event_params(event_type, params)
        except ValidationError as e:
            error = InvalidRuleParamsError(block.name, event_type, validation_errors(e))
            if self.strict_params:
                raise error from e
            self.logger.warning(
                "Invalid rule params, using raw params",
                block=block.name,
                event_type=event_type,
                errors=error.errors,
            )
            return params

    def invalidate(self, strategy_id: Optional[str] = None) -> None:
        """Force the next load of `strategy_id` (or every rule set) to hit the store."""
        self.cache.clear(strategy_id)
