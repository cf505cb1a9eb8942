"""
Process-wide cache of loaded rule sets.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, Optional, Tuple

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..engine.models import Rule


DEFAULT_KEY = "default"

RuleSet = Tuple[Rule, ...]


@dataclass(frozen=True)
class CacheEntry:
    rules: RuleSet
    loaded_at: float


class RuleCache:
    """TTL cache of immutable rule snapshots keyed by strategy.

    Reads of a fresh entry never wait. A miss or an expired entry is reloaded
    under a per-key lock, so concurrent callers share one reload and never see
    a partially built rule set.
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.ttl_seconds = ttl_seconds
        self.logger = get_logger("pricing.rule_cache")
        self.metrics = metrics
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._generations: Dict[str, int] = {}

    def get(self, key: str = DEFAULT_KEY) -> Optional[RuleSet]:
        """Return the fresh snapshot for `key`, or None."""
        entry = self._entries.get(key)
        if entry is None or self._is_expired(entry):
            return None
        return entry.rules

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Iterable[Rule]]],
    ) -> RuleSet:
        """Return the cached snapshot for `key`, loading it if missing or stale.

        Loader exceptions propagate and leave the cache without an entry for
        `key`; a stale snapshot is never served after a failed reload.
        """
        rules = self.get(key)
        if rules is not None:
            self._record("hit")
            return rules

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another caller may have finished the reload while we waited
            rules = self.get(key)
            if rules is not None:
                self._record("shared")
                return rules

            self._record("miss")
            self._entries.pop(key, None)
            generation = self._generations.get(key, 0)

            rules = tuple(await loader())

            if self._generations.get(key, 0) == generation:
                self._entries[key] = CacheEntry(rules=rules, loaded_at=self._clock())
                self._record("reload")
                self.logger.info("Rule set cached", key=key, rules=len(rules), ttl=self.ttl_seconds)
            else:
                self.logger.info("Discarding rule set loaded before invalidation", key=key)

            return rules

    def clear(self, key: Optional[str] = None) -> None:
        """Invalidate one key, or every key when `key` is None."""
        keys = [key] if key is not None else list(set(self._entries) | set(self._locks))
        for k in keys:
            self._entries.pop(k, None)
            self._generations[k] = self._generations.get(k, 0) + 1

        self._record("clear")
        self.logger.info("Rule cache cleared", key=key or "*")

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.loaded_at >= self.ttl_seconds

    def _record(self, event: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("rule_cache_events_total", event=event)
