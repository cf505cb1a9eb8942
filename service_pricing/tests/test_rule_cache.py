"""
Unit tests for the rule cache.
"""

import asyncio

import pytest
from prometheus_client import CollectorRegistry

from shared.metrics import MetricsCollector
from service_pricing.app.engine.conditions import parse_condition
from service_pricing.app.engine.models import Event, Rule
from service_pricing.app.loaders.rule_cache import RuleCache


RULES = [Rule(name="markup", conditions=parse_condition(None), event=Event(type="apply-markup", params={"value": 1}))]


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class CountingLoader:
    def __init__(self, rules=RULES, delay=0.0):
        self.rules = rules
        self.delay = delay
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.rules)


class TestRuleCache:
    """Test cases for RuleCache."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        return RuleCache(ttl_seconds=60, clock=clock)

    @pytest.mark.asyncio
    async def test_hit_returns_same_snapshot(self, cache):
        loader = CountingLoader()

        first = await cache.get_or_load("default", loader)
        second = await cache.get_or_load("default", loader)

        assert first is second
        assert isinstance(first, tuple)
        assert loader.calls == 1

    @pytest.mark.asyncio
    async def test_expiry_triggers_reload(self, cache, clock):
        loader = CountingLoader()

        await cache.get_or_load("default", loader)
        clock.now += 59
        await cache.get_or_load("default", loader)
        assert loader.calls == 1

        clock.now += 1
        await cache.get_or_load("default", loader)
        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, cache):
        loader = CountingLoader()

        await cache.get_or_load("default", loader)
        await cache.get_or_load("strategy-1", loader)

        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_reload(self, cache):
        loader = CountingLoader(delay=0.01)

        results = await asyncio.gather(*[cache.get_or_load("default", loader) for _ in range(5)])

        assert loader.calls == 1
        assert all(r is results[0] for r in results)

    @pytest.mark.asyncio
    async def test_clear_forces_reload(self, cache):
        loader = CountingLoader()

        await cache.get_or_load("default", loader)
        cache.clear()
        await cache.get_or_load("default", loader)

        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_clear_during_load_discards_result(self, cache):
        loader = CountingLoader(delay=0.01)

        pending = asyncio.ensure_future(cache.get_or_load("default", loader))
        await asyncio.sleep(0)
        cache.clear("default")
        rules = await pending

        assert rules == tuple(RULES)
        assert cache.get("default") is None

    @pytest.mark.asyncio
    async def test_failed_load_leaves_no_entry(self, cache, clock):
        loader = CountingLoader()
        await cache.get_or_load("default", loader)
        clock.now += 120

        async def failing():
            raise RuntimeError("store down")

        with pytest.raises(RuntimeError):
            await cache.get_or_load("default", failing)

        assert cache.get("default") is None

    @pytest.mark.asyncio
    async def test_metrics(self, clock):
        registry = CollectorRegistry()
        cache = RuleCache(ttl_seconds=60, clock=clock, metrics=MetricsCollector("pricing", registry))
        loader = CountingLoader()

        await cache.get_or_load("default", loader)
        await cache.get_or_load("default", loader)

        assert registry.get_sample_value("rule_cache_events_total", {"event": "miss"}) == 1
        assert registry.get_sample_value("rule_cache_events_total", {"event": "hit"}) == 1
        assert registry.get_sample_value("rule_cache_events_total", {"event": "reload"}) == 1
