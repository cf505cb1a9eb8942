"""
Per-request fact store.

Facts are either constants seeded from the request or resolvers that are
computed on first use. A resolver receives the almanac and may read other
facts, so facts form a DAG evaluated lazily and memoized for the lifetime of
one pricing request.
"""

import inspect
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set, Union

from shared.logging import get_logger

from ..errors import FactComputationError, UnknownFactError


FactResolver = Callable[["Almanac"], Union[Any, Awaitable[Any]]]


class Almanac:
    """Lazily evaluated, memoized fact store for one pricing request."""

    def __init__(self, runtime_facts: Optional[Mapping[str, Any]] = None):
        self.logger = get_logger("pricing.almanac")
        self._values: Dict[str, Any] = dict(runtime_facts or {})
        self._resolvers: Dict[str, FactResolver] = {}
        self._computing: Set[str] = set()

    def add_fact(self, name: str, value_or_resolver: Union[Any, FactResolver]) -> None:
        """Register a constant or a resolver under `name`."""
        if callable(value_or_resolver):
            self._resolvers[name] = value_or_resolver
            self._values.pop(name, None)
        else:
            self._values[name] = value_or_resolver

    def add_runtime_fact(self, name: str, value: Any) -> None:
        """Register or overwrite a constant fact."""
        self._values[name] = value

    def has_fact(self, name: str) -> bool:
        return name in self._values or name in self._resolvers

    def is_resolved(self, name: str) -> bool:
        return name in self._values

    async def fact_value(self, name: str) -> Any:
        """Return the value of `name`, computing it on first access."""
        if name in self._values:
            return self._values[name]

        resolver = self._resolvers.get(name)
        if resolver is None:
            raise UnknownFactError(name)

        if name in self._computing:
            raise FactComputationError(name, RuntimeError(f"cyclic dependency on fact '{name}'"))

        self._computing.add(name)
        try:
            value = resolver(self)
            if inspect.isawaitable(value):
                value = await value
        except FactComputationError as e:
            if e.fact == name:
                raise
            raise FactComputationError(name, e) from e
        except Exception as e:
            self.logger.debug("Fact resolver failed", fact=name, error=str(e))
            raise FactComputationError(name, e) from e
        finally:
            self._computing.discard(name)

        self._values[name] = value
        return value

    def resolved_facts(self) -> Dict[str, Any]:
        """Snapshot of every fact computed so far."""
        return dict(self._values)
