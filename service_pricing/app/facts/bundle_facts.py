"""
Bundle selection facts.

Resolve the catalog slice for the requested group and destination, then the
bundle that covers the requested duration and the days it leaves unused.
"""

from typing import List, Optional

from shared.logging import get_logger

from ..engine.almanac import Almanac
from ..errors import BundleNotFoundError
from ..models import Bundle, RequestFacts
from ..stores import BundleCatalog


logger = get_logger("pricing.bundle_facts")


def select_bundle(bundles: List[Bundle], requested_days: int) -> Optional[Bundle]:
    """Exact duration if offered, else the shortest longer one; cheapest on ties."""
    exact = [b for b in bundles if b.validity_days == requested_days]
    if exact:
        return _cheapest(exact)

    longer = [b for b in bundles if b.validity_days > requested_days]
    if not longer:
        return None

    shortest = min(b.validity_days for b in longer)
    return _cheapest([b for b in longer if b.validity_days == shortest])


def previous_bundle(bundles: List[Bundle], selected: Bundle) -> Optional[Bundle]:
    """Longest bundle strictly shorter than `selected`, or None."""
    shorter = [b for b in bundles if b.validity_days < selected.validity_days]
    if not shorter:
        return None

    longest = max(b.validity_days for b in shorter)
    return _cheapest([b for b in shorter if b.validity_days == longest])


def _cheapest(bundles: List[Bundle]) -> Bundle:
    # Unpriced bundles sort last; min() keeps the first of equal keys
    return min(bundles, key=lambda b: (b.price is None, b.price or 0.0))


def register_bundle_facts(almanac: Almanac, catalog: BundleCatalog, request: RequestFacts) -> None:
    """Register the bundle selection resolvers on `almanac`."""

    async def available_bundles(a: Almanac) -> List[Bundle]:
        bundles = await catalog.find_bundles(
            request.group,
            region=request.region,
            country=request.country,
        )
        bundles = sorted(bundles, key=lambda b: b.validity_days)
        logger.debug(
            "Catalog slice loaded",
            group=request.group,
            country=request.country,
            region=request.region,
            bundles=len(bundles),
        )
        return bundles

    async def durations(a: Almanac) -> List[int]:
        bundles = await a.fact_value("availableBundles")
        return sorted({b.validity_days for b in bundles})

    async def selected_bundle(a: Almanac) -> Bundle:
        bundles = await a.fact_value("availableBundles")
        selected = select_bundle(bundles, request.requested_days)
        if selected is None:
            raise BundleNotFoundError(
                request.requested_days,
                {
                    "group": request.group,
                    "country": request.country,
                    "region": request.region,
                    "durations": sorted({b.validity_days for b in bundles}),
                },
            )
        return selected

    async def previous(a: Almanac) -> Optional[Bundle]:
        bundles = await a.fact_value("availableBundles")
        selected = await a.fact_value("selectedBundle")
        return previous_bundle(bundles, selected)

    async def unused_days(a: Almanac) -> int:
        selected = await a.fact_value("selectedBundle")
        return max(0, selected.validity_days - request.requested_days)

    async def is_exact_match(a: Almanac) -> bool:
        selected = await a.fact_value("selectedBundle")
        return selected.validity_days == request.requested_days

    almanac.add_fact("availableBundles", available_bundles)
    almanac.add_fact("durations", durations)
    almanac.add_fact("selectedBundle", selected_bundle)
    almanac.add_fact("previousBundle", previous)
    almanac.add_fact("unusedDays", unused_days)
    almanac.add_fact("isExactMatch", is_exact_match)
