"""
Variant Cost Cache

Resolves per-variant unit costs from the local cost table, topping up
missing entries with one bounded call to the external pricing service.
A failing or slow lookup leaves costs unknown rather than failing the
report.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import structlog

from salesops.config import get_settings
from .fields import to_optional_money
from .metrics import COST_LOOKUPS

logger = structlog.get_logger(__name__)

# fetch_unit_costs(variant_ids) -> {variant_id: unit_cost}
CostLookup = Callable[[List[str]], Awaitable[Mapping[str, Any]]]


class VariantCostSource(ABC):
    """Local variant cost cache (read side)"""

    @abstractmethod
    async def get_costs(self, variant_ids: Sequence[str]) -> Mapping[str, Any]:
        """Return cached unit costs for the given ids; absent ids are omitted"""


class MappingCostSource(VariantCostSource):
    """Cost source backed by an in-process mapping"""

    def __init__(self, costs: Optional[Mapping[str, Any]] = None):
        self._costs = dict(costs or {})

    async def get_costs(self, variant_ids: Sequence[str]) -> Mapping[str, Any]:
        return {vid: self._costs[vid] for vid in variant_ids if vid in self._costs}


@dataclass
class CostResolution:
    """Unit costs resolved for one report"""
    costs: Dict[str, Optional[float]] = field(default_factory=dict)
    fetched: Dict[str, float] = field(default_factory=dict)  # new entries for write-back
    lookup_failed: bool = False

    @property
    def unknown(self) -> List[str]:
        return sorted(vid for vid, cost in self.costs.items() if cost is None)

    def known(self) -> Dict[str, float]:
        return {vid: cost for vid, cost in self.costs.items() if cost is not None}


def _usable(value: Any) -> Optional[float]:
    try:
        return to_optional_money(value)
    except (TypeError, ValueError):
        return None


class CostCache:
    """
    Two-level unit cost resolver.

    Example:
        cache = CostCache(VariantCostStore(session), lookup=fetch_unit_costs)
        resolution = await cache.unit_costs({"gid-1", "gid-2"})
    """

    def __init__(
        self,
        source: Optional[VariantCostSource] = None,
        lookup: Optional[CostLookup] = None,
        max_batch_size: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ):
        settings = get_settings().cost_lookup
        self.source = source
        self.lookup = lookup
        self.max_batch_size = max_batch_size if max_batch_size is not None else settings.max_batch_size
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.timeout_seconds

    async def _read_cache(self, variant_ids: List[str]) -> Dict[str, Optional[float]]:
        if self.source is None or not variant_ids:
            return {}
        try:
            cached = await self.source.get_costs(variant_ids)
        except Exception as e:
            logger.warning("Variant cost cache read failed", error=str(e), variants=len(variant_ids))
            return {}
        return {str(vid): _usable(cost) for vid, cost in cached.items()}

    async def _fetch(self, missing: List[str]) -> Optional[Dict[str, float]]:
        try:
            fetched = await asyncio.wait_for(self.lookup(missing), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            COST_LOOKUPS.labels(outcome="timeout").inc()
            logger.warning("Variant cost lookup timed out", variants=len(missing), timeout=self.timeout_seconds)
            return None
        except Exception as e:
            COST_LOOKUPS.labels(outcome="failed").inc()
            logger.warning("Variant cost lookup failed", error=str(e), variants=len(missing))
            return None

        requested = set(missing)
        result: Dict[str, float] = {}
        for vid, amount in (fetched or {}).items():
            cost = _usable(amount)
            if cost is not None and str(vid) in requested:
                result[str(vid)] = cost
        return result

    async def unit_costs(self, variant_ids: Iterable[Optional[str]]) -> CostResolution:
        """
        Resolve unit costs for a set of variant ids.

        Every requested id appears in the result; unknown costs map to None.
        At most max_batch_size missing ids are sent to the external lookup,
        in a single call.
        """
        ids = sorted({str(vid) for vid in variant_ids if vid})
        resolution = CostResolution(costs={vid: None for vid in ids})
        if not ids:
            return resolution

        cached = await self._read_cache(ids)
        for vid, cost in cached.items():
            if vid in resolution.costs and cost is not None:
                resolution.costs[vid] = cost
        hits = sum(1 for cost in resolution.costs.values() if cost is not None)
        if hits:
            COST_LOOKUPS.labels(outcome="hit").inc(hits)

        missing = [vid for vid in ids if resolution.costs[vid] is None]
        if not missing or self.lookup is None:
            return resolution

        batch = missing[: self.max_batch_size]
        if len(missing) > len(batch):
            logger.info(
                "Variant cost lookup capped",
                missing=len(missing),
                requested=len(batch),
            )

        fetched = await self._fetch(batch)
        if fetched is None:
            resolution.lookup_failed = True
            return resolution

        resolution.costs.update(fetched)
        resolution.fetched = fetched
        if fetched:
            COST_LOOKUPS.labels(outcome="fetched").inc(len(fetched))
        logger.debug("Variant costs fetched", requested=len(batch), resolved=len(fetched))
        return resolution
