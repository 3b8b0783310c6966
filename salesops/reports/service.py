"""
Report Service

Orchestrates one report request: load the window from the order store,
resolve unit costs, reconcile, aggregate, and assemble the payload.
Each request computes its own snapshot; nothing is shared between
concurrent requests apart from the optional payload cache.
"""

import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, Type, TypeVar

import structlog
from pydantic import BaseModel
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from salesops.config import get_settings
from salesops.engine.aggregator import AttributionAggregator
from salesops.engine.costs import CostCache, CostResolution
from salesops.engine.dates import DateRange, InvalidDateRange, parse_day, utc_now
from salesops.engine.forecast import ForecastProjector
from salesops.engine.metrics import REPORT_BUILD_TIME
from salesops.engine.reconciler import OrderReconciler, variant_ids
from salesops.engine.records import Customer, Order, SalesRep
from .assembler import CompanyOverview, RepScorecard, ReportAssembler, ReportSnapshot, VendorScorecard
from .cache import CacheManager

logger = structlog.get_logger(__name__)

ReportModel = TypeVar("ReportModel", bound=BaseModel)


def vendor_range(date_from: Optional[str], date_to: Optional[str], window_days: int) -> DateRange:
    """
    Vendor scorecard window; without a start date it covers window_days
    up to date_to (or today).

    Raises:
        InvalidDateRange: if a given date is malformed or the range inverted
    """
    if date_from:
        return DateRange.parse(date_from, date_to)
    if date_to and parse_day(date_to) is None:
        raise InvalidDateRange("to must be YYYY-MM-DD")
    last = parse_day(date_to) or utc_now().date()
    return DateRange.from_days(last - timedelta(days=window_days - 1), last)


@dataclass
class _Window:
    """Store rows behind one report window"""
    date_range: DateRange
    orders: List[Order]
    customers: Dict[str, Customer]
    reps: List[SalesRep]
    first_orders: Dict[str, Order]
    total_customers: int = 0


class OrderSource(Protocol):
    """Read side of the order store"""

    async def fetch_orders(self, date_range: DateRange) -> List[Order]: ...

    async def fetch_first_orders(self, customer_ids: Sequence[str]) -> Dict[str, Order]: ...

    async def fetch_customers(self, customer_ids: Sequence[str]) -> Dict[str, Customer]: ...

    async def fetch_customers_created(self, date_range: DateRange) -> Dict[str, Customer]: ...

    async def fetch_sales_reps(self) -> List[SalesRep]: ...

    async def count_customers(self) -> int: ...


class CostWriter(Protocol):
    """Write side of the variant cost cache"""

    async def save_costs(self, costs: Mapping[str, float], currency: Optional[str] = None) -> int: ...


class ReportService:
    """
    Computes report payloads for a date window.

    Example:
        async with get_db() as db:
            service = ReportService(OrderStore(db), CostCache(VariantCostStore(db)))
            overview = await service.company_overview("2025-01-01", "2025-01-31")
    """

    def __init__(
        self,
        store: OrderSource,
        cost_cache: CostCache,
        cost_writer: Optional[CostWriter] = None,
        cache: Optional[CacheManager] = None,
        reconciler: Optional[OrderReconciler] = None,
        aggregator: Optional[AttributionAggregator] = None,
        projector: Optional[ForecastProjector] = None,
        assembler: Optional[ReportAssembler] = None,
    ):
        settings = get_settings()
        self.store = store
        self.cost_cache = cost_cache
        self.cost_writer = cost_writer
        self.cache = cache
        self.reconciler = reconciler or OrderReconciler()
        self.aggregator = aggregator or AttributionAggregator()
        self.projector = projector or ForecastProjector()
        self.assembler = assembler or ReportAssembler(self.projector)
        self.write_back = settings.cost_lookup.write_back
        self.vendor_window_days = settings.reports.default_vendor_window_days

    # =========================================================================
    # Snapshot
    # =========================================================================

    async def _write_back(self, costs: CostResolution, currency: str) -> None:
        if not (self.write_back and self.cost_writer and costs.fetched):
            return
        try:
            await self.cost_writer.save_costs(costs.fetched, currency)
        except SQLAlchemyError as e:
            logger.warning("Variant cost write-back failed", error=str(e), variants=len(costs.fetched))

    async def _load(self, date_range: DateRange) -> _Window:
        orders = await self.store.fetch_orders(date_range)
        created = await self.store.fetch_customers_created(date_range)

        customers: Dict[str, Customer] = dict(created)
        owners = sorted({o.customer_id for o in orders if o.customer_id and o.customer_id not in created})
        customers.update(await self.store.fetch_customers(owners))

        return _Window(
            date_range=date_range,
            orders=orders,
            customers=customers,
            reps=await self.store.fetch_sales_reps(),
            first_orders=await self.store.fetch_first_orders(sorted(created)),
            total_customers=await self.store.count_customers(),
        )

    def _reconcile(self, window: _Window, costs: CostResolution) -> ReportSnapshot:
        batch = self.reconciler.reconcile_batch(window.orders, costs.costs)

        # First orders outside the window only decide cohort membership
        reconciled = {item.order_id: item for item in batch.orders}
        outside = [o for o in window.first_orders.values() if o.id not in reconciled and o.id not in batch.skipped]
        for item in self.reconciler.reconcile_batch(outside).orders:
            reconciled[item.order_id] = item

        result = self.aggregator.aggregate(
            window.date_range,
            batch.orders,
            customers=window.customers,
            reps=window.reps,
            first_orders={
                customer_id: reconciled[order.id]
                for customer_id, order in window.first_orders.items()
                if order.id in reconciled
            },
            skipped=batch.skipped,
            first_order_dates={
                customer_id: order.processed_at for customer_id, order in window.first_orders.items()
            },
        )
        return ReportSnapshot(
            result=result,
            batch=batch,
            costs=costs,
            customers=window.customers,
            reps=window.reps,
            total_customers=window.total_customers,
        )

    async def snapshots(self, *date_ranges: DateRange) -> List[ReportSnapshot]:
        """
        Load, reconcile and aggregate each window.

        Unit costs for every window are resolved together, so a report
        makes at most one external lookup and one write-back.
        """
        windows = [await self._load(date_range) for date_range in date_ranges]
        costs = await self.cost_cache.unit_costs(
            variant_ids([order for window in windows for order in window.orders])
        )
        snapshots = [self._reconcile(window, costs) for window in windows]
        if snapshots:
            await self._write_back(costs, snapshots[0].result.currency)
        return snapshots

    async def snapshot(self, date_range: DateRange) -> ReportSnapshot:
        """Load, reconcile and aggregate everything in one window"""
        return (await self.snapshots(date_range))[0]

    # =========================================================================
    # Payload cache
    # =========================================================================

    async def _cached(
        self,
        key: str,
        model: Type[ReportModel],
        build: Callable[[], Awaitable[ReportModel]],
    ) -> ReportModel:
        if self.cache is None:
            return await build()

        try:
            cached = await self.cache.get(key)
        except RedisError as e:
            logger.warning("Report cache read failed", key=key, error=str(e))
            cached = None
        if cached is not None:
            logger.debug("Report cache hit", key=key)
            return model.model_validate(cached)

        payload = await build()
        try:
            await self.cache.set(key, payload.model_dump(mode="json"))
        except RedisError as e:
            logger.warning("Report cache write failed", key=key, error=str(e))
        return payload

    async def _timed(
        self,
        report: str,
        date_range: DateRange,
        build: Callable[[], Awaitable[Tuple[ReportModel, int]]],
    ) -> ReportModel:
        started = time.perf_counter()
        with REPORT_BUILD_TIME.labels(report=report).time():
            payload, orders = await build()
        logger.info(
            "Report computed",
            report=report,
            range=date_range.label(),
            orders=orders,
            elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return payload

    # =========================================================================
    # Reports
    # =========================================================================

    async def company_overview(
        self,
        date_from: Optional[str],
        date_to: Optional[str],
        margin_pct: Optional[float] = None,
    ) -> CompanyOverview:
        """
        Company overview for [date_from, date_to].

        Raises:
            InvalidDateRange: if the dates are missing or inconsistent
        """
        date_range = DateRange.parse(date_from, date_to)

        async def build() -> Tuple[CompanyOverview, int]:
            snapshot = await self.snapshot(date_range)
            return self.assembler.company_overview(snapshot, margin_pct), len(snapshot.batch)

        key = f"overview:{date_range.label()}:{margin_pct}"
        return await self._cached(key, CompanyOverview, lambda: self._timed("overview", date_range, build))

    async def rep_scorecard(
        self,
        date_from: Optional[str],
        date_to: Optional[str],
        rep_id: Optional[str] = None,
        rep_name: Optional[str] = None,
    ) -> RepScorecard:
        """
        Rep scorecard for [date_from, date_to], compared with the previous
        window of equal length.

        Raises:
            InvalidDateRange: if the dates are missing or inconsistent
        """
        date_range = DateRange.parse(date_from, date_to)

        async def build() -> Tuple[RepScorecard, int]:
            current, previous = await self.snapshots(date_range, date_range.previous())
            return self.assembler.rep_scorecard(current, previous, rep_id=rep_id, rep_name=rep_name), len(current.batch)

        key = f"reps:{date_range.label()}:{rep_id or ''}:{rep_name or ''}"
        return await self._cached(key, RepScorecard, lambda: self._timed("rep_scorecard", date_range, build))

    async def vendor_scorecard(
        self,
        date_from: Optional[str],
        date_to: Optional[str],
        vendors: Optional[Sequence[str]] = None,
    ) -> VendorScorecard:
        """
        Vendor scorecard with month x vendor revenue matrix.

        Raises:
            InvalidDateRange: if the dates are malformed or inconsistent
        """
        date_range = vendor_range(date_from, date_to, self.vendor_window_days)
        requested = [v.strip() for v in vendors or [] if v and v.strip()]

        async def build() -> Tuple[VendorScorecard, int]:
            current, previous = await self.snapshots(date_range, date_range.previous())
            return self.assembler.vendor_scorecard(current, previous, vendors=requested or None), len(current.batch)

        key = f"vendors:{date_range.label()}:{','.join(sorted(requested))}"
        return await self._cached(key, VendorScorecard, lambda: self._timed("vendor_scorecard", date_range, build))
