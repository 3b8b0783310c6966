"""
Attribution Aggregator

Folds reconciled orders into company, sales rep, vendor, customer and
calendar-month buckets, and derives the new-customer cohort metrics.

Rep attribution is resolved once per order through its customer. Vendor
attribution is per line: an order's figures are split across its lines
in proportion to the value of the goods kept.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import polars as pl
import structlog

from salesops.config import get_settings
from .dates import DateRange, month_key
from .fields import normalize_name
from .reconciler import ReconciledOrder, kept_value, line_value
from .records import Customer, Order, SalesRep

logger = structlog.get_logger(__name__)


@dataclass
class AttributionBucket:
    """Accumulated figures for one attribution key"""
    key: str
    label: str
    sales_ex: float = 0.0
    gross_ex: float = 0.0
    cost: float = 0.0
    profit: float = 0.0
    order_count: int = 0
    customer_ids: Set[str] = field(default_factory=set)
    order_ids: Set[str] = field(default_factory=set)

    def add(
        self,
        sales_ex: float,
        gross_ex: float,
        cost: float,
        profit: float,
        countable: bool,
        customer_id: Optional[str],
        order_id: Optional[str] = None,
    ) -> None:
        self.sales_ex += sales_ex
        self.gross_ex += gross_ex
        self.cost += cost
        self.profit += profit
        if countable:
            self.order_count += 1
            if customer_id:
                self.customer_ids.add(customer_id)
            if order_id:
                self.order_ids.add(order_id)

    @property
    def customer_count(self) -> int:
        return len(self.customer_ids)

    @property
    def avg_order_value(self) -> float:
        return self.sales_ex / self.order_count if self.order_count else 0.0

    @property
    def margin_pct(self) -> float:
        return (self.profit / self.sales_ex) * 100 if self.sales_ex > 0 else 0.0


@dataclass
class CohortMetrics:
    """New-customer acquisition figures for one scope"""
    new_customers: int = 0
    first_order_count: int = 0
    first_order_sales_ex: float = 0.0
    drop_off_customer_ids: List[str] = field(default_factory=list)

    @property
    def drop_offs(self) -> int:
        return len(self.drop_off_customer_ids)

    @property
    def first_order_aov(self) -> float:
        if not self.first_order_count:
            return 0.0
        return self.first_order_sales_ex / self.first_order_count


@dataclass
class AggregationResult:
    """Every attribution view of one reconciled order set"""
    date_range: DateRange
    currency: str
    company: AttributionBucket
    reps: Dict[str, AttributionBucket] = field(default_factory=dict)
    vendors: Dict[str, AttributionBucket] = field(default_factory=dict)
    customers: Dict[str, AttributionBucket] = field(default_factory=dict)
    periods: Dict[str, AttributionBucket] = field(default_factory=dict)
    vendor_periods: List[Dict[str, object]] = field(default_factory=list)
    cohort: CohortMetrics = field(default_factory=CohortMetrics)
    rep_cohorts: Dict[str, CohortMetrics] = field(default_factory=dict)
    skipped_orders: List[str] = field(default_factory=list)

    def rep_sales_total(self) -> float:
        return sum(bucket.sales_ex for bucket in self.reps.values())


class RepResolver:
    """
    Maps a customer to its rep bucket.

    A known rep id wins over a case-insensitive name match against the
    rep directory. Unknown ids and names still get their own bucket;
    customers with neither fall into the unassigned bucket.
    """

    def __init__(self, reps: Iterable[SalesRep] = (), unassigned_label: Optional[str] = None):
        self.unassigned_label = unassigned_label or get_settings().reconciliation.unassigned_label
        self._by_id: Dict[str, SalesRep] = {}
        self._by_name: Dict[str, SalesRep] = {}
        for rep in reps:
            self._by_id[str(rep.id)] = rep
            self._by_name.setdefault(normalize_name(rep.name), rep)

    def resolve(self, customer: Optional[Customer]) -> Tuple[str, str]:
        """Returns (bucket key, display label)"""
        if customer is None:
            return self.unassigned_label, self.unassigned_label

        rep_id = str(customer.sales_rep_id).strip() if customer.sales_rep_id else ""
        rep_name = normalize_name(customer.sales_rep_name)

        if rep_id and rep_id in self._by_id:
            rep = self._by_id[rep_id]
            return rep.id, rep.name
        if rep_name and rep_name in self._by_name:
            rep = self._by_name[rep_name]
            return rep.id, rep.name
        if rep_id:
            return rep_id, (customer.sales_rep_name or rep_id).strip()
        if rep_name:
            return rep_name, customer.sales_rep_name.strip()
        return self.unassigned_label, self.unassigned_label

    @staticmethod
    def matches(key: str, label: str, rep_id: Optional[str], rep_name: Optional[str]) -> bool:
        """Whether a rep bucket is the one asked for, by id or case-insensitive name"""
        if rep_id and key == str(rep_id):
            return True
        if rep_name and normalize_name(label) == normalize_name(rep_name):
            return True
        return False


_VENDOR_SCHEMA = {
    "order_id": pl.Utf8,
    "customer_id": pl.Utf8,
    "vendor": pl.Utf8,
    "period": pl.Utf8,
    "sales_ex": pl.Float64,
    "gross_ex": pl.Float64,
    "cost": pl.Float64,
    "profit": pl.Float64,
    "countable": pl.Boolean,
}


def _line_weights(order: Order) -> List[float]:
    lines = order.line_items
    weights = [max(0.0, kept_value(line)) for line in lines]
    if sum(weights) <= 0:
        weights = [max(0.0, line_value(line)) for line in lines]
    if sum(weights) <= 0:
        weights = [1.0] * len(lines)
    total = sum(weights)
    return [weight / total for weight in weights]


class AttributionAggregator:
    """
    Folds reconciled orders into attribution buckets.

    Example:
        aggregator = AttributionAggregator()
        result = aggregator.aggregate(date_range, batch.orders, customers, reps)
        result.company.sales_ex, result.reps["rep-1"].profit
    """

    def __init__(
        self,
        order_epsilon: Optional[float] = None,
        unassigned_label: Optional[str] = None,
        unknown_vendor_label: Optional[str] = None,
        default_currency: Optional[str] = None,
    ):
        settings = get_settings().reconciliation
        self.order_epsilon = order_epsilon if order_epsilon is not None else settings.order_epsilon
        self.unassigned_label = unassigned_label or settings.unassigned_label
        self.unknown_vendor_label = unknown_vendor_label or settings.unknown_vendor_label
        self.default_currency = default_currency or settings.default_currency

    def is_countable(self, reconciled: ReconciledOrder) -> bool:
        return reconciled.net_ex > self.order_epsilon

    def _vendor_rows(self, reconciled: ReconciledOrder, countable: bool) -> List[Dict[str, object]]:
        order = reconciled.order
        period = month_key(order.processed_at)
        base = {
            "order_id": order.id,
            "customer_id": order.customer_id,
            "period": period,
            "countable": countable,
        }
        if not order.line_items:
            return [dict(
                base,
                vendor=self.unknown_vendor_label,
                sales_ex=reconciled.net_ex,
                gross_ex=reconciled.gross_ex,
                cost=reconciled.cost,
                profit=reconciled.profit,
            )]

        rows = []
        for line, share in zip(order.line_items, _line_weights(order)):
            vendor = (line.vendor or "").strip() or self.unknown_vendor_label
            rows.append(dict(
                base,
                vendor=vendor,
                sales_ex=reconciled.net_ex * share,
                gross_ex=reconciled.gross_ex * share,
                cost=reconciled.cost * share,
                profit=reconciled.profit * share,
            ))
        return rows

    def _vendor_buckets(self, rows: List[Dict[str, object]]) -> Tuple[Dict[str, AttributionBucket], List[Dict[str, object]]]:
        frame = pl.DataFrame(rows, schema=_VENDOR_SCHEMA)

        per_vendor = frame.group_by("vendor").agg([
            pl.col("sales_ex").sum(),
            pl.col("gross_ex").sum(),
            pl.col("cost").sum(),
            pl.col("profit").sum(),
            pl.col("order_id").filter(pl.col("countable")).unique().alias("order_ids"),
            pl.col("customer_id").filter(pl.col("countable")).drop_nulls().unique().alias("customer_ids"),
        ]).sort("sales_ex", descending=True)

        buckets: Dict[str, AttributionBucket] = {}
        for row in per_vendor.to_dicts():
            buckets[row["vendor"]] = AttributionBucket(
                key=row["vendor"],
                label=row["vendor"],
                sales_ex=row["sales_ex"] or 0.0,
                gross_ex=row["gross_ex"] or 0.0,
                cost=row["cost"] or 0.0,
                profit=row["profit"] or 0.0,
                order_count=len(row["order_ids"] or []),
                customer_ids=set(row["customer_ids"] or []),
                order_ids=set(row["order_ids"] or []),
            )

        matrix = (
            frame.group_by(["period", "vendor"])
            .agg(pl.col("sales_ex").sum())
            .sort(["period", "vendor"])
        )
        return buckets, matrix.to_dicts()

    def _cohorts(
        self,
        date_range: DateRange,
        customers: Mapping[str, Customer],
        first_orders: Mapping[str, ReconciledOrder],
        first_order_dates: Optional[Mapping[str, datetime]],
        resolver: RepResolver,
    ) -> Tuple[CohortMetrics, Dict[str, CohortMetrics]]:
        overall = CohortMetrics()
        per_rep: Dict[str, CohortMetrics] = {}

        for customer_id in sorted(customers):
            customer = customers[customer_id]
            if not date_range.contains(customer.created_at):
                continue
            rep_key, _ = resolver.resolve(customer)
            scopes = (overall, per_rep.setdefault(rep_key, CohortMetrics()))
            for scope in scopes:
                scope.new_customers += 1

            first = first_orders.get(customer_id)
            if first_order_dates is not None:
                first_at = first_order_dates.get(customer_id)
            else:
                first_at = first.order.processed_at if first is not None else None
            if first_at is None or first_at > date_range.lte:
                # Nothing ordered by the end of the window
                for scope in scopes:
                    scope.drop_off_customer_ids.append(customer_id)
                continue

            # A first order that failed reconciliation still ordered, but adds no AOV
            if first is None:
                continue
            if date_range.contains(first.order.processed_at) and self.is_countable(first):
                for scope in scopes:
                    scope.first_order_count += 1
                    scope.first_order_sales_ex += first.net_ex

        return overall, per_rep

    def aggregate(
        self,
        date_range: DateRange,
        reconciled: Iterable[ReconciledOrder],
        customers: Optional[Mapping[str, Customer]] = None,
        reps: Sequence[SalesRep] = (),
        first_orders: Optional[Mapping[str, ReconciledOrder]] = None,
        skipped: Sequence[str] = (),
        first_order_dates: Optional[Mapping[str, datetime]] = None,
    ) -> AggregationResult:
        """
        Aggregate reconciled orders processed within date_range.

        Args:
            date_range: Inclusive report window
            reconciled: Reconciled orders; those outside the window are ignored
            customers: Customers by id (order owners and customers created in range)
            reps: Sales rep directory used for attribution matching
            first_orders: Each customer's earliest-ever order, reconciled
            skipped: Ids of orders the reconciler could not handle
            first_order_dates: processed_at of each customer's earliest-ever
                order as stored, whether or not it reconciled. Decides
                drop-offs when given.
        """
        customers = customers or {}
        resolver = RepResolver(reps, self.unassigned_label)
        in_range = sorted(
            (r for r in reconciled if date_range.contains(r.order.processed_at)),
            key=lambda r: (r.order.processed_at, r.order.id),
        )

        currency = next((r.order.currency for r in in_range if r.order.currency), self.default_currency)
        result = AggregationResult(
            date_range=date_range,
            currency=currency,
            company=AttributionBucket(key="company", label="Company"),
            skipped_orders=list(skipped),
        )
        # Unassigned always reported so the rep breakdown sums to the company total
        result.reps[self.unassigned_label] = AttributionBucket(self.unassigned_label, self.unassigned_label)

        vendor_rows: List[Dict[str, object]] = []
        for item in in_range:
            order = item.order
            countable = self.is_countable(item)
            figures = (item.net_ex, item.gross_ex, item.cost, item.profit, countable, order.customer_id, order.id)

            result.company.add(*figures)

            customer = customers.get(order.customer_id) if order.customer_id else None
            rep_key, rep_label = resolver.resolve(customer)
            result.reps.setdefault(rep_key, AttributionBucket(rep_key, rep_label)).add(*figures)

            customer_key = order.customer_id or self.unassigned_label
            customer_label = (customer.name if customer and customer.name else None) or customer_key
            result.customers.setdefault(customer_key, AttributionBucket(customer_key, customer_label)).add(*figures)

            period = month_key(order.processed_at)
            result.periods.setdefault(period, AttributionBucket(period, period)).add(*figures)

            vendor_rows.extend(self._vendor_rows(item, countable))

        result.vendors, result.vendor_periods = self._vendor_buckets(vendor_rows)
        result.cohort, result.rep_cohorts = self._cohorts(
            date_range, customers, first_orders or {}, first_order_dates, resolver
        )

        logger.debug(
            "Orders aggregated",
            range=date_range.label(),
            orders=len(in_range),
            countable=result.company.order_count,
            reps=len(result.reps),
            vendors=len(result.vendors),
        )
        return result
