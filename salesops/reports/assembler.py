"""
Report Assembler

Reshapes aggregated figures into the payloads served to report
consumers: company overview, rep scorecard and vendor scorecard.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel

from salesops.config import get_settings
from salesops.engine.aggregator import AggregationResult, AttributionBucket, CohortMetrics, RepResolver
from salesops.engine.costs import CostResolution
from salesops.engine.dates import month_keys
from salesops.engine.fields import normalize_name
from salesops.engine.forecast import AcquisitionForecast, Forecast, ForecastProjector
from salesops.engine.quality import summarize_batch
from salesops.engine.reconciler import BatchResult
from salesops.engine.records import Customer, SalesRep

logger = structlog.get_logger(__name__)


def _money(value: float) -> float:
    return round(value, 2)


def growth_pct(current: float, previous: float) -> Optional[float]:
    """Period-over-period change in percent; None without a positive base"""
    if previous <= 0:
        return None
    return round(((current - previous) / previous) * 100, 2)


@dataclass
class ReportSnapshot:
    """Everything computed for one report window"""
    result: AggregationResult
    batch: BatchResult
    costs: CostResolution = field(default_factory=CostResolution)
    customers: Dict[str, Customer] = field(default_factory=dict)
    reps: List[SalesRep] = field(default_factory=list)
    total_customers: int = 0


# =============================================================================
# Payload models
# =============================================================================

class BucketSummary(BaseModel):
    """Figures for one attribution bucket"""
    key: str
    label: str
    sales_ex: float
    gross_ex: float
    cost: float
    profit: float
    margin_pct: float
    orders: int
    customers: int
    avg_order_value: float


class CohortSummary(BaseModel):
    """New-customer acquisition figures"""
    new_customers: int
    first_order_count: int
    first_order_sales_ex: float
    first_order_aov: float
    drop_offs: int
    drop_off_customer_ids: List[str]


class ForecastSummary(BaseModel):
    """Run-rate projection of the period"""
    total_days: int
    elapsed_days: int
    remaining_days: int
    run_rate_per_day: float
    projected_sales_ex: float
    projected_profit: float
    extrapolated: bool


class AcquisitionSummary(BaseModel):
    """Acquisition-driven projection for one rep"""
    rep_key: str
    current_sales_ex: float
    first_order_count: int
    first_order_aov: float
    acq_run_rate_per_day: float
    projected_new_first_orders: float
    projected_incremental_sales_ex: float
    projected_sales_ex_total: float


class CompanyTotals(BaseModel):
    """Company-wide figures"""
    sales_ex: float
    gross_ex: float
    cost: float
    profit: float
    margin_pct: float
    orders: int
    avg_order_value: float
    active_customers: int
    total_customers: int
    active_rate_pct: float
    revenue_per_active_customer: float
    new_customers: int


class CompanyOverview(BaseModel):
    """Company overview report"""
    date_from: date
    date_to: date
    currency: str
    totals: CompanyTotals
    cohort: CohortSummary
    forecast: ForecastSummary
    reps: List[BucketSummary]
    rep_forecasts: List[AcquisitionSummary]
    periods: List[BucketSummary]
    customers: List[BucketSummary]
    quality: Dict[str, Any]
    skipped_orders: List[str]


class RepScorecardRow(BaseModel):
    """One rep's scorecard"""
    rep: BucketSummary
    previous_sales_ex: float
    growth_pct: Optional[float]
    cohort: CohortSummary
    acquisition: AcquisitionSummary
    customers: List[BucketSummary]


class RepScorecard(BaseModel):
    """Rep scorecard report"""
    date_from: date
    date_to: date
    currency: str
    company_sales_ex: float
    previous_company_sales_ex: float
    growth_pct: Optional[float]
    rows: List[RepScorecardRow]
    quality: Dict[str, Any]


class VendorRow(BaseModel):
    """One vendor's figures with period-over-period growth"""
    vendor: str
    revenue: float
    cost: float
    profit: float
    margin_pct: float
    orders: int
    customers: int
    avg_order_value: float
    previous_revenue: float
    growth_pct: Optional[float]


class VendorSummary(BaseModel):
    """Totals across the reported vendors"""
    revenue: float
    profit: float
    orders: int
    customers: int
    vendors: int
    previous_revenue: float
    growth_pct: Optional[float]


class VendorTimeseriesPoint(BaseModel):
    """One cell of the month x vendor revenue matrix"""
    period: str
    vendor: str
    revenue: float


class VendorScorecard(BaseModel):
    """Vendor scorecard report"""
    date_from: date
    date_to: date
    currency: str
    summary: VendorSummary
    by_vendor: List[VendorRow]
    timeseries: List[VendorTimeseriesPoint]
    quality: Dict[str, Any]


# =============================================================================
# Conversions
# =============================================================================

def bucket_summary(bucket: AttributionBucket) -> BucketSummary:
    return BucketSummary(
        key=bucket.key,
        label=bucket.label,
        sales_ex=_money(bucket.sales_ex),
        gross_ex=_money(bucket.gross_ex),
        cost=_money(bucket.cost),
        profit=_money(bucket.profit),
        margin_pct=round(bucket.margin_pct, 2),
        orders=bucket.order_count,
        customers=bucket.customer_count,
        avg_order_value=_money(bucket.avg_order_value),
    )


def cohort_summary(cohort: CohortMetrics) -> CohortSummary:
    return CohortSummary(
        new_customers=cohort.new_customers,
        first_order_count=cohort.first_order_count,
        first_order_sales_ex=_money(cohort.first_order_sales_ex),
        first_order_aov=_money(cohort.first_order_aov),
        drop_offs=cohort.drop_offs,
        drop_off_customer_ids=list(cohort.drop_off_customer_ids),
    )


def forecast_summary(forecast: Forecast) -> ForecastSummary:
    return ForecastSummary(
        total_days=forecast.total_days,
        elapsed_days=forecast.elapsed_days,
        remaining_days=forecast.remaining_days,
        run_rate_per_day=_money(forecast.run_rate_per_day),
        projected_sales_ex=_money(forecast.projected_sales_ex),
        projected_profit=_money(forecast.projected_profit),
        extrapolated=forecast.extrapolated,
    )


def acquisition_summary(forecast: AcquisitionForecast) -> AcquisitionSummary:
    return AcquisitionSummary(
        rep_key=forecast.rep_key,
        current_sales_ex=_money(forecast.current_sales_ex),
        first_order_count=forecast.first_order_count,
        first_order_aov=_money(forecast.first_order_aov),
        acq_run_rate_per_day=round(forecast.acq_run_rate_per_day, 4),
        projected_new_first_orders=round(forecast.projected_new_first_orders, 2),
        projected_incremental_sales_ex=_money(forecast.projected_incremental_sales_ex),
        projected_sales_ex_total=_money(forecast.projected_sales_ex_total),
    )


def _by_sales(buckets: Sequence[AttributionBucket]) -> List[AttributionBucket]:
    return sorted(buckets, key=lambda bucket: (-bucket.sales_ex, bucket.label))


class ReportAssembler:
    """
    Builds report payloads from report snapshots.

    Example:
        assembler = ReportAssembler()
        overview = assembler.company_overview(snapshot)
        overview.model_dump(mode="json")
    """

    def __init__(self, projector: Optional[ForecastProjector] = None, unassigned_label: Optional[str] = None):
        self.projector = projector or ForecastProjector()
        self.unassigned_label = unassigned_label or get_settings().reconciliation.unassigned_label

    def _quality(self, snapshot: ReportSnapshot) -> Dict[str, Any]:
        return summarize_batch(snapshot.batch, snapshot.costs).to_dict()

    def company_overview(self, snapshot: ReportSnapshot, margin_pct: Optional[float] = None) -> CompanyOverview:
        """
        Company totals, cohort, forecast and rep breakdown.

        margin_pct overrides the observed margin for the profit projection.
        """
        result = snapshot.result
        company = result.company
        margin = company.margin_pct if margin_pct is None else margin_pct
        forecast = self.projector.project(result.date_range, company.sales_ex, margin)
        rep_forecasts = self.projector.project_reps(result)

        active = company.customer_count
        total_customers = max(snapshot.total_customers, active)
        totals = CompanyTotals(
            sales_ex=_money(company.sales_ex),
            gross_ex=_money(company.gross_ex),
            cost=_money(company.cost),
            profit=_money(company.profit),
            margin_pct=round(company.margin_pct, 2),
            orders=company.order_count,
            avg_order_value=_money(company.avg_order_value),
            active_customers=active,
            total_customers=total_customers,
            active_rate_pct=round((active / total_customers) * 100, 2) if total_customers else 0.0,
            revenue_per_active_customer=_money(company.sales_ex / active) if active else 0.0,
            new_customers=result.cohort.new_customers,
        )

        return CompanyOverview(
            date_from=result.date_range.first_day,
            date_to=result.date_range.last_day,
            currency=result.currency,
            totals=totals,
            cohort=cohort_summary(result.cohort),
            forecast=forecast_summary(forecast),
            reps=[bucket_summary(bucket) for bucket in _by_sales(list(result.reps.values()))],
            rep_forecasts=[acquisition_summary(rep_forecasts[key]) for key in sorted(rep_forecasts)],
            periods=[bucket_summary(result.periods[key]) for key in sorted(result.periods)],
            customers=[bucket_summary(bucket) for bucket in _by_sales(list(result.customers.values()))],
            quality=self._quality(snapshot),
            skipped_orders=list(result.skipped_orders),
        )

    def rep_scorecard(
        self,
        snapshot: ReportSnapshot,
        previous: ReportSnapshot,
        rep_id: Optional[str] = None,
        rep_name: Optional[str] = None,
    ) -> RepScorecard:
        """
        Per-rep figures against the previous window of equal length.

        With rep_id or rep_name only the matching rep is reported; a rep
        without activity still gets a zero row.
        """
        result = snapshot.result
        resolver = RepResolver(snapshot.reps, self.unassigned_label)
        rep_forecasts = self.projector.project_reps(result)

        keys = _by_sales(list(result.reps.values()))
        selected = [bucket.key for bucket in keys]
        if rep_id or rep_name:
            selected = [
                bucket.key for bucket in keys
                if RepResolver.matches(bucket.key, bucket.label, rep_id, rep_name)
            ]

        buckets: List[AttributionBucket] = [result.reps[key] for key in selected]
        if not buckets and (rep_id or rep_name):
            key = str(rep_id) if rep_id else normalize_name(rep_name)
            buckets = [AttributionBucket(key=key, label=(rep_name or key).strip())]

        customers_by_rep: Dict[str, List[AttributionBucket]] = {}
        for customer_key, bucket in result.customers.items():
            rep_key, _ = resolver.resolve(snapshot.customers.get(customer_key))
            customers_by_rep.setdefault(rep_key, []).append(bucket)

        rows = []
        for bucket in buckets:
            prior = previous.result.reps.get(bucket.key)
            prior_sales = prior.sales_ex if prior else 0.0
            cohort = result.rep_cohorts.get(bucket.key, CohortMetrics())
            acquisition = rep_forecasts.get(bucket.key) or self.projector.project_acquisition(
                result.date_range, bucket.key, bucket.sales_ex, cohort
            )
            rows.append(RepScorecardRow(
                rep=bucket_summary(bucket),
                previous_sales_ex=_money(prior_sales),
                growth_pct=growth_pct(bucket.sales_ex, prior_sales),
                cohort=cohort_summary(cohort),
                acquisition=acquisition_summary(acquisition),
                customers=[bucket_summary(c) for c in _by_sales(customers_by_rep.get(bucket.key, []))],
            ))

        company_sales = result.company.sales_ex
        previous_sales = previous.result.company.sales_ex
        return RepScorecard(
            date_from=result.date_range.first_day,
            date_to=result.date_range.last_day,
            currency=result.currency,
            company_sales_ex=_money(company_sales),
            previous_company_sales_ex=_money(previous_sales),
            growth_pct=growth_pct(company_sales, previous_sales),
            rows=rows,
            quality=self._quality(snapshot),
        )

    def vendor_scorecard(
        self,
        snapshot: ReportSnapshot,
        previous: ReportSnapshot,
        vendors: Optional[Sequence[str]] = None,
    ) -> VendorScorecard:
        """
        Vendor revenue, growth and the month x vendor revenue matrix.

        When vendors are requested only those are reported (matched
        case-insensitively); requested vendors without sales appear as
        zero rows. Rows are sorted by revenue, highest first.
        """
        result = snapshot.result
        by_name = {normalize_name(name): bucket for name, bucket in result.vendors.items()}
        prior_by_name = {normalize_name(name): bucket for name, bucket in previous.result.vendors.items()}

        if vendors:
            names: List[str] = []
            for requested in vendors:
                if requested and requested.strip() and normalize_name(requested) not in {normalize_name(n) for n in names}:
                    names.append(requested.strip())
            buckets = [
                by_name.get(normalize_name(name)) or AttributionBucket(key=name, label=name)
                for name in names
            ]
        else:
            buckets = list(result.vendors.values())
        buckets = _by_sales(buckets)

        rows = []
        previous_total = 0.0
        for bucket in buckets:
            prior = prior_by_name.get(normalize_name(bucket.key))
            prior_revenue = prior.sales_ex if prior else 0.0
            previous_total += prior_revenue
            rows.append(VendorRow(
                vendor=bucket.label,
                revenue=_money(bucket.sales_ex),
                cost=_money(bucket.cost),
                profit=_money(bucket.profit),
                margin_pct=round(bucket.margin_pct, 2),
                orders=bucket.order_count,
                customers=bucket.customer_count,
                avg_order_value=_money(bucket.avg_order_value),
                previous_revenue=_money(prior_revenue),
                growth_pct=growth_pct(bucket.sales_ex, prior_revenue),
            ))

        revenue = sum(bucket.sales_ex for bucket in buckets)
        summary = VendorSummary(
            revenue=_money(revenue),
            profit=_money(sum(bucket.profit for bucket in buckets)),
            orders=len(set().union(*(bucket.order_ids for bucket in buckets))),
            customers=len(set().union(*(bucket.customer_ids for bucket in buckets))),
            vendors=len(buckets),
            previous_revenue=_money(previous_total),
            growth_pct=growth_pct(revenue, previous_total),
        )

        cells: Dict[Tuple[str, str], float] = {}
        for cell in result.vendor_periods:
            key = (cell["period"], normalize_name(cell["vendor"]))
            cells[key] = cells.get(key, 0.0) + float(cell["sales_ex"] or 0.0)
        timeseries = [
            VendorTimeseriesPoint(
                period=period,
                vendor=bucket.label,
                revenue=_money(cells.get((period, normalize_name(bucket.key)), 0.0)),
            )
            for period in month_keys(result.date_range)
            for bucket in buckets
        ]

        logger.debug("Vendor scorecard assembled", vendors=len(rows), periods=len(month_keys(result.date_range)))
        return VendorScorecard(
            date_from=result.date_range.first_day,
            date_to=result.date_range.last_day,
            currency=result.currency,
            summary=summary,
            by_vendor=rows,
            timeseries=timeseries,
            quality=self._quality(snapshot),
        )
