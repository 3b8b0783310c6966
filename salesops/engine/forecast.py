"""
Forecast Projector

Run-rate projection of a partially elapsed period, plus a per-rep
projection driven by the observed rate of new-customer first orders.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

import structlog

from .aggregator import AggregationResult, CohortMetrics
from .dates import DateRange, inclusive_days, utc_now

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Forecast:
    """Company-level projection for one period"""
    total_days: int
    elapsed_days: int
    remaining_days: int
    run_rate_per_day: float
    projected_sales_ex: float
    projected_profit: float
    extrapolated: bool


@dataclass(frozen=True)
class AcquisitionForecast:
    """Per-rep projection driven by new-customer acquisition"""
    rep_key: str
    current_sales_ex: float
    first_order_count: int
    first_order_aov: float
    acq_run_rate_per_day: float
    projected_new_first_orders: float
    projected_incremental_sales_ex: float
    projected_sales_ex_total: float


class ForecastProjector:
    """
    Projects aggregated period figures forward.

    Example:
        projector = ForecastProjector()
        forecast = projector.project(date_range, sales_ex=1200.0, margin_pct=35.0)
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or utc_now

    @property
    def now(self) -> datetime:
        return self._clock()

    def day_counts(self, date_range: DateRange, now: Optional[datetime] = None) -> Tuple[int, int, int]:
        """Returns (total_days, elapsed_days, remaining_days)"""
        now = now or self.now
        total_days = date_range.total_days
        clamped_end = min(date_range.lte, now)
        if clamped_end >= date_range.gte:
            elapsed_days = max(1, inclusive_days(date_range.first_day, clamped_end.date()))
        else:
            elapsed_days = 1
        return total_days, elapsed_days, max(0, total_days - elapsed_days)

    def project(self, date_range: DateRange, sales_ex: float, margin_pct: float) -> Forecast:
        """
        Run-rate projection.

        A period whose end has already passed is not extrapolated: the
        projection equals the actual sales.
        """
        now = self.now
        total_days, elapsed_days, remaining_days = self.day_counts(date_range, now)
        run_rate = sales_ex / elapsed_days
        extrapolated = date_range.lte > now
        projected_sales = run_rate * total_days if extrapolated else sales_ex

        return Forecast(
            total_days=total_days,
            elapsed_days=elapsed_days,
            remaining_days=remaining_days,
            run_rate_per_day=run_rate,
            projected_sales_ex=projected_sales,
            projected_profit=projected_sales * (margin_pct / 100),
            extrapolated=extrapolated,
        )

    def project_acquisition(
        self,
        date_range: DateRange,
        rep_key: str,
        current_sales_ex: float,
        cohort: CohortMetrics,
    ) -> AcquisitionForecast:
        """Incremental sales from new first orders over the remaining days"""
        _, elapsed_days, remaining_days = self.day_counts(date_range)
        acq_rate = cohort.first_order_count / elapsed_days
        new_first_orders = acq_rate * remaining_days
        incremental = new_first_orders * cohort.first_order_aov

        return AcquisitionForecast(
            rep_key=rep_key,
            current_sales_ex=current_sales_ex,
            first_order_count=cohort.first_order_count,
            first_order_aov=cohort.first_order_aov,
            acq_run_rate_per_day=acq_rate,
            projected_new_first_orders=new_first_orders,
            projected_incremental_sales_ex=incremental,
            projected_sales_ex_total=current_sales_ex + incremental,
        )

    def project_reps(self, result: AggregationResult) -> Dict[str, AcquisitionForecast]:
        """Acquisition projection for every rep bucket and rep cohort"""
        keys = sorted(set(result.reps) | set(result.rep_cohorts))
        forecasts = {}
        for key in keys:
            bucket = result.reps.get(key)
            forecasts[key] = self.project_acquisition(
                result.date_range,
                key,
                bucket.sales_ex if bucket else 0.0,
                result.rep_cohorts.get(key, CohortMetrics()),
            )
        logger.debug("Rep acquisition forecasts computed", reps=len(forecasts))
        return forecasts
