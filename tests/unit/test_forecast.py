"""
Unit Tests - Forecast Projection
"""
from datetime import datetime

import pytest

from salesops.engine.aggregator import AggregationResult, AttributionBucket, CohortMetrics
from salesops.engine.dates import DateRange
from salesops.engine.forecast import ForecastProjector


def clock_at(moment: datetime):
    return lambda: moment


class TestForecastProjector:
    """Tests for run-rate projection"""

    def test_past_range_not_extrapolated(self, january, fixed_clock):
        projector = ForecastProjector(clock=fixed_clock)

        forecast = projector.project(january, sales_ex=1234.56, margin_pct=40.0)

        assert forecast.projected_sales_ex == 1234.56
        assert not forecast.extrapolated
        assert forecast.total_days == 31
        assert forecast.elapsed_days == 31
        assert forecast.remaining_days == 0
        assert forecast.projected_profit == pytest.approx(493.824)

    def test_partially_elapsed_range_extrapolated(self, january):
        """Ten days in, the run rate covers all 31 days"""
        projector = ForecastProjector(clock=clock_at(datetime(2025, 1, 10, 15, 0)))

        forecast = projector.project(january, sales_ex=1000.0, margin_pct=25.0)

        assert forecast.elapsed_days == 10
        assert forecast.remaining_days == 21
        assert forecast.run_rate_per_day == pytest.approx(100.0)
        assert forecast.projected_sales_ex == pytest.approx(3100.0)
        assert forecast.projected_profit == pytest.approx(775.0)
        assert forecast.extrapolated

    def test_future_range_has_one_elapsed_day(self, january):
        projector = ForecastProjector(clock=clock_at(datetime(2024, 12, 1)))

        forecast = projector.project(january, sales_ex=0.0, margin_pct=30.0)

        assert forecast.elapsed_days == 1
        assert forecast.remaining_days == 30
        assert forecast.projected_sales_ex == 0.0

    def test_last_day_in_progress(self):
        """A range ending today is still extrapolated until its last instant"""
        window = DateRange.parse("2025-01-01", "2025-01-04")
        projector = ForecastProjector(clock=clock_at(datetime(2025, 1, 4, 9, 0)))

        forecast = projector.project(window, sales_ex=400.0, margin_pct=10.0)

        assert forecast.elapsed_days == 4
        assert forecast.remaining_days == 0
        assert forecast.projected_sales_ex == pytest.approx(400.0)
        assert forecast.extrapolated


class TestAcquisitionForecast:
    """Tests for the acquisition-driven rep projection"""

    def test_project_acquisition(self, january):
        projector = ForecastProjector(clock=clock_at(datetime(2025, 1, 10, 12, 0)))
        cohort = CohortMetrics(new_customers=4, first_order_count=2, first_order_sales_ex=300.0)

        forecast = projector.project_acquisition(january, "rep-1", 900.0, cohort)

        assert forecast.acq_run_rate_per_day == pytest.approx(0.2)
        assert forecast.projected_new_first_orders == pytest.approx(4.2)
        assert forecast.projected_incremental_sales_ex == pytest.approx(630.0)
        assert forecast.projected_sales_ex_total == pytest.approx(1530.0)

    def test_no_first_orders_projects_no_growth(self, january):
        projector = ForecastProjector(clock=clock_at(datetime(2025, 1, 10)))

        forecast = projector.project_acquisition(january, "rep-1", 500.0, CohortMetrics())

        assert forecast.projected_incremental_sales_ex == 0.0
        assert forecast.projected_sales_ex_total == 500.0

    def test_project_reps_covers_cohort_only_reps(self, january, fixed_clock):
        result = AggregationResult(
            date_range=january,
            currency="GBP",
            company=AttributionBucket("company", "Company"),
            reps={"rep-1": AttributionBucket("rep-1", "Alice", sales_ex=200.0)},
            rep_cohorts={"rep-2": CohortMetrics(new_customers=1)},
        )

        forecasts = ForecastProjector(clock=fixed_clock).project_reps(result)

        assert sorted(forecasts) == ["rep-1", "rep-2"]
        assert forecasts["rep-1"].projected_sales_ex_total == pytest.approx(200.0)
        assert forecasts["rep-2"].current_sales_ex == 0.0
