"""
Unit Tests - Report Assembly and Service
"""
from datetime import datetime

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from salesops.engine.costs import CostCache, MappingCostSource
from salesops.engine.dates import InvalidDateRange
from salesops.engine.forecast import ForecastProjector
from salesops.engine.records import Customer, LineItem, Order
from salesops.reports.assembler import CompanyOverview, growth_pct
from salesops.reports.cache import CacheManager
from salesops.reports.service import ReportService


class FakeRedis:
    """Minimal async Redis double"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.data = {}
        self.ttls = {}

    async def get(self, key):
        if self.fail:
            raise RedisConnectionError("redis down")
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        if self.fail:
            raise RedisConnectionError("redis down")
        self.data[key] = value
        self.ttls[key] = ttl


@pytest.fixture
def service(order_store, cost_source, cost_writer, fixed_clock) -> ReportService:
    return ReportService(
        order_store,
        CostCache(cost_source),
        cost_writer=cost_writer,
        projector=ForecastProjector(clock=fixed_clock),
    )


class TestGrowth:
    """Tests for period-over-period growth"""

    def test_growth_pct(self):
        assert growth_pct(150.0, 100.0) == 50.0
        assert growth_pct(50.0, 100.0) == -50.0

    def test_growth_without_base(self):
        assert growth_pct(100.0, 0.0) is None
        assert growth_pct(0.0, 0.0) is None


class TestCompanyOverview:
    """Tests for the company overview report"""

    @pytest.mark.asyncio
    async def test_totals(self, service):
        overview = await service.company_overview("2025-01-01", "2025-01-31")
        totals = overview.totals

        assert totals.sales_ex == 220.0
        assert totals.profit == 175.0
        assert totals.margin_pct == 79.55
        assert totals.orders == 3
        assert totals.avg_order_value == 73.33
        assert totals.active_customers == 2
        assert totals.total_customers == 4
        assert totals.active_rate_pct == 50.0
        assert totals.revenue_per_active_customer == 110.0
        assert totals.new_customers == 3
        assert overview.currency == "GBP"

    @pytest.mark.asyncio
    async def test_rep_rows_sum_to_company(self, service):
        overview = await service.company_overview("2025-01-01", "2025-01-31")

        assert [rep.key for rep in overview.reps] == ["rep-1", "rep-2", "Unassigned"]
        assert sum(rep.sales_ex for rep in overview.reps) == pytest.approx(overview.totals.sales_ex)

    @pytest.mark.asyncio
    async def test_cohort_and_forecast(self, service):
        overview = await service.company_overview("2025-01-01", "2025-01-31")

        assert overview.cohort.new_customers == 3
        assert overview.cohort.first_order_count == 1
        assert overview.cohort.drop_off_customer_ids == ["cust-3", "cust-4"]
        assert overview.forecast.projected_sales_ex == 220.0
        assert not overview.forecast.extrapolated

    @pytest.mark.asyncio
    async def test_margin_override(self, service):
        overview = await service.company_overview("2025-01-01", "2025-01-31", margin_pct=50.0)

        assert overview.forecast.projected_profit == 110.0

    @pytest.mark.asyncio
    async def test_quality_flags_unknown_cost(self, service):
        overview = await service.company_overview("2025-01-01", "2025-01-31")

        assert overview.quality["status"] == "degraded"
        assert overview.quality["checks"]["unknown_cost_lines"]["affected"] == 1

    @pytest.mark.asyncio
    async def test_sales_by_customer(self, service):
        overview = await service.company_overview("2025-01-01", "2025-01-31")

        assert overview.customers[0].key == "cust-1"
        assert overview.customers[0].label == "Acme Ltd"
        assert overview.customers[0].sales_ex == 170.0

    @pytest.mark.asyncio
    async def test_invalid_range_rejected_before_loading(self, service, order_store):
        with pytest.raises(InvalidDateRange):
            await service.company_overview("2025-02-01", "2025-01-01")

        assert order_store.range_queries == []


class TestRepScorecard:
    """Tests for the rep scorecard report"""

    @pytest.mark.asyncio
    async def test_growth_against_previous_period(self, service):
        scorecard = await service.rep_scorecard("2025-01-01", "2025-01-31")
        rows = {row.rep.key: row for row in scorecard.rows}

        assert rows["rep-1"].previous_sales_ex == 85.0
        assert rows["rep-1"].growth_pct == 100.0
        assert rows["rep-2"].growth_pct is None
        assert scorecard.growth_pct == 158.82

    @pytest.mark.asyncio
    async def test_filter_by_rep_name(self, service):
        scorecard = await service.rep_scorecard("2025-01-01", "2025-01-31", rep_name="BOB JONES")

        assert len(scorecard.rows) == 1
        row = scorecard.rows[0]
        assert row.rep.key == "rep-2"
        assert [c.key for c in row.customers] == ["cust-2"]
        assert row.cohort.first_order_count == 1
        assert row.acquisition.first_order_aov == 50.0

    @pytest.mark.asyncio
    async def test_unknown_rep_gets_zero_row(self, service):
        scorecard = await service.rep_scorecard("2025-01-01", "2025-01-31", rep_id="rep-7")

        assert len(scorecard.rows) == 1
        assert scorecard.rows[0].rep.key == "rep-7"
        assert scorecard.rows[0].rep.sales_ex == 0.0


class TestVendorScorecard:
    """Tests for the vendor scorecard report"""

    @pytest.mark.asyncio
    async def test_vendor_rows_sorted_by_revenue(self, service):
        scorecard = await service.vendor_scorecard("2025-01-01", "2025-01-31")

        assert [row.vendor for row in scorecard.by_vendor] == ["Acme", "Globex", "Unknown"]
        acme = scorecard.by_vendor[0]
        assert acme.revenue == 170.0
        assert acme.previous_revenue == 85.0
        assert acme.growth_pct == 100.0
        assert scorecard.by_vendor[1].growth_pct is None

    @pytest.mark.asyncio
    async def test_summary_counts_distinct_orders(self, service):
        scorecard = await service.vendor_scorecard("2025-01-01", "2025-01-31")

        assert scorecard.summary.revenue == 220.0
        assert scorecard.summary.orders == 3
        assert scorecard.summary.customers == 2
        assert scorecard.summary.vendors == 3

    @pytest.mark.asyncio
    async def test_requested_vendors_include_zero_rows(self, service):
        scorecard = await service.vendor_scorecard("2025-01-01", "2025-01-31", vendors=["acme", " Initech "])

        assert [row.vendor for row in scorecard.by_vendor] == ["Acme", "Initech"]
        assert scorecard.by_vendor[1].revenue == 0.0
        assert scorecard.summary.revenue == 170.0
        assert scorecard.summary.orders == 2

    @pytest.mark.asyncio
    async def test_month_vendor_matrix(self, service):
        scorecard = await service.vendor_scorecard("2024-12-01", "2025-01-31")
        cells = {(p.period, p.vendor): p.revenue for p in scorecard.timeseries}

        assert cells[("2024-12", "Acme")] == 85.0
        assert cells[("2025-01", "Acme")] == 170.0
        assert cells[("2024-12", "Globex")] == 0.0
        assert len(scorecard.timeseries) == 2 * len(scorecard.by_vendor)

    @pytest.mark.asyncio
    async def test_default_window(self, service):
        scorecard = await service.vendor_scorecard(None, "2025-01-31")

        assert str(scorecard.date_from) == "2024-11-03"
        assert str(scorecard.date_to) == "2025-01-31"

    @pytest.mark.asyncio
    async def test_malformed_end_rejected(self, service):
        with pytest.raises(InvalidDateRange):
            await service.vendor_scorecard(None, "31/01/2025")


class TestReportService:
    """Tests for cost write-back and the payload cache"""

    @pytest.mark.asyncio
    async def test_fetched_costs_written_back(self, order_store, cost_source, cost_writer, fixed_clock):
        async def lookup(variant_ids):
            return {"v3": 2.0}

        service = ReportService(
            order_store,
            CostCache(cost_source, lookup=lookup),
            cost_writer=cost_writer,
            projector=ForecastProjector(clock=fixed_clock),
        )

        overview = await service.company_overview("2025-01-01", "2025-01-31")

        assert cost_writer.saved == [{"v3": 2.0}]
        assert overview.totals.profit == 173.0
        assert overview.quality["checks"]["unknown_cost_lines"]["affected"] == 0

    @pytest.mark.asyncio
    async def test_payload_served_from_cache(self, order_store, cost_source, fixed_clock):
        redis = FakeRedis()
        service = ReportService(
            order_store,
            CostCache(cost_source),
            cache=CacheManager("reports", default_ttl=300, client=redis),
            projector=ForecastProjector(clock=fixed_clock),
        )

        first = await service.company_overview("2025-01-01", "2025-01-31")
        queries = len(order_store.range_queries)
        second = await service.company_overview("2025-01-01", "2025-01-31")

        assert isinstance(second, CompanyOverview)
        assert second == first
        assert len(order_store.range_queries) == queries
        assert list(redis.ttls.values()) == [300]

    @pytest.mark.asyncio
    async def test_cache_failure_computes_uncached(self, order_store, cost_source, fixed_clock):
        service = ReportService(
            order_store,
            CostCache(cost_source),
            cache=CacheManager("reports", client=FakeRedis(fail=True)),
            projector=ForecastProjector(clock=fixed_clock),
        )

        overview = await service.company_overview("2025-01-01", "2025-01-31")

        assert overview.totals.sales_ex == 220.0

    @pytest.mark.asyncio
    async def test_scorecards_make_one_cost_lookup(self, order_store, cost_writer, fixed_clock):
        """Current and previous windows share a single lookup and write-back"""
        calls = []

        async def lookup(variant_ids):
            calls.append(list(variant_ids))
            return {"v3": 2.0}

        service = ReportService(
            order_store,
            CostCache(MappingCostSource({}), lookup=lookup),
            cost_writer=cost_writer,
            projector=ForecastProjector(clock=fixed_clock),
        )

        await service.rep_scorecard("2025-01-01", "2025-01-31")
        assert calls == [["v1", "v2", "v3"]]
        assert cost_writer.saved == [{"v3": 2.0}]

        calls.clear()
        await service.vendor_scorecard("2025-01-01", "2025-01-31")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_malformed_first_order_keeps_customer_in_cohort(self, make_order_store, fixed_clock):
        customer = Customer(id="c1", created_at=datetime(2025, 1, 2))
        orders = [
            Order(id="o1", processed_at=datetime(2025, 1, 3), subtotal="bad", customer_id="c1"),
            Order(
                id="o2",
                processed_at=datetime(2025, 1, 4),
                subtotal=25.0,
                customer_id="c1",
                line_items=[LineItem(variant_id="v1", quantity=1, unit_price=25.0)],
            ),
        ]
        service = ReportService(
            make_order_store(orders, [customer]),
            CostCache(MappingCostSource({"v1": 10.0})),
            projector=ForecastProjector(clock=fixed_clock),
        )

        overview = await service.company_overview("2025-01-01", "2025-01-31")

        assert overview.skipped_orders == ["o1"]
        assert overview.cohort.new_customers == 1
        assert overview.cohort.drop_off_customer_ids == []
        assert overview.totals.sales_ex == 25.0
