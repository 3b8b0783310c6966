"""
Unit Tests - Data Quality Summary
"""
from datetime import datetime

from salesops.engine.costs import CostResolution
from salesops.engine.quality import QualitySeverity, QualityStatus, summarize_batch
from salesops.engine.reconciler import OrderReconciler
from salesops.engine.records import LineItem, Order


def order(order_id, **fields):
    fields.setdefault("line_items", [LineItem(variant_id="v1", quantity=1, unit_price=10.0)])
    return Order(id=order_id, processed_at=datetime(2025, 1, 5), **fields)


class TestSummarizeBatch:
    """Tests for summarize_batch"""

    def test_clean_batch(self):
        batch = OrderReconciler().reconcile_batch([order("a", subtotal=10.0)], {"v1": 2.0})

        report = summarize_batch(batch, CostResolution(costs={"v1": 2.0}))

        assert report.status == QualityStatus.CLEAN
        assert all(check.passed for check in report.checks)

    def test_fallbacks_and_faults_counted(self):
        orders = [
            order("matched", subtotal=10.0),
            order("mismatch", subtotal=99.0),
            order("exchange", line_items=[LineItem(variant_id="v1", quantity=2, refunded_quantity=1, unit_price=5.0)]),
            order("broken", subtotal="n/a"),
        ]
        batch = OrderReconciler().reconcile_batch(orders, {})

        report = summarize_batch(batch)
        checks = {check.name: check for check in report.checks}

        assert checks["skipped_orders"].affected == 1
        assert checks["skipped_orders"].total == 4
        assert checks["subtotal_mismatch"].affected == 2
        assert checks["exchange_adjusted"].affected == 1
        assert checks["unknown_cost_lines"].affected == 3
        assert "cost_lookup_failed" not in checks
        assert report.status == QualityStatus.DEGRADED

    def test_info_findings_do_not_degrade(self):
        batch = OrderReconciler().reconcile_batch([order("a", subtotal=50.0)], {"v1": 1.0})

        report = summarize_batch(batch)
        mismatch = next(check for check in report.checks if check.name == "subtotal_mismatch")

        assert mismatch.severity == QualitySeverity.INFO
        assert not mismatch.passed
        assert report.status == QualityStatus.CLEAN

    def test_lookup_failure_reported(self):
        batch = OrderReconciler().reconcile_batch([])

        report = summarize_batch(batch, CostResolution(lookup_failed=True))
        payload = report.to_dict()

        assert payload["status"] == "degraded"
        assert payload["checks"]["cost_lookup_failed"]["affected"] == 1
