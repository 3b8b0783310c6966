"""
Data Quality Summary

Data-quality gaps never fail a report; they are counted here so the
report consumer can see how much of the figures rest on fallbacks.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from .costs import CostResolution
from .dates import utc_now
from .reconciler import BatchResult, RevenuePath

logger = structlog.get_logger(__name__)


class QualitySeverity(str, Enum):
    """Severity levels for data-quality findings"""
    WARNING = "warning"  # figures affected, report still valid
    INFO = "info"  # fallback taken as designed


class QualityStatus(str, Enum):
    """Overall data-quality status"""
    CLEAN = "clean"
    DEGRADED = "degraded"


@dataclass
class QualityCheck:
    """Single data-quality finding"""
    name: str
    severity: QualitySeverity
    affected: int
    total: int
    message: str

    @property
    def passed(self) -> bool:
        return self.affected == 0

    @property
    def affected_pct(self) -> float:
        if self.total == 0:
            return 0.0
        return (self.affected / self.total) * 100


@dataclass
class QualityReport:
    """Data-quality findings for one report computation"""
    checks: List[QualityCheck] = field(default_factory=list)
    generated_at: datetime = field(default_factory=utc_now)

    @property
    def status(self) -> QualityStatus:
        degraded = any(
            not check.passed and check.severity == QualitySeverity.WARNING
            for check in self.checks
        )
        return QualityStatus.DEGRADED if degraded else QualityStatus.CLEAN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "checks": {
                check.name: {
                    "affected": check.affected,
                    "total": check.total,
                    "severity": check.severity.value,
                    "message": check.message,
                }
                for check in self.checks
            },
        }


def summarize_batch(batch: BatchResult, costs: Optional[CostResolution] = None) -> QualityReport:
    """Count the fallbacks and faults behind a reconciled batch"""
    orders = batch.orders
    total_orders = len(orders) + len(batch.skipped)
    total_lines = sum(len(item.order.line_items) for item in orders)

    mismatched = sum(1 for item in orders if not item.subtotal_matched)
    exchanges = sum(1 for item in orders if item.path == RevenuePath.EXCHANGE)
    unknown_cost = sum(item.unknown_cost_lines for item in orders)

    report = QualityReport(checks=[
        QualityCheck(
            name="skipped_orders",
            severity=QualitySeverity.WARNING,
            affected=len(batch.skipped),
            total=total_orders,
            message="Orders with malformed fields excluded from all figures",
        ),
        QualityCheck(
            name="subtotal_mismatch",
            severity=QualitySeverity.INFO,
            affected=mismatched,
            total=len(orders),
            message="Orders whose recorded subtotal disagreed with their line items",
        ),
        QualityCheck(
            name="exchange_adjusted",
            severity=QualitySeverity.INFO,
            affected=exchanges,
            total=len(orders),
            message="Orders re-apportioned for exchanged quantities",
        ),
        QualityCheck(
            name="unknown_cost_lines",
            severity=QualitySeverity.WARNING,
            affected=unknown_cost,
            total=total_lines,
            message="Line items costed at zero because no unit cost is known",
        ),
    ])

    if costs is not None:
        report.checks.append(QualityCheck(
            name="cost_lookup_failed",
            severity=QualitySeverity.WARNING,
            affected=1 if costs.lookup_failed else 0,
            total=1,
            message="External cost lookup failed or timed out",
        ))

    if report.status == QualityStatus.DEGRADED:
        logger.info(
            "Report figures rest on degraded data",
            skipped=len(batch.skipped),
            unknown_cost_lines=unknown_cost,
        )
    return report
