"""
Engine Metrics

Prometheus instruments shared by the engine and the report service.
"""

from prometheus_client import Counter, Histogram

ORDERS_RECONCILED = Counter(
    "salesops_orders_reconciled_total",
    "Orders passed through the reconciler",
    ["outcome"],
)

COST_LOOKUPS = Counter(
    "salesops_variant_cost_lookups_total",
    "Variant cost resolutions by source",
    ["outcome"],
)

REPORT_BUILD_TIME = Histogram(
    "salesops_report_build_seconds",
    "Time spent building a report payload",
    ["report"],
)
