"""
Revenue Reconciliation & Attribution Engine
"""
from .aggregator import AggregationResult, AttributionAggregator, AttributionBucket, CohortMetrics, RepResolver
from .costs import CostCache, CostResolution, MappingCostSource, VariantCostSource
from .dates import DateRange, InvalidDateRange
from .forecast import AcquisitionForecast, Forecast, ForecastProjector
from .reconciler import BatchResult, OrderReconciler, ReconciledOrder, RevenuePath
from .records import Customer, LineItem, Order, Refund, SalesRep

__all__ = [
    "AggregationResult",
    "AttributionAggregator",
    "AttributionBucket",
    "CohortMetrics",
    "RepResolver",
    "CostCache",
    "CostResolution",
    "MappingCostSource",
    "VariantCostSource",
    "DateRange",
    "InvalidDateRange",
    "AcquisitionForecast",
    "Forecast",
    "ForecastProjector",
    "BatchResult",
    "OrderReconciler",
    "ReconciledOrder",
    "RevenuePath",
    "Customer",
    "LineItem",
    "Order",
    "Refund",
    "SalesRep",
]
