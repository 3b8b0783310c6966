"""
Report Assembly and Orchestration
"""
from .assembler import (
    CompanyOverview,
    ReportAssembler,
    ReportSnapshot,
    RepScorecard,
    VendorScorecard,
    growth_pct,
)
from .cache import CacheManager, close_redis, init_redis, reports_cache
from .service import ReportService

__all__ = [
    "CompanyOverview",
    "ReportAssembler",
    "ReportSnapshot",
    "RepScorecard",
    "VendorScorecard",
    "growth_pct",
    "CacheManager",
    "close_redis",
    "init_redis",
    "reports_cache",
    "ReportService",
]
