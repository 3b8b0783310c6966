"""
Report Runner

Command-line entry point printing a report payload as JSON.

Usage:
    salesops-report overview --from 2025-01-01 --to 2025-01-31
    salesops-report overview --from 2025-01-01 --to 2025-01-31 --margin-pct 32.5
    salesops-report rep --from 2025-01-01 --to 2025-01-31 --rep-id rep-7
    salesops-report rep --from 2025-01-01 --to 2025-01-31 --rep-name "Jo Bloggs"
    salesops-report vendors --to 2025-03-31 --vendors "Acme,Globex"
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

import structlog
from pydantic import BaseModel
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from salesops.config import get_settings
from salesops.config.logging import configure_logging
from salesops.database import OrderStore, VariantCostStore, close_database, get_db, init_database
from salesops.engine.costs import CostCache
from salesops.engine.dates import DateRange, InvalidDateRange
from salesops.reports.cache import CacheManager, close_redis, init_redis, reports_cache
from salesops.reports.service import ReportService, vendor_range

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="salesops-report",
        description="Reconciled revenue and attribution reports",
    )
    sub = parser.add_subparsers(dest="report", required=True)

    overview = sub.add_parser("overview", help="Company overview with forecast and cohort")
    overview.add_argument("--from", dest="date_from", required=True, help="First day, YYYY-MM-DD")
    overview.add_argument("--to", dest="date_to", required=True, help="Last day, YYYY-MM-DD")
    overview.add_argument("--margin-pct", type=float, default=None, help="Margin used for the profit projection")

    rep = sub.add_parser("rep", help="Rep scorecard against the previous period")
    rep.add_argument("--from", dest="date_from", required=True, help="First day, YYYY-MM-DD")
    rep.add_argument("--to", dest="date_to", required=True, help="Last day, YYYY-MM-DD")
    rep.add_argument("--rep-id", default=None, help="Only this rep id")
    rep.add_argument("--rep-name", default=None, help="Only this rep name (case-insensitive)")

    vendors = sub.add_parser("vendors", help="Vendor scorecard with monthly revenue matrix")
    vendors.add_argument("--from", dest="date_from", default=None, help="First day, YYYY-MM-DD")
    vendors.add_argument("--to", dest="date_to", default=None, help="Last day, YYYY-MM-DD")
    vendors.add_argument("--vendors", default=None, help="Comma-separated vendor names")

    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    return parser


def _vendor_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [name.strip() for name in value.split(",") if name.strip()]


def validate_dates(args: argparse.Namespace) -> DateRange:
    """Reject bad dates before any store is opened"""
    if args.report == "vendors":
        return vendor_range(args.date_from, args.date_to, get_settings().reports.default_vendor_window_days)
    return DateRange.parse(args.date_from, args.date_to)


def build_service(session: AsyncSession, cache: Optional[CacheManager] = None) -> ReportService:
    """Report service over one session; COST_LOOKUP_HOOK enables the external lookup"""
    costs = VariantCostStore(session)
    lookup = get_settings().cost_lookup.hook
    return ReportService(OrderStore(session), CostCache(costs, lookup=lookup), cost_writer=costs, cache=cache)


async def run_report(args: argparse.Namespace) -> BaseModel:
    """Open the stores, compute the requested report and release them"""
    settings = get_settings()
    await init_database()

    cache = None
    if settings.redis.enabled:
        try:
            cache = reports_cache(await init_redis())
        except (RedisError, OSError) as e:
            logger.warning("Report cache unavailable, computing uncached", error=str(e))

    try:
        async with get_db() as db:
            service = build_service(db, cache)

            if args.report == "overview":
                return await service.company_overview(args.date_from, args.date_to, margin_pct=args.margin_pct)
            if args.report == "rep":
                return await service.rep_scorecard(
                    args.date_from, args.date_to, rep_id=args.rep_id, rep_name=args.rep_name
                )
            return await service.vendor_scorecard(
                args.date_from, args.date_to, vendors=_vendor_list(args.vendors)
            )
    finally:
        await close_database()
        if cache is not None:
            await close_redis()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        validate_dates(args)
        payload = asyncio.run(run_report(args))
    except InvalidDateRange as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print(json.dumps(payload.model_dump(mode="json"), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
