"""
Store Repositories

Read-only range queries over the order store, and the read/write side of
the variant cost cache table. Rows are converted to engine records so the
engine never touches ORM objects.
"""

from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from salesops.engine.costs import VariantCostSource
from salesops.engine.dates import DateRange, utc_now
from salesops.engine.records import Customer, LineItem, Order, Refund, SalesRep
from .models import CustomerRow, OrderRow, SalesRepRow, VariantCostRow

logger = structlog.get_logger(__name__)

# Keeps IN (...) lists within driver parameter limits
ID_CHUNK_SIZE = 500


def _chunks(ids: Sequence[str], size: int = ID_CHUNK_SIZE) -> Iterator[List[str]]:
    for start in range(0, len(ids), size):
        yield list(ids[start:start + size])


def to_order(row: OrderRow) -> Order:
    """Convert an ORM order (with loaded lines and refunds) to an engine record"""
    return Order(
        id=row.id,
        processed_at=row.processed_at,
        currency=row.currency,
        subtotal=row.subtotal,
        discounts=row.discounts,
        taxes=row.taxes,
        refunded_net=row.refunded_net,
        refunded_tax=row.refunded_tax,
        current_subtotal=row.current_subtotal,
        current_discounts=row.current_discounts,
        current_taxes=row.current_taxes,
        customer_id=row.customer_id,
        line_items=[
            LineItem(
                variant_id=line.variant_id,
                quantity=line.quantity,
                refunded_quantity=line.refunded_quantity,
                unit_price=line.price,
                line_total=line.total,
                vendor=line.product_vendor,
            )
            for line in row.line_items
        ],
        refunds=[
            Refund(net_amount=refund.net_amount, tax_amount=refund.tax_amount)
            for refund in row.refunds
        ],
    )


def to_customer(row: CustomerRow) -> Customer:
    return Customer(
        id=row.id,
        created_at=row.created_at,
        sales_rep_id=row.sales_rep_id,
        sales_rep_name=row.sales_rep,
        name=row.name,
    )


class OrderStore:
    """
    Read-only access to orders, customers and sales reps.

    Example:
        async with get_db() as db:
            orders = await OrderStore(db).fetch_orders(date_range)
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    def _order_query(self):
        return select(OrderRow).options(
            selectinload(OrderRow.line_items),
            selectinload(OrderRow.refunds),
        )

    async def fetch_orders(self, date_range: DateRange) -> List[Order]:
        """Orders with processed_at in [gte, lte], oldest first"""
        result = await self.session.execute(
            self._order_query()
            .where(OrderRow.processed_at >= date_range.gte, OrderRow.processed_at <= date_range.lte)
            .order_by(OrderRow.processed_at, OrderRow.id)
        )
        orders = [to_order(row) for row in result.scalars().all()]
        logger.debug("Orders fetched", range=date_range.label(), orders=len(orders))
        return orders

    async def fetch_first_orders(self, customer_ids: Iterable[str]) -> Dict[str, Order]:
        """Each customer's earliest-ever order (processed_at, then id)"""
        ids = sorted({cid for cid in customer_ids if cid})
        first: Dict[str, Order] = {}
        for chunk in _chunks(ids):
            result = await self.session.execute(
                self._order_query()
                .where(OrderRow.customer_id.in_(chunk))
                .order_by(OrderRow.customer_id, OrderRow.processed_at, OrderRow.id)
            )
            for row in result.scalars().all():
                if row.customer_id not in first:
                    first[row.customer_id] = to_order(row)
        return first

    async def fetch_customers(self, customer_ids: Iterable[str]) -> Dict[str, Customer]:
        ids = sorted({cid for cid in customer_ids if cid})
        customers: Dict[str, Customer] = {}
        for chunk in _chunks(ids):
            result = await self.session.execute(select(CustomerRow).where(CustomerRow.id.in_(chunk)))
            for row in result.scalars().all():
                customers[row.id] = to_customer(row)
        return customers

    async def fetch_customers_created(self, date_range: DateRange) -> Dict[str, Customer]:
        """Customers whose created_at falls within the range"""
        result = await self.session.execute(
            select(CustomerRow).where(
                CustomerRow.created_at >= date_range.gte,
                CustomerRow.created_at <= date_range.lte,
            )
        )
        return {row.id: to_customer(row) for row in result.scalars().all()}

    async def fetch_sales_reps(self) -> List[SalesRep]:
        result = await self.session.execute(select(SalesRepRow).order_by(SalesRepRow.name))
        return [SalesRep(id=row.id, name=row.name) for row in result.scalars().all()]

    async def count_customers(self) -> int:
        result = await self.session.execute(select(func.count(CustomerRow.id)))
        return int(result.scalar_one() or 0)


class VariantCostStore(VariantCostSource):
    """The variant_costs cache table"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_costs(self, variant_ids: Sequence[str]) -> Mapping[str, Optional[float]]:
        costs: Dict[str, Optional[float]] = {}
        for chunk in _chunks(sorted(set(variant_ids))):
            result = await self.session.execute(
                select(VariantCostRow.variant_id, VariantCostRow.unit_cost)
                .where(VariantCostRow.variant_id.in_(chunk))
            )
            for variant_id, unit_cost in result.all():
                costs[variant_id] = float(unit_cost) if unit_cost is not None else None
        return costs

    async def save_costs(self, costs: Mapping[str, float], currency: Optional[str] = None) -> int:
        """Upsert fetched unit costs; returns the number of rows written"""
        if not costs:
            return 0

        ids = sorted(costs)
        # Savepoint so a failed write leaves the read session usable
        async with self.session.begin_nested():
            existing: Dict[str, VariantCostRow] = {}
            for chunk in _chunks(ids):
                result = await self.session.execute(
                    select(VariantCostRow).where(VariantCostRow.variant_id.in_(chunk))
                )
                existing.update({row.variant_id: row for row in result.scalars().all()})

            now = utc_now()
            for variant_id in ids:
                row = existing.get(variant_id)
                if row is None:
                    self.session.add(VariantCostRow(
                        variant_id=variant_id,
                        unit_cost=Decimal(str(costs[variant_id])),
                        currency=currency,
                        updated_at=now,
                    ))
                else:
                    row.unit_cost = Decimal(str(costs[variant_id]))
                    row.currency = currency or row.currency
                    row.updated_at = now

            await self.session.flush()
        logger.info("Variant costs cached", count=len(ids))
        return len(ids)
