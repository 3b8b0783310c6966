"""
Test Suite Configuration
"""
from datetime import datetime
from typing import Dict, List, Sequence

import pytest

from salesops.engine.costs import MappingCostSource
from salesops.engine.dates import DateRange
from salesops.engine.records import Customer, LineItem, Order, SalesRep


class FakeOrderStore:
    """In-memory order store with the same query semantics as OrderStore"""

    def __init__(self, orders: List[Order], customers: List[Customer], reps: List[SalesRep]):
        self.orders = list(orders)
        self.customers = {customer.id: customer for customer in customers}
        self.reps = list(reps)
        self.range_queries: List[DateRange] = []

    async def fetch_orders(self, date_range: DateRange) -> List[Order]:
        self.range_queries.append(date_range)
        return sorted(
            (o for o in self.orders if date_range.contains(o.processed_at)),
            key=lambda o: (o.processed_at, o.id),
        )

    async def fetch_first_orders(self, customer_ids: Sequence[str]) -> Dict[str, Order]:
        first: Dict[str, Order] = {}
        for order in sorted(self.orders, key=lambda o: (o.processed_at, o.id)):
            if order.customer_id in customer_ids and order.customer_id not in first:
                first[order.customer_id] = order
        return first

    async def fetch_customers(self, customer_ids: Sequence[str]) -> Dict[str, Customer]:
        return {cid: self.customers[cid] for cid in customer_ids if cid in self.customers}

    async def fetch_customers_created(self, date_range: DateRange) -> Dict[str, Customer]:
        return {
            cid: customer for cid, customer in self.customers.items()
            if date_range.contains(customer.created_at)
        }

    async def fetch_sales_reps(self) -> List[SalesRep]:
        return list(self.reps)

    async def count_customers(self) -> int:
        return len(self.customers)


class RecordingCostWriter:
    """Cost writer that keeps what it was asked to persist"""

    def __init__(self):
        self.saved: List[Dict[str, float]] = []

    async def save_costs(self, costs, currency=None) -> int:
        self.saved.append(dict(costs))
        return len(costs)


@pytest.fixture
def january() -> DateRange:
    """Report window for January 2025"""
    return DateRange.parse("2025-01-01", "2025-01-31")


@pytest.fixture
def fixed_clock():
    """Clock pinned after the January window has closed"""
    return lambda: datetime(2025, 3, 1, 12, 0, 0)


@pytest.fixture
def sample_reps() -> List[SalesRep]:
    """Sales rep directory"""
    return [
        SalesRep(id="rep-1", name="Alice Smith"),
        SalesRep(id="rep-2", name="Bob Jones"),
    ]


@pytest.fixture
def sample_customers() -> List[Customer]:
    """
    cust-1: existing customer of rep-1
    cust-2: new in January, legacy rep name only
    cust-3: new in January, no rep, never orders
    cust-4: new in January, first order in February
    """
    return [
        Customer(id="cust-1", created_at=datetime(2024, 6, 1), sales_rep_id="rep-1", name="Acme Ltd"),
        Customer(id="cust-2", created_at=datetime(2025, 1, 5), sales_rep_name="  bob   JONES "),
        Customer(id="cust-3", created_at=datetime(2025, 1, 10)),
        Customer(id="cust-4", created_at=datetime(2025, 1, 20), sales_rep_id="rep-1"),
    ]


@pytest.fixture
def sample_orders() -> List[Order]:
    """
    Orders around January 2025.

    Net ex-VAT: ord-1 100, ord-2 50, ord-3 70, ord-4 0 (sample order),
    ord-0 85 in December, ord-5 40 in February.
    """
    return [
        Order(
            id="ord-0",
            processed_at=datetime(2024, 12, 10, 9, 0),
            currency="GBP",
            subtotal=85.0,
            customer_id="cust-1",
            line_items=[LineItem(variant_id="v1", quantity=1, unit_price=85.0, vendor="Acme")],
        ),
        Order(
            id="ord-1",
            processed_at=datetime(2025, 1, 3, 10, 0),
            currency="GBP",
            subtotal=100.0,
            discounts=20.0,
            taxes=24.0,
            customer_id="cust-1",
            line_items=[LineItem(variant_id="v1", quantity=2, unit_price=50.0, vendor="Acme")],
        ),
        Order(
            id="ord-2",
            processed_at=datetime(2025, 1, 6, 14, 30),
            currency="GBP",
            subtotal=50.0,
            customer_id="cust-2",
            line_items=[
                LineItem(variant_id="v2", quantity=1, unit_price=30.0, vendor="Globex"),
                LineItem(variant_id="v3", quantity=1, unit_price=20.0),
            ],
        ),
        Order(
            id="ord-3",
            processed_at=datetime(2025, 1, 15, 16, 45),
            currency="GBP",
            subtotal=100.0,
            discounts=20.0,
            refunded_net=30.0,
            customer_id="cust-1",
            line_items=[LineItem(variant_id="v1", quantity=2, unit_price=50.0, vendor="Acme")],
        ),
        Order(
            id="ord-4",
            processed_at=datetime(2025, 1, 20, 8, 0),
            currency="GBP",
            subtotal=0.0,
            line_items=[LineItem(variant_id="v2", quantity=1, unit_price=0.0, vendor="Globex")],
        ),
        Order(
            id="ord-5",
            processed_at=datetime(2025, 2, 3, 11, 0),
            currency="GBP",
            subtotal=40.0,
            customer_id="cust-4",
            line_items=[LineItem(variant_id="v2", quantity=1, unit_price=40.0, vendor="Globex")],
        ),
    ]


@pytest.fixture
def unit_costs() -> Dict[str, float]:
    """Known unit costs; v3 has none"""
    return {"v1": 10.0, "v2": 5.0}


@pytest.fixture
def cost_source(unit_costs) -> MappingCostSource:
    return MappingCostSource(unit_costs)


@pytest.fixture
def order_store(sample_orders, sample_customers, sample_reps) -> FakeOrderStore:
    return FakeOrderStore(sample_orders, sample_customers, sample_reps)


@pytest.fixture
def cost_writer() -> RecordingCostWriter:
    return RecordingCostWriter()


@pytest.fixture
def make_order_store():
    """Builds an order store over ad-hoc records"""
    def factory(orders, customers=(), reps=()) -> FakeOrderStore:
        return FakeOrderStore(list(orders), list(customers), list(reps))
    return factory
