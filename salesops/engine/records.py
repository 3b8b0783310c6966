"""
Engine Records

Store-agnostic snapshots of the order, line item, refund, customer and
sales rep rows the engine reads. Monetary fields are kept exactly as
loaded (None, Decimal, float or numeric string); the reconciler coerces
them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional


@dataclass(frozen=True)
class LineItem:
    """Single order line"""
    variant_id: Optional[str] = None
    quantity: Any = 0
    refunded_quantity: Any = 0
    unit_price: Any = None
    line_total: Any = None  # ex-tax, None forces unit_price x quantity
    vendor: Optional[str] = None


@dataclass(frozen=True)
class Refund:
    """Detailed refund record (ex-tax net plus tax)"""
    net_amount: Any = None
    tax_amount: Any = None


@dataclass(frozen=True)
class Order:
    """Order snapshot with its line items and refund detail"""
    id: str
    processed_at: datetime
    currency: Optional[str] = None
    subtotal: Any = None  # ex-tax, after discounts
    discounts: Any = None
    taxes: Any = None
    refunded_net: Any = None
    refunded_tax: Any = None
    current_subtotal: Any = None
    current_discounts: Any = None
    current_taxes: Any = None
    customer_id: Optional[str] = None
    line_items: List[LineItem] = field(default_factory=list)
    refunds: List[Refund] = field(default_factory=list)


@dataclass(frozen=True)
class Customer:
    """Customer with its sales rep attribution key"""
    id: str
    created_at: Optional[datetime] = None
    sales_rep_id: Optional[str] = None
    sales_rep_name: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class SalesRep:
    """Entry of the sales rep directory"""
    id: str
    name: str
