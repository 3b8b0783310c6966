"""
Database Models

ORM mappings of the tables the engine reads: orders with their line
items and refund records, customers, sales reps, and the variant cost
cache. The tables are owned by the commerce sync; the engine only
writes to variant_costs.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


class SalesRepRow(Base):
    """Sales rep directory"""
    __tablename__ = "sales_reps"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)


class CustomerRow(Base):
    """
    Customer Table

    Rep attribution is carried both as a canonical rep id and as a legacy
    free-text rep name.
    """
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(200))
    sales_rep_id: Mapped[Optional[str]] = mapped_column(String(64), ForeignKey("sales_reps.id"))
    sales_rep: Mapped[Optional[str]] = mapped_column(String(200))
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    orders: Mapped[List["OrderRow"]] = relationship(back_populates="customer")

    __table_args__ = (
        Index("ix_customers_created_at", "created_at"),
        Index("ix_customers_sales_rep_id", "sales_rep_id"),
    )


class OrderRow(Base):
    """
    Order Table

    subtotal is ex-tax after discounts as originally recorded; current_*
    columns hold the post-edit state when the order was edited upstream.
    """
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    processed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    customer_id: Mapped[Optional[str]] = mapped_column(String(64), ForeignKey("customers.id"))

    subtotal: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    discounts: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    taxes: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    refunded_net: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    refunded_tax: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))

    current_subtotal: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    current_discounts: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    current_taxes: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))

    customer: Mapped[Optional["CustomerRow"]] = relationship(back_populates="orders")
    line_items: Mapped[List["OrderLineItemRow"]] = relationship(
        back_populates="order", order_by="OrderLineItemRow.id"
    )
    refunds: Mapped[List["OrderRefundRow"]] = relationship(
        back_populates="order", order_by="OrderRefundRow.id"
    )

    __table_args__ = (
        Index("ix_orders_processed_at", "processed_at"),
        Index("ix_orders_customer_processed", "customer_id", "processed_at"),
    )


class OrderLineItemRow(Base):
    """Order line; total is ex-tax and may be missing"""
    __tablename__ = "order_line_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(64), ForeignKey("orders.id"), nullable=False)
    variant_id: Mapped[Optional[str]] = mapped_column(String(64))
    product_vendor: Mapped[Optional[str]] = mapped_column(String(200))
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    refunded_quantity: Mapped[int] = mapped_column(Integer, default=0)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    total: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))

    order: Mapped["OrderRow"] = relationship(back_populates="line_items")

    __table_args__ = (
        Index("ix_order_line_items_order", "order_id"),
        Index("ix_order_line_items_vendor", "product_vendor"),
    )


class OrderRefundRow(Base):
    """Detailed refund record"""
    __tablename__ = "order_refunds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(64), ForeignKey("orders.id"), nullable=False)
    net_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    tax_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))

    order: Mapped["OrderRow"] = relationship(back_populates="refunds")


class VariantCostRow(Base):
    """Local cache of per-variant unit costs"""
    __tablename__ = "variant_costs"

    variant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    unit_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4))
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )
