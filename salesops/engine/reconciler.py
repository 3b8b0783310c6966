"""
Order Reconciler

Turns an order snapshot into canonical ex-tax revenue, cost and profit.

Pipeline per order:
1. Derive the line-item gross (line totals, else unit price x quantity)
2. Resolve the baseline subtotal/discounts (current fields first)
3. Reconcile the baseline against the line gross within a tolerance
4. Apply monetary refunds, else re-apportion discounts for exchanges
5. Cost the kept quantities and floor profit at zero
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import structlog

from salesops.config import get_settings
from .fields import approx_equal, first_present, to_money, to_optional_money, to_quantity
from .metrics import ORDERS_RECONCILED
from .records import LineItem, Order

logger = structlog.get_logger(__name__)


class RevenuePath(str, Enum):
    """Which rule produced the order's net/gross figures"""
    BASELINE = "baseline"
    REFUND = "refund"
    EXCHANGE = "exchange"


@dataclass(frozen=True)
class ReconciledOrder:
    """Canonical figures for one order"""
    order: Order
    net_ex: float
    gross_ex: float
    gross_inc: float
    discounts_used: float
    cost: float
    profit: float
    path: RevenuePath
    subtotal_matched: bool
    unknown_cost_lines: int = 0

    @property
    def order_id(self) -> str:
        return self.order.id

    @property
    def customer_id(self) -> Optional[str]:
        return self.order.customer_id


@dataclass
class BatchResult:
    """Reconciled orders plus the ids of orders that could not be reconciled"""
    orders: List[ReconciledOrder] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.orders)


def line_value(line: LineItem) -> float:
    """Ordered ex-tax value of a line"""
    if line.line_total is not None:
        return to_money(line.line_total)
    return to_money(line.unit_price) * to_quantity(line.quantity)


def kept_quantity(line: LineItem) -> float:
    return max(0.0, to_quantity(line.quantity) - to_quantity(line.refunded_quantity))


def unit_value(line: LineItem) -> float:
    """Per-unit ex-tax value, from the line total when one is recorded"""
    if line.line_total is not None:
        return to_money(line.line_total) / max(1.0, to_quantity(line.quantity))
    return to_money(line.unit_price)


def kept_value(line: LineItem) -> float:
    return unit_value(line) * kept_quantity(line)


def line_sum(lines: Iterable[LineItem]) -> float:
    return max(0.0, sum(line_value(line) for line in lines))


def refund_total(order: Order) -> float:
    """Aggregated monetary refund; detailed records only when no aggregate was stored"""
    aggregated = to_optional_money(order.refunded_net)
    if aggregated is not None:
        return aggregated
    return sum(to_money(refund.net_amount) for refund in order.refunds)


def refund_tax_total(order: Order) -> float:
    aggregated = to_optional_money(order.refunded_tax)
    if aggregated is not None:
        return aggregated
    return sum(to_money(refund.tax_amount) for refund in order.refunds)


class OrderReconciler:
    """
    Pure, deterministic order reconciler.

    Example:
        reconciler = OrderReconciler()
        result = reconciler.reconcile(order, unit_costs={"v1": 4.5})
        result.net_ex, result.profit
    """

    def __init__(self, tolerance: Optional[float] = None):
        settings = get_settings().reconciliation
        self.tolerance = tolerance if tolerance is not None else settings.tolerance

    def _baseline(self, order: Order, lines: List[LineItem]) -> Tuple[float, float, float, bool]:
        """Returns (net, gross, discounts, subtotal_matched)"""
        subtotal = to_money(first_present(order.current_subtotal, order.subtotal))
        discounts = max(0.0, to_money(first_present(order.current_discounts, order.discounts)))
        gross_from_lines = line_sum(lines)

        if subtotal and approx_equal(subtotal, gross_from_lines, self.tolerance):
            net = max(0.0, subtotal)
            return net, net + discounts, discounts, True

        net = max(0.0, gross_from_lines - discounts)
        return net, gross_from_lines, discounts, False

    def revenue(self, order: Order, lines: Optional[List[LineItem]] = None) -> Tuple[float, float, float, RevenuePath, bool]:
        """Returns (net_ex, gross_ex, discounts_used, path, subtotal_matched)"""
        lines = list(order.line_items if lines is None else lines)
        net_base, gross_base, discounts, matched = self._baseline(order, lines)

        refunded = refund_total(order)
        if refunded > 0:
            return (
                max(0.0, net_base - refunded),
                max(0.0, gross_base - refunded),
                discounts,
                RevenuePath.REFUND,
                matched,
            )

        gross_from_lines = line_sum(lines)
        exchanged = any(to_quantity(line.refunded_quantity) > 0 for line in lines)
        if exchanged and gross_from_lines > 0:
            kept_sum = max(0.0, sum(kept_value(line) for line in lines))
            ratio = min(1.0, max(0.0, kept_sum / gross_from_lines))
            effective_discount = discounts * ratio
            return (
                max(0.0, kept_sum - effective_discount),
                kept_sum,
                effective_discount,
                RevenuePath.EXCHANGE,
                matched,
            )

        return net_base, gross_base, discounts, RevenuePath.BASELINE, matched

    def cost(self, lines: Iterable[LineItem], unit_costs: Mapping[str, Optional[float]]) -> Tuple[float, int]:
        """Cost of kept quantities; returns (cost, lines_with_unknown_cost)"""
        total = 0.0
        unknown = 0
        for line in lines:
            if not line.variant_id:
                unknown += 1
                continue
            unit_cost = unit_costs.get(str(line.variant_id))
            if unit_cost is None:
                unknown += 1
                continue
            total += max(0.0, unit_cost) * kept_quantity(line)
        return total, unknown

    def reconcile(
        self,
        order: Order,
        unit_costs: Optional[Mapping[str, Optional[float]]] = None,
    ) -> ReconciledOrder:
        """
        Reconcile one order.

        Missing fields read as zero or absent. Raises ValueError or
        TypeError only for malformed field values.
        """
        lines = list(order.line_items)
        net_ex, gross_ex, discounts_used, path, matched = self.revenue(order, lines)
        cost, unknown_cost_lines = self.cost(lines, unit_costs or {})

        taxes = to_money(first_present(order.current_taxes, order.taxes))
        gross_inc = gross_ex + max(0.0, taxes - refund_tax_total(order))

        return ReconciledOrder(
            order=order,
            net_ex=net_ex,
            gross_ex=gross_ex,
            gross_inc=gross_inc,
            discounts_used=discounts_used,
            cost=cost,
            profit=max(0.0, net_ex - cost),
            path=path,
            subtotal_matched=matched,
            unknown_cost_lines=unknown_cost_lines,
        )

    def reconcile_batch(
        self,
        orders: Iterable[Order],
        unit_costs: Optional[Mapping[str, Optional[float]]] = None,
    ) -> BatchResult:
        """
        Reconcile many orders, isolating per-order faults.

        A malformed order is logged and listed in BatchResult.skipped;
        the remaining orders are still reconciled.
        """
        result = BatchResult()
        costs: Dict[str, Optional[float]] = dict(unit_costs or {})

        for order in orders:
            try:
                result.orders.append(self.reconcile(order, costs))
            except (ValueError, TypeError, ArithmeticError) as e:
                ORDERS_RECONCILED.labels(outcome="skipped").inc()
                logger.warning(
                    "Order reconciliation failed, skipping",
                    order_id=order.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result.skipped.append(order.id)
                continue
            ORDERS_RECONCILED.labels(outcome="ok").inc()

        return result


def variant_ids(orders: Iterable[Order]) -> List[str]:
    """Distinct variant ids referenced by the orders' lines"""
    seen = {str(line.variant_id) for order in orders for line in order.line_items if line.variant_id}
    return sorted(seen)
