"""Money and discount arithmetic for sales.

Everything here is pure: the functions take cart lines and adjustments and
return :class:`SaleTotals` without touching the workbook. The order of
operations in :func:`compute_sale_totals` is fixed (item discounts, order
discount, tax) because every downstream figure depends on it.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from .constants import AdjustmentKind


ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class Adjustment:
    """A discount or tax expressed as a percentage or as a fixed amount."""

    kind: AdjustmentKind
    value: Decimal


@dataclass(frozen=True)
class LineItem:
    """One cart line with prices snapshotted at sale time."""

    product_id: str
    quantity: int
    sale_price: Decimal
    unit_cost: Decimal
    discount: Optional[Adjustment] = None


@dataclass(frozen=True)
class SaleTotals:
    subtotal: Decimal
    item_discount_total: Decimal
    pre_tax_total: Decimal
    tax_amount: Decimal
    total: Decimal
    total_cost: Decimal
    profit: Decimal


def validate_adjustment(adjustment: Optional[Adjustment], *, label: str = "adjustment") -> None:
    """Reject adjustments that cannot be applied.

    Raises:
        ValueError: For unknown kinds, negative values, or percentages above
            100.
    """

    if adjustment is None:
        return
    if not isinstance(adjustment.kind, AdjustmentKind):
        raise ValueError(f"Unsupported {label} kind: {adjustment.kind}")
    if adjustment.value < ZERO:
        raise ValueError(f"{label.capitalize()} value must be zero or positive")
    if adjustment.kind is AdjustmentKind.PERCENTAGE and adjustment.value > HUNDRED:
        raise ValueError(f"{label.capitalize()} percentage must be between 0 and 100")


def validate_line_item(item: LineItem) -> None:
    """Check a cart line before it is priced.

    Raises:
        ValueError: If the quantity is not a positive integer, a price or cost
            is negative, or the line discount is invalid.
    """

    if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
        raise ValueError(f"Quantity for product '{item.product_id}' must be a positive integer")
    if item.sale_price < ZERO:
        raise ValueError(f"Sale price for product '{item.product_id}' must be zero or positive")
    if item.unit_cost < ZERO:
        raise ValueError(f"Unit cost for product '{item.product_id}' must be zero or positive")
    validate_adjustment(item.discount, label="discount")


def line_subtotal(item: LineItem) -> Decimal:
    return item.sale_price * item.quantity


def adjustment_amount(adjustment: Optional[Adjustment], base: Decimal) -> Decimal:
    """Return how much ``adjustment`` takes off ``base``.

    Fixed amounts are clamped to ``base`` (never below zero) so a discount can
    not push a figure negative; percentages are a share of ``base``.
    """

    if adjustment is None:
        return ZERO
    if adjustment.kind is AdjustmentKind.FIXED:
        return max(ZERO, min(adjustment.value, base))
    return base * adjustment.value / HUNDRED


def tax_amount_for(tax: Optional[Adjustment], pre_tax_total: Decimal) -> Decimal:
    """Fixed taxes contribute their literal value; percentages apply to ``pre_tax_total``."""

    if tax is None:
        return ZERO
    if tax.kind is AdjustmentKind.FIXED:
        return tax.value
    return pre_tax_total * tax.value / HUNDRED


def compute_sale_totals(
    items: Sequence[LineItem],
    order_discount: Optional[Adjustment] = None,
    tax: Optional[Adjustment] = None,
) -> SaleTotals:
    """Price a cart.

    1. ``subtotal`` is the sum of ``quantity * sale_price``.
    2. Each line discount is clamped to its line subtotal; the sum is
       ``item_discount_total``.
    3. The order discount applies to what remains after item discounts,
       giving ``pre_tax_total``.
    4. Tax is computed from ``pre_tax_total`` only and ``total`` adds it.
    5. ``total_cost`` is never discounted, and ``profit`` is
       ``pre_tax_total - total_cost`` so tax never counts as profit.

    An empty cart prices to all zeros.
    """

    subtotal = _sum(line_subtotal(item) for item in items)
    item_discount_total = _sum(adjustment_amount(item.discount, line_subtotal(item)) for item in items)
    after_item_discounts = subtotal - item_discount_total
    pre_tax_total = after_item_discounts - adjustment_amount(order_discount, after_item_discounts)
    tax_amount = tax_amount_for(tax, pre_tax_total)
    total_cost = _sum(item.unit_cost * item.quantity for item in items)

    return SaleTotals(
        subtotal=subtotal,
        item_discount_total=item_discount_total,
        pre_tax_total=pre_tax_total,
        tax_amount=tax_amount,
        total=pre_tax_total + tax_amount,
        total_cost=total_cost,
        profit=pre_tax_total - total_cost,
    )


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)
