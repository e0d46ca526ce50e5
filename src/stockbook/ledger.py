"""Per-product stock ledger.

Each product owns one ``Stock`` row holding cumulative receipts (``inward``),
cumulative issues (``outward``) and the opening balance. ``closing_stock`` is
never assigned on its own: every mutation recomputes it as
``opening + inward - outward`` from the counters it just wrote.

All mutators journal their writes and must run inside
:func:`stockbook.core_logic.transaction`.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from . import core_logic, log
from .constants import SheetName
from .data_manager import StockRow

ZERO = Decimal("0")


def closing_of(opening: Decimal, inward: Decimal, outward: Decimal) -> Decimal:
    return opening + inward - outward


def find(context: core_logic.RuntimeContext, product_id: str) -> Optional[StockRow]:
    """Return the ledger row of ``product_id`` or ``None``."""

    matches = core_logic.filter_records(context, SheetName.STOCK, lambda row: row.product_id == product_id)
    return matches[0] if matches else None


def ensure(context: core_logic.RuntimeContext, product_id: str, *, opening_stock: Decimal = ZERO) -> StockRow:
    """Return the ledger row of ``product_id``, creating it when absent."""

    existing = find(context, product_id)
    if existing is not None:
        return existing

    row = StockRow(
        stock_id=core_logic.generate_record_id("K"),
        product_id=product_id,
        opening_stock=opening_stock,
        inward=ZERO,
        outward=ZERO,
        closing_stock=opening_stock,
        updated_at=core_logic.now_iso(),
    )
    core_logic.add_record(context, SheetName.STOCK, row)
    log.info("Opened stock ledger for product '%s' (opening=%s)", product_id, opening_stock)
    return row


def _write(
    context: core_logic.RuntimeContext,
    row: StockRow,
    *,
    opening: Optional[Decimal] = None,
    inward: Optional[Decimal] = None,
    outward: Optional[Decimal] = None,
) -> StockRow:
    opening = row.opening_stock if opening is None else opening
    inward = row.inward if inward is None else inward
    outward = row.outward if outward is None else outward
    closing = closing_of(opening, inward, outward)
    if closing < ZERO:
        log.warning("Closing stock of product '%s' is negative (%s)", row.product_id, closing)
    return core_logic.change_record(
        context,
        SheetName.STOCK,
        row.stock_id,
        OpeningStock=opening,
        Inward=inward,
        Outward=outward,
        ClosingStock=closing,
        UpdatedAt=core_logic.now_iso(),
    )


def receive(context: core_logic.RuntimeContext, product_id: str, quantity: Decimal) -> StockRow:
    """Book ``quantity`` units received against ``product_id``."""

    row = ensure(context, product_id)
    return _write(context, row, inward=row.inward + quantity)


def issue(context: core_logic.RuntimeContext, product_id: str, quantity: Decimal) -> StockRow:
    """Book ``quantity`` units issued; sufficiency is the caller's concern."""

    row = ensure(context, product_id)
    return _write(context, row, outward=row.outward + quantity)


def reverse_receive(context: core_logic.RuntimeContext, product_id: str, quantity: Decimal) -> StockRow:
    """Undo a prior :func:`receive` of ``quantity``."""

    row = ensure(context, product_id)
    return _write(context, row, inward=row.inward - quantity)


def reverse_issue(context: core_logic.RuntimeContext, product_id: str, quantity: Decimal) -> StockRow:
    """Undo a prior :func:`issue`; ``outward`` never drops below zero."""

    row = ensure(context, product_id)
    return _write(context, row, outward=max(ZERO, row.outward - quantity))


def set_opening(context: core_logic.RuntimeContext, product_id: str, closing_stock: Decimal) -> StockRow:
    """Restate the opening balance so that closing equals ``closing_stock``.

    Used when stock is corrected by hand on the catalog; movement totals are
    preserved.
    """

    row = find(context, product_id)
    if row is None:
        return ensure(context, product_id, opening_stock=closing_stock)
    return _write(context, row, opening=closing_stock - row.inward + row.outward)


def remove(context: core_logic.RuntimeContext, product_id: str) -> None:
    row = find(context, product_id)
    if row is not None:
        core_logic.remove_record(context, SheetName.STOCK, row.stock_id)


def available(context: core_logic.RuntimeContext, product_id: str) -> Decimal:
    """Return the closing stock of ``product_id`` (zero without a ledger row)."""

    row = find(context, product_id)
    return row.closing_stock if row is not None else ZERO


def list_stock(context: core_logic.RuntimeContext) -> List[Dict[str, Any]]:
    """Return every ledger row joined with its product name and description."""

    products = {product.product_id: product for product in core_logic.list_records(context, SheetName.PRODUCTS)}
    entries = []
    for row in core_logic.list_records(context, SheetName.STOCK):
        product = products.get(row.product_id)
        entries.append(
            {
                "stock_id": row.stock_id,
                "product_id": row.product_id,
                "product_name": product.product_name if product else "Unknown",
                "description": product.description if product else "",
                "opening_stock": row.opening_stock,
                "inward": row.inward,
                "outward": row.outward,
                "closing_stock": row.closing_stock,
            }
        )
    return entries
