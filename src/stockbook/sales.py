"""Sales transaction manager.

A sale may only issue stock the ledger actually holds. The sufficiency gate
runs before anything is written on creation. On update it runs after the
sale's own prior lines have been reversed, so the check sees a clean
baseline. A rejected sale leaves the ledger, the catalog and the sale records
exactly as they were.

Lifecycle: ``Draft`` (the command) → ``Active`` (persisted, stock issued) →
optionally ``Invoiced`` → ``Deleted`` (stock restored).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date as date_type
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from . import catalog, core_logic, identifiers, ledger, log
from .constants import IdentifierStream, SheetName
from .data_manager import ProductRow, SalesDetailRow, SalesMasterRow


@dataclass(frozen=True)
class SaleLine:
    product_id: str
    quantity: Decimal
    rate: Decimal


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording or replacing a sale."""

    client_name: str
    lines: Tuple[SaleLine, ...] = field(default_factory=tuple)
    date: Optional[date_type] = None
    bill_no: Optional[str] = None


@dataclass(frozen=True)
class SaleDocument:
    master: SalesMasterRow
    details: List[SalesDetailRow]


def _validate_lines(context: core_logic.RuntimeContext, command: SaleCommand) -> Dict[str, ProductRow]:
    core_logic.require_text("Client name", command.client_name)
    if not command.lines:
        raise core_logic.ValidationError("A sale needs at least one item")

    products: Dict[str, ProductRow] = {}
    for position, line in enumerate(command.lines, start=1):
        product = core_logic.find_record(context, SheetName.PRODUCTS, line.product_id)
        if product is None:
            log.warning("Sale rejected: unknown product '%s' on item %d", line.product_id, position)
            raise core_logic.ValidationError(f"Product not found for item {position}")
        core_logic.require_positive_quantity(line.quantity, field_name=f"Quantity of item {position}")
        core_logic.require_nonnegative_money(line.rate, field_name=f"Rate of item {position}")
        products[line.product_id] = product
    return products


def requested_quantities(lines: Sequence[SaleLine]) -> Dict[str, Decimal]:
    """Total quantity asked for per product, in first-seen order."""

    totals: Dict[str, Decimal] = {}
    for line in lines:
        totals[line.product_id] = totals.get(line.product_id, Decimal("0")) + line.quantity
    return totals


def _require_stock(
    context: core_logic.RuntimeContext,
    lines: Sequence[SaleLine],
    products: Dict[str, ProductRow],
) -> None:
    for product_id, required in requested_quantities(lines).items():
        available = ledger.available(context, product_id)
        if available < required:
            name = products[product_id].product_name
            log.warning("Sale rejected: '%s' has %s available, %s required", name, available, required)
            raise core_logic.InsufficientStockError(name, available, required)


def sale_amount(lines: Sequence[SaleLine]) -> Decimal:
    return sum((line.quantity * line.rate for line in lines), Decimal("0"))


def _apply_lines(context: core_logic.RuntimeContext, sale_id: str, lines: Sequence[SaleLine]) -> None:
    for sr_no, line in enumerate(lines, start=1):
        detail = SalesDetailRow(
            detail_id=core_logic.generate_record_id("SD"),
            sale_id=sale_id,
            sr_no=sr_no,
            product_id=line.product_id,
            quantity=line.quantity,
            rate=line.rate,
            amount=line.quantity * line.rate,
        )
        core_logic.add_record(context, SheetName.SALES_DETAILS, detail)
        ledger.issue(context, line.product_id, line.quantity)
        catalog.adjust_stock(context, line.product_id, -line.quantity)


def _revert_lines(context: core_logic.RuntimeContext, sale_id: str) -> int:
    details = list_details(context, sale_id)
    for detail in details:
        ledger.reverse_issue(context, detail.product_id, detail.quantity)
        catalog.adjust_stock(context, detail.product_id, detail.quantity)
        core_logic.remove_record(context, SheetName.SALES_DETAILS, detail.detail_id)
    return len(details)


def _resolve_date(candidate: Optional[date_type]) -> str:
    return candidate.isoformat() if candidate is not None else core_logic.today_iso()


def get_sale_master(context: core_logic.RuntimeContext, sale_id: str) -> SalesMasterRow:
    return core_logic.get_record(context, SheetName.SALES_MASTERS, sale_id, label="Sale")


def list_details(context: core_logic.RuntimeContext, sale_id: str) -> List[SalesDetailRow]:
    details = core_logic.filter_records(context, SheetName.SALES_DETAILS, lambda detail: detail.sale_id == sale_id)
    return sorted(details, key=lambda detail: detail.sr_no)


def get_sale(context: core_logic.RuntimeContext, sale_id: str) -> SaleDocument:
    return SaleDocument(master=get_sale_master(context, sale_id), details=list_details(context, sale_id))


def list_sales(context: core_logic.RuntimeContext) -> List[SaleDocument]:
    """Return every sale with its lines, latest sale date first."""

    masters = sorted(
        core_logic.list_records(context, SheetName.SALES_MASTERS),
        key=lambda master: (master.date, master.created_at),
        reverse=True,
    )
    return [SaleDocument(master=master, details=list_details(context, master.sale_id)) for master in masters]


def create_sale(context: core_logic.RuntimeContext, command: SaleCommand) -> SalesMasterRow:
    """Record a sale and issue its lines from stock.

    ``bill_no`` is taken from the command when given, otherwise the next
    ``BILL0001`` style number is assigned.

    Raises:
        ValidationError: For a blank client, no lines, an unknown product, or
            a bad quantity or rate.
        InsufficientStockError: If any product's closing stock is below the
            total quantity requested for it.
        ConflictError: If a supplied bill number is already taken.
    """

    with core_logic.transaction(context, f"create sale for {command.client_name}"):
        products = _validate_lines(context, command)
        _require_stock(context, command.lines, products)

        bill_no = command.bill_no.strip() if command.bill_no else identifiers.next_id(
            context, IdentifierStream.SALES_BILL
        )
        taken = core_logic.filter_records(context, SheetName.SALES_MASTERS, lambda master: master.bill_no == bill_no)
        if taken:
            raise core_logic.ConflictError(f"Bill number {bill_no} already exists.", existing=taken[0])

        master = SalesMasterRow(
            sale_id=core_logic.generate_record_id("SM"),
            bill_no=bill_no,
            client_name=command.client_name.strip(),
            date=_resolve_date(command.date),
            amount=sale_amount(command.lines),
            invoice_id=None,
            created_at=core_logic.now_iso(),
        )
        core_logic.add_record(context, SheetName.SALES_MASTERS, master)
        _apply_lines(context, master.sale_id, command.lines)
    log.info(
        "Recorded sale '%s' bill '%s' for '%s' (%d line(s), amount=%s)",
        master.sale_id,
        master.bill_no,
        master.client_name,
        len(command.lines),
        master.amount,
    )
    return master


def update_sale(context: core_logic.RuntimeContext, sale_id: str, command: SaleCommand) -> SalesMasterRow:
    """Replace the client, date and lines of a sale, keeping its bill number.

    Prior lines are reversed before the new lines are checked and issued, so
    shrinking a sale from 5 to 3 units nets to an issue of 3.
    """

    existing = get_sale_master(context, sale_id)
    with core_logic.transaction(context, f"update sale {sale_id}"):
        products = _validate_lines(context, command)
        reverted = _revert_lines(context, sale_id)
        _require_stock(context, command.lines, products)
        master = core_logic.change_record(
            context,
            SheetName.SALES_MASTERS,
            sale_id,
            ClientName=command.client_name.strip(),
            Date=command.date.isoformat() if command.date else existing.date,
            Amount=sale_amount(command.lines),
        )
        _apply_lines(context, sale_id, command.lines)
    log.info(
        "Updated sale '%s' bill '%s': reverted %d line(s), applied %d line(s)",
        sale_id,
        master.bill_no,
        reverted,
        len(command.lines),
    )
    return master


def delete_sale(context: core_logic.RuntimeContext, sale_id: str) -> None:
    """Return a sale's stock and delete it, along with any invoice it carries."""

    master = get_sale_master(context, sale_id)
    with core_logic.transaction(context, f"delete sale {sale_id}"):
        reverted = _revert_lines(context, sale_id)
        if master.invoice_id and core_logic.find_record(context, SheetName.INVOICES, master.invoice_id):
            core_logic.remove_record(context, SheetName.INVOICES, master.invoice_id)
            log.info("Deleted invoice '%s' attached to sale '%s'", master.invoice_id, sale_id)
        core_logic.remove_record(context, SheetName.SALES_MASTERS, sale_id)
    log.info("Deleted sale '%s' bill '%s' (%d line(s) rolled back)", sale_id, master.bill_no, reverted)
