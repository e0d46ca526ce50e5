"""Purchase transaction manager.

A purchase is a supplier bill (master) with received lines (details). Every
line adds its quantity to the product's ledger ``inward`` total and to the
product's stock counter. Updating or deleting a purchase first reverses each
stored line, so the ledger only ever reflects the lines currently on file.
Each operation runs as one :func:`~stockbook.core_logic.transaction`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date as date_type
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from . import catalog, core_logic, identifiers, ledger, log
from .constants import IdentifierStream, SheetName
from .data_manager import ProductRow, PurchaseDetailRow, PurchaseMasterRow


@dataclass(frozen=True)
class PurchaseLine:
    """One item on a supplier bill."""

    product_id: str
    quantity: Decimal
    rate: Decimal
    product_name: Optional[str] = None


@dataclass(frozen=True)
class PurchaseCommand:
    """User intent for recording or replacing a supplier bill."""

    supplier_id: str
    supplier_name: str
    bill_no: str
    date: date_type
    lines: Tuple[PurchaseLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PurchaseDocument:
    master: PurchaseMasterRow
    details: List[PurchaseDetailRow]


def _validate(
    context: core_logic.RuntimeContext,
    command: PurchaseCommand,
    *,
    exclude_purchase_id: Optional[str] = None,
) -> Dict[str, ProductRow]:
    """Check a purchase payload and return the products its lines refer to."""

    core_logic.require_text("Supplier", command.supplier_id)
    core_logic.require_text("Supplier name", command.supplier_name)
    bill_no = core_logic.require_text("Bill number", command.bill_no)
    if command.date is None:
        raise core_logic.ValidationError("Date is required")
    if not command.lines:
        raise core_logic.ValidationError("A purchase needs at least one item")

    if core_logic.find_record(context, SheetName.SUPPLIERS, command.supplier_id) is None:
        log.warning("Purchase rejected: unknown supplier '%s'", command.supplier_id)
        raise core_logic.ValidationError(f"Invalid supplier: {command.supplier_id}")

    clash = core_logic.filter_records(
        context,
        SheetName.PURCHASE_MASTERS,
        lambda master: master.bill_no == bill_no
        and master.supplier_id != command.supplier_id
        and master.purchase_id != exclude_purchase_id,
    )
    if clash:
        log.warning("Purchase rejected: bill '%s' belongs to supplier '%s'", bill_no, clash[0].supplier_id)
        raise core_logic.ConflictError(
            f"Bill number {bill_no} already exists for another supplier.", existing=clash[0]
        )

    products: Dict[str, ProductRow] = {}
    for position, line in enumerate(command.lines, start=1):
        product = core_logic.find_record(context, SheetName.PRODUCTS, line.product_id)
        if product is None:
            raise core_logic.ValidationError(f"Product not found for item {position}")
        core_logic.require_positive_quantity(line.quantity, field_name=f"Quantity of item {position}")
        core_logic.require_nonnegative_money(line.rate, field_name=f"Rate of item {position}")
        products[line.product_id] = product
    return products


def total_amount(lines: Sequence[PurchaseLine]) -> Decimal:
    return sum((line.quantity * line.rate for line in lines), Decimal("0"))


def _apply_lines(
    context: core_logic.RuntimeContext,
    purchase_id: str,
    lines: Sequence[PurchaseLine],
    products: Dict[str, ProductRow],
) -> None:
    for line in lines:
        detail = PurchaseDetailRow(
            detail_id=core_logic.generate_record_id("PD"),
            purchase_id=purchase_id,
            product_id=line.product_id,
            product_name=line.product_name or products[line.product_id].product_name,
            quantity=line.quantity,
            rate=line.rate,
            amount=line.quantity * line.rate,
        )
        core_logic.add_record(context, SheetName.PURCHASE_DETAILS, detail)
        catalog.adjust_stock(context, line.product_id, line.quantity)
        ledger.receive(context, line.product_id, line.quantity)


def _revert_lines(context: core_logic.RuntimeContext, purchase_id: str) -> int:
    details = list_details(context, purchase_id)
    for detail in details:
        ledger.reverse_receive(context, detail.product_id, detail.quantity)
        catalog.adjust_stock(context, detail.product_id, -detail.quantity)
        core_logic.remove_record(context, SheetName.PURCHASE_DETAILS, detail.detail_id)
    return len(details)


def get_purchase_master(context: core_logic.RuntimeContext, purchase_id: str) -> PurchaseMasterRow:
    return core_logic.get_record(context, SheetName.PURCHASE_MASTERS, purchase_id, label="Purchase")


def list_details(context: core_logic.RuntimeContext, purchase_id: str) -> List[PurchaseDetailRow]:
    return core_logic.filter_records(
        context, SheetName.PURCHASE_DETAILS, lambda detail: detail.purchase_id == purchase_id
    )


def get_purchase(context: core_logic.RuntimeContext, purchase_id: str) -> PurchaseDocument:
    master = get_purchase_master(context, purchase_id)
    return PurchaseDocument(master=master, details=list_details(context, purchase_id))


def list_purchases(context: core_logic.RuntimeContext) -> List[PurchaseDocument]:
    """Return every purchase with its lines, newest first."""

    masters = reversed(core_logic.list_records(context, SheetName.PURCHASE_MASTERS))
    return [PurchaseDocument(master=master, details=list_details(context, master.purchase_id)) for master in masters]


def supplier_bills(context: core_logic.RuntimeContext, supplier_id: str) -> List[Dict[str, str]]:
    """Bill numbers and dates already recorded for a supplier, newest first."""

    masters = core_logic.filter_records(
        context, SheetName.PURCHASE_MASTERS, lambda master: master.supplier_id == supplier_id
    )
    return [{"bill_no": master.bill_no, "date": master.date} for master in reversed(masters)]


def next_purchase_bill_no(context: core_logic.RuntimeContext) -> str:
    """Suggest the next ``BILL-0000001`` style supplier bill number."""

    return identifiers.next_id(context, IdentifierStream.PURCHASE_BILL)


def create_purchase(context: core_logic.RuntimeContext, command: PurchaseCommand) -> PurchaseMasterRow:
    """Record a supplier bill and receive its lines into stock.

    Raises:
        ValidationError: For missing fields, an unknown supplier or product,
            or a non-positive quantity.
        ConflictError: If the bill number is already used by another supplier.
    """

    with core_logic.transaction(context, f"create purchase {command.bill_no}"):
        products = _validate(context, command)
        master = PurchaseMasterRow(
            purchase_id=core_logic.generate_record_id("PM"),
            bill_no=command.bill_no.strip(),
            date=command.date.isoformat(),
            supplier_id=command.supplier_id,
            supplier_name=command.supplier_name.strip(),
            total_amount=total_amount(command.lines),
            created_at=core_logic.now_iso(),
        )
        core_logic.add_record(context, SheetName.PURCHASE_MASTERS, master)
        _apply_lines(context, master.purchase_id, command.lines, products)
    log.info(
        "Recorded purchase '%s' bill '%s' from '%s' (%d line(s), total=%s)",
        master.purchase_id,
        master.bill_no,
        master.supplier_name,
        len(command.lines),
        master.total_amount,
    )
    return master


def update_purchase(
    context: core_logic.RuntimeContext, purchase_id: str, command: PurchaseCommand
) -> PurchaseMasterRow:
    """Replace the header and lines of an existing purchase.

    Every stored line is reversed out of the ledger before the new lines are
    received, under the same purchase id.
    """

    get_purchase_master(context, purchase_id)
    with core_logic.transaction(context, f"update purchase {purchase_id}"):
        products = _validate(context, command, exclude_purchase_id=purchase_id)
        reverted = _revert_lines(context, purchase_id)
        master = core_logic.change_record(
            context,
            SheetName.PURCHASE_MASTERS,
            purchase_id,
            BillNo=command.bill_no.strip(),
            Date=command.date.isoformat(),
            SupplierID=command.supplier_id,
            SupplierName=command.supplier_name.strip(),
            TotalAmount=total_amount(command.lines),
        )
        _apply_lines(context, purchase_id, command.lines, products)
    log.info(
        "Updated purchase '%s': reverted %d line(s), applied %d line(s)",
        purchase_id,
        reverted,
        len(command.lines),
    )
    return master


def delete_purchase(context: core_logic.RuntimeContext, purchase_id: str) -> None:
    """Reverse a purchase's lines out of stock and delete it."""

    master = get_purchase_master(context, purchase_id)
    with core_logic.transaction(context, f"delete purchase {purchase_id}"):
        reverted = _revert_lines(context, purchase_id)
        core_logic.remove_record(context, SheetName.PURCHASE_MASTERS, purchase_id)
    log.info("Deleted purchase '%s' bill '%s' (%d line(s) rolled back)", purchase_id, master.bill_no, reverted)
