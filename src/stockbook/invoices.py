"""Invoice generation for finalized sales.

An invoice is derived once per sale. Its subtotal is recomputed from the
sale's lines rather than copied from the sale header, GST is applied at the
configured flat rate, and an ``INV-0000001`` style number is assigned. The
sale keeps a back-reference to its invoice until the invoice is deleted.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from . import core_logic, identifiers, log, sales
from .constants import IdentifierStream, InvoiceStatus, PaymentMethod, PaymentStatus, SheetName
from .data_manager import InvoiceRow, SalesDetailRow


@dataclass(frozen=True)
class InvoiceDocument:
    invoice: InvoiceRow
    sale: sales.SaleDocument


def _parse_choice(enum_type, value, *, label: str, default):
    if value is None or value == "":
        return default
    try:
        return enum_type(value)
    except ValueError as exc:
        log.error("Invalid %s: %r", label, value)
        raise core_logic.ValidationError(f"Invalid {label}: {value}") from exc


def line_subtotal(details: List[SalesDetailRow]) -> Decimal:
    """Sum stored line amounts, falling back to ``quantity * rate``."""

    total = Decimal("0")
    for detail in details:
        total += detail.amount if detail.amount else detail.quantity * detail.rate
    return total


def gst_for(subtotal: Decimal, gst_rate: Decimal) -> Decimal:
    return core_logic.money(subtotal * gst_rate / Decimal("100"))


def find_invoice_for_sale(context: core_logic.RuntimeContext, sale_id: str) -> Optional[InvoiceRow]:
    matches = core_logic.filter_records(context, SheetName.INVOICES, lambda invoice: invoice.sale_id == sale_id)
    return matches[0] if matches else None


def get_invoice_row(context: core_logic.RuntimeContext, invoice_id: str) -> InvoiceRow:
    return core_logic.get_record(context, SheetName.INVOICES, invoice_id, label="Invoice")


def get_invoice(context: core_logic.RuntimeContext, invoice_id: str) -> InvoiceDocument:
    """Return an invoice together with its sale and the sale's lines.

    Raises:
        MissingReferenceError: If the invoice or its sale is unknown.
    """

    invoice = get_invoice_row(context, invoice_id)
    return InvoiceDocument(invoice=invoice, sale=sales.get_sale(context, invoice.sale_id))


def list_invoices(context: core_logic.RuntimeContext) -> List[InvoiceRow]:
    return list(reversed(core_logic.list_records(context, SheetName.INVOICES)))


def generate_invoice(
    context: core_logic.RuntimeContext,
    sale_id: str,
    *,
    payment_status: Optional[str] = None,
    payment_method: Optional[str] = None,
    discount: Decimal = Decimal("0"),
) -> InvoiceRow:
    """Create the invoice of a sale and link it back to the sale.

    Raises:
        MissingReferenceError: If ``sale_id`` is unknown.
        ConflictError: If the sale already has an invoice; the existing row is
            available as ``error.existing``.
        ValidationError: For an unknown payment status or method, or a
            discount that is negative or larger than subtotal plus GST.
    """

    status = _parse_choice(PaymentStatus, payment_status, label="payment status", default=PaymentStatus.PENDING)
    method = _parse_choice(PaymentMethod, payment_method, label="payment method", default=PaymentMethod.CASH)
    core_logic.require_nonnegative_money(discount, field_name="Discount")

    with core_logic.transaction(context, f"generate invoice for sale {sale_id}"):
        sale = sales.get_sale(context, sale_id)
        existing = find_invoice_for_sale(context, sale_id)
        if existing is not None:
            log.warning("Invoice already exists for sale '%s': %s", sale_id, existing.invoice_number)
            raise core_logic.ConflictError("Invoice already exists for this sale.", existing=existing)

        gst_rate = context.settings.gst_rate
        subtotal = line_subtotal(sale.details)
        gst_amount = gst_for(subtotal, gst_rate)
        if discount > subtotal + gst_amount:
            log.error("Discount %s exceeds gross amount %s of sale '%s'", discount, subtotal + gst_amount, sale_id)
            raise core_logic.ValidationError(
                f"Discount cannot exceed the gross amount of {subtotal + gst_amount}"
            )
        invoice = InvoiceRow(
            invoice_id=core_logic.generate_record_id("I"),
            invoice_number=identifiers.next_id(context, IdentifierStream.INVOICE),
            sale_id=sale_id,
            date=sale.master.date or core_logic.today_iso(),
            client_name=sale.master.client_name or "Unknown Customer",
            subtotal=subtotal,
            gst_rate=gst_rate,
            gst_amount=gst_amount,
            discount=discount,
            total_amount=subtotal + gst_amount - discount,
            status=InvoiceStatus.GENERATED.value,
            payment_method=method.value,
            payment_status=status.value,
            created_at=core_logic.now_iso(),
        )
        core_logic.add_record(context, SheetName.INVOICES, invoice)
        core_logic.change_record(context, SheetName.SALES_MASTERS, sale_id, InvoiceID=invoice.invoice_id)
    log.info(
        "Generated invoice %s for sale '%s' (subtotal=%s gst=%s total=%s)",
        invoice.invoice_number,
        sale_id,
        invoice.subtotal,
        invoice.gst_amount,
        invoice.total_amount,
    )
    return invoice


def update_payment_status(context: core_logic.RuntimeContext, invoice_id: str, payment_status: str) -> InvoiceRow:
    """Record a new payment status; the invoice status follows as Paid or Pending."""

    if not payment_status:
        raise core_logic.ValidationError("Payment status is required")
    status = _parse_choice(PaymentStatus, payment_status, label="payment status", default=None)
    get_invoice_row(context, invoice_id)
    coarse = InvoiceStatus.PAID if status is PaymentStatus.PAID else InvoiceStatus.PENDING
    with core_logic.transaction(context, f"update payment status of {invoice_id}"):
        invoice = core_logic.change_record(
            context,
            SheetName.INVOICES,
            invoice_id,
            PaymentStatus=status.value,
            Status=coarse.value,
        )
    log.info("Invoice %s payment status set to %s", invoice.invoice_number, status.value)
    return invoice


def delete_invoice(context: core_logic.RuntimeContext, invoice_id: str) -> None:
    """Clear the sale's back-reference, then delete the invoice."""

    invoice = get_invoice_row(context, invoice_id)
    with core_logic.transaction(context, f"delete invoice {invoice_id}"):
        if core_logic.find_record(context, SheetName.SALES_MASTERS, invoice.sale_id) is not None:
            core_logic.change_record(context, SheetName.SALES_MASTERS, invoice.sale_id, InvoiceID=None)
        core_logic.remove_record(context, SheetName.INVOICES, invoice_id)
    log.info("Deleted invoice %s of sale '%s'", invoice.invoice_number, invoice.sale_id)
