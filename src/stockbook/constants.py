"""Enumerations and schemas shared across Stockbook modules.

Centralises domain constants so that the data access layer (DAL), business
logic layer (BLL), and the CLI rely on a single source of truth for sheet
layouts, identifier streams, and invoice vocabularies.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Mapping, Sequence


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "2.0.0"

DEFAULT_GST_RATE = Decimal("18")


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    STOCK = "Stock"
    SUPPLIERS = "Suppliers"
    CUSTOMERS = "Customers"
    PURCHASE_MASTERS = "PurchaseMasters"
    PURCHASE_DETAILS = "PurchaseDetails"
    SALES_MASTERS = "SalesMasters"
    SALES_DETAILS = "SalesDetails"
    INVOICES = "Invoices"


class PaymentStatus(str, Enum):
    """Settlement state of an invoice."""

    PAID = "paid"
    PENDING = "pending"
    PARTIAL = "partial"


class PaymentMethod(str, Enum):
    """Tender recorded on an invoice."""

    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    BANK_TRANSFER = "bank-transfer"


class InvoiceStatus(str, Enum):
    """Coarse lifecycle state of an invoice."""

    GENERATED = "Generated"
    PAID = "Paid"
    PENDING = "Pending"
    CANCELLED = "Cancelled"


class IdentifierStream(Enum):
    """Human-facing code streams: ``(sheet, column, prefix, pattern, width)``."""

    SALES_BILL = (SheetName.SALES_MASTERS, "BillNo", "BILL", r"BILL(\d+)", 4)
    PURCHASE_BILL = (SheetName.PURCHASE_MASTERS, "BillNo", "BILL-", r"BILL-(\d+)", 7)
    INVOICE = (SheetName.INVOICES, "InvoiceNumber", "INV-", r"INV-(\d+)", 7)

    def __init__(self, sheet: SheetName, column: str, prefix: str, pattern: str, width: int) -> None:
        self.sheet = sheet
        self.column = column
        self.prefix = prefix
        self.pattern = pattern
        self.width = width


# Column layout of every worksheet. The first column is the record key.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: [
        "ProductID",
        "ProductName",
        "Description",
        "Price",
        "Stock",
        "CreatedAt",
    ],
    SheetName.STOCK.value: [
        "StockID",
        "ProductID",
        "OpeningStock",
        "Inward",
        "Outward",
        "ClosingStock",
        "UpdatedAt",
    ],
    SheetName.SUPPLIERS.value: [
        "SupplierID",
        "SupplierName",
        "Contact",
        "Email",
        "Address",
        "CreatedAt",
    ],
    SheetName.CUSTOMERS.value: [
        "CustomerID",
        "CustomerName",
        "Contact",
        "Email",
        "Address",
        "CreatedAt",
    ],
    SheetName.PURCHASE_MASTERS.value: [
        "PurchaseID",
        "BillNo",
        "Date",
        "SupplierID",
        "SupplierName",
        "TotalAmount",
        "CreatedAt",
    ],
    SheetName.PURCHASE_DETAILS.value: [
        "DetailID",
        "PurchaseID",
        "ProductID",
        "ProductName",
        "Quantity",
        "Rate",
        "Amount",
    ],
    SheetName.SALES_MASTERS.value: [
        "SaleID",
        "BillNo",
        "ClientName",
        "Date",
        "Amount",
        "InvoiceID",
        "CreatedAt",
    ],
    SheetName.SALES_DETAILS.value: [
        "DetailID",
        "SaleID",
        "SrNo",
        "ProductID",
        "Quantity",
        "Rate",
        "Amount",
    ],
    SheetName.INVOICES.value: [
        "InvoiceID",
        "InvoiceNumber",
        "SaleID",
        "Date",
        "ClientName",
        "Subtotal",
        "GstRate",
        "GstAmount",
        "Discount",
        "TotalAmount",
        "Status",
        "PaymentMethod",
        "PaymentStatus",
        "CreatedAt",
    ],
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_GST_RATE",
    "SheetName",
    "PaymentStatus",
    "PaymentMethod",
    "InvoiceStatus",
    "IdentifierStream",
    "SHEET_COLUMNS",
]
