"""Data access layer for Stockbook.

This module provides low-level helpers that read from and write to the
master workbook. Each worksheet behaves like a document collection whose
first column is the record key. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Record operations: iterating typed rows, appending, locating, updating
   selected fields, deleting, and re-inserting rows at a known position so
   that callers can compensate a failed multi-step write.
"""

from __future__ import annotations

import configparser
from dataclasses import astuple, dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
import openpyxl

from .constants import DEFAULT_GST_RATE, SHEET_COLUMNS, SheetName


CONFIG_FILE_NAME = "config.ini"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    business_name: str
    schema_version: str
    gst_rate: Decimal = DEFAULT_GST_RATE


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    product_name: str
    description: str
    price: Decimal
    stock: Decimal
    created_at: str


@dataclass(frozen=True)
class StockRow:
    """Ledger totals for one product, from the ``Stock`` sheet."""

    stock_id: str
    product_id: str
    opening_stock: Decimal
    inward: Decimal
    outward: Decimal
    closing_stock: Decimal
    updated_at: str


@dataclass(frozen=True)
class SupplierRow:
    supplier_id: str
    supplier_name: str
    contact: Optional[str]
    email: Optional[str]
    address: Optional[str]
    created_at: str


@dataclass(frozen=True)
class CustomerRow:
    customer_id: str
    customer_name: str
    contact: Optional[str]
    email: Optional[str]
    address: Optional[str]
    created_at: str


@dataclass(frozen=True)
class PurchaseMasterRow:
    """Header of a supplier bill."""

    purchase_id: str
    bill_no: str
    date: str
    supplier_id: str
    supplier_name: str
    total_amount: Decimal
    created_at: str


@dataclass(frozen=True)
class PurchaseDetailRow:
    """One received line of a supplier bill."""

    detail_id: str
    purchase_id: str
    product_id: str
    product_name: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal


@dataclass(frozen=True)
class SalesMasterRow:
    """Header of a customer sale; ``invoice_id`` is set once invoiced."""

    sale_id: str
    bill_no: str
    client_name: str
    date: str
    amount: Decimal
    invoice_id: Optional[str]
    created_at: str


@dataclass(frozen=True)
class SalesDetailRow:
    """One issued line of a sale, numbered by ``sr_no`` from 1."""

    detail_id: str
    sale_id: str
    sr_no: int
    product_id: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal


@dataclass(frozen=True)
class InvoiceRow:
    """Billing document derived from a sale."""

    invoice_id: str
    invoice_number: str
    sale_id: str
    date: str
    client_name: str
    subtotal: Decimal
    gst_rate: Decimal
    gst_amount: Decimal
    discount: Decimal
    total_amount: Decimal
    status: str
    payment_method: str
    payment_status: str
    created_at: str


Record = Any


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    An explicit path is returned untouched. Otherwise the search walks up from
    the current working directory and returns the first ``config.ini`` found.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` must provide ``DataFile``, ``BusinessName`` and
    ``SchemaVersion``. ``[Billing] GstRate`` is optional and defaults to
    :data:`~stockbook.constants.DEFAULT_GST_RATE`. Relative data file paths are
    anchored to ``base_path`` (or the working directory) and resolved.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``GstRate`` is not a non-negative number.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    gst_raw = parser.get("Billing", "GstRate", fallback=None)
    gst_rate = DEFAULT_GST_RATE
    if gst_raw is not None:
        try:
            gst_rate = Decimal(gst_raw.strip())
        except InvalidOperation as exc:
            raise ValueError(f"Invalid GstRate in configuration: {gst_raw!r}") from exc
        if gst_rate < 0:
            raise ValueError(f"GstRate must be zero or positive, got {gst_rate}")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        business_name=business_name,
        schema_version=schema_version,
        gst_rate=gst_rate,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master workbook and verify every expected sheet is present.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
        KeyError: If the workbook lacks one of the managed sheets.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    missing = [name for name in SHEET_COLUMNS if name not in wb.sheetnames]
    if missing:
        raise KeyError(f"Workbook {data_file} is missing sheets: {', '.join(missing)}")
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _sheet(workbook: Workbook, sheet_name: SheetName | str) -> Worksheet:
    return workbook[SheetName(sheet_name).value]


def _header_map(sheet: Worksheet) -> Dict[Any, int]:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def key_column(sheet_name: SheetName | str) -> str:
    """Return the header of the column that identifies records in a sheet."""

    return SHEET_COLUMNS[SheetName(sheet_name).value][0]


def iter_records(workbook: Workbook, sheet_name: SheetName | str) -> Iterable[Record]:
    """Stream typed records from a sheet in row (creation) order.

    The header row and fully empty rows are skipped.
    """

    name = SheetName(sheet_name)
    deserialize = DESERIALIZERS[name]
    sheet = _sheet(workbook, name)
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize(raw)


def last_record(workbook: Workbook, sheet_name: SheetName | str) -> Optional[Record]:
    """Return the most recently appended record of a sheet, if any."""

    latest = None
    for record in iter_records(workbook, sheet_name):
        latest = record
    return latest


def append_record(workbook: Workbook, sheet_name: SheetName | str, record: Record) -> None:
    """Append a typed record to the end of its sheet."""

    _sheet(workbook, sheet_name).append(serialize_record(record))


def locate_row(workbook: Workbook, sheet_name: SheetName | str, key_column: str, key_value: str) -> Optional[int]:
    """Find the 1-based row index of the first row whose ``key_column`` matches.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = _sheet(workbook, sheet_name)
    header_map = _header_map(sheet)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[key_col_index - 1] == key_value:
            return row_idx

    return None


def _require_row(workbook: Workbook, sheet_name: SheetName | str, record_id: str) -> int:
    row_index = locate_row(workbook, sheet_name, key_column(sheet_name), record_id)
    if row_index is None:
        raise KeyError(f"{SheetName(sheet_name).value} record not found: {record_id}")
    return row_index


def update_record(
    workbook: Workbook,
    sheet_name: SheetName | str,
    record_id: str,
    *,
    field_values: Dict[str, Any],
) -> Dict[str, Any]:
    """Overwrite selected columns of a record and return their prior values.

    Raises:
        KeyError: If the record or any referenced column cannot be found.
    """

    row_index = _require_row(workbook, sheet_name, record_id)
    sheet = _sheet(workbook, sheet_name)
    header_map = _header_map(sheet)

    unknown = [field for field in field_values if field not in header_map]
    if unknown:
        raise KeyError(f"Unknown {SheetName(sheet_name).value} field(s): {', '.join(unknown)}")

    previous: Dict[str, Any] = {}
    for field, value in field_values.items():
        cell = sheet.cell(row=row_index, column=header_map[field])
        previous[field] = cell.value
        cell.value = value
    return previous


def delete_record(workbook: Workbook, sheet_name: SheetName | str, record_id: str) -> Tuple[int, List[object]]:
    """Remove a record and return ``(row_index, raw_values)`` for restoration.

    Raises:
        KeyError: If the record does not exist.
    """

    row_index = _require_row(workbook, sheet_name, record_id)
    sheet = _sheet(workbook, sheet_name)
    values = [cell.value for cell in sheet[row_index]]
    sheet.delete_rows(row_index)
    return row_index, values


def insert_row_values(workbook: Workbook, sheet_name: SheetName | str, row_index: int, values: Sequence[object]) -> None:
    """Insert raw values as a new row at ``row_index``, shifting later rows down."""

    sheet = _sheet(workbook, sheet_name)
    sheet.insert_rows(row_index)
    for column, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=column, value=value)


def serialize_record(record: Record) -> List[object]:
    """Convert a row dataclass into its worksheet column ordering.

    Field order of every row dataclass mirrors ``SHEET_COLUMNS`` so the tuple
    form is already in sheet order. Decimals are kept as-is.
    """

    return list(astuple(record))


def _decimal(raw: object, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _text(raw: object) -> str:
    return str(raw) if raw is not None else ""


def _optional_text(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    product_id, name, description, price, stock, created_at = raw_row[:6]
    return ProductRow(
        product_id=_text(product_id),
        product_name=_text(name),
        description=_text(description),
        price=_decimal(price, "0.00"),
        stock=_decimal(stock),
        created_at=_text(created_at),
    )


def deserialize_stock(raw_row: Sequence[object]) -> StockRow:
    stock_id, product_id, opening, inward, outward, closing, updated_at = raw_row[:7]
    return StockRow(
        stock_id=_text(stock_id),
        product_id=_text(product_id),
        opening_stock=_decimal(opening),
        inward=_decimal(inward),
        outward=_decimal(outward),
        closing_stock=_decimal(closing),
        updated_at=_text(updated_at),
    )


def deserialize_supplier(raw_row: Sequence[object]) -> SupplierRow:
    supplier_id, name, contact, email, address, created_at = raw_row[:6]
    return SupplierRow(
        supplier_id=_text(supplier_id),
        supplier_name=_text(name),
        contact=_optional_text(contact),
        email=_optional_text(email),
        address=_optional_text(address),
        created_at=_text(created_at),
    )


def deserialize_customer(raw_row: Sequence[object]) -> CustomerRow:
    customer_id, name, contact, email, address, created_at = raw_row[:6]
    return CustomerRow(
        customer_id=_text(customer_id),
        customer_name=_text(name),
        contact=_optional_text(contact),
        email=_optional_text(email),
        address=_optional_text(address),
        created_at=_text(created_at),
    )


def deserialize_purchase_master(raw_row: Sequence[object]) -> PurchaseMasterRow:
    purchase_id, bill_no, date, supplier_id, supplier_name, total, created_at = raw_row[:7]
    return PurchaseMasterRow(
        purchase_id=_text(purchase_id),
        bill_no=_text(bill_no),
        date=_text(date),
        supplier_id=_text(supplier_id),
        supplier_name=_text(supplier_name),
        total_amount=_decimal(total, "0.00"),
        created_at=_text(created_at),
    )


def deserialize_purchase_detail(raw_row: Sequence[object]) -> PurchaseDetailRow:
    detail_id, purchase_id, product_id, product_name, quantity, rate, amount = raw_row[:7]
    return PurchaseDetailRow(
        detail_id=_text(detail_id),
        purchase_id=_text(purchase_id),
        product_id=_text(product_id),
        product_name=_text(product_name),
        quantity=_decimal(quantity),
        rate=_decimal(rate, "0.00"),
        amount=_decimal(amount, "0.00"),
    )


def deserialize_sales_master(raw_row: Sequence[object]) -> SalesMasterRow:
    sale_id, bill_no, client_name, date, amount, invoice_id, created_at = raw_row[:7]
    return SalesMasterRow(
        sale_id=_text(sale_id),
        bill_no=_text(bill_no),
        client_name=_text(client_name),
        date=_text(date),
        amount=_decimal(amount, "0.00"),
        invoice_id=_optional_text(invoice_id),
        created_at=_text(created_at),
    )


def deserialize_sales_detail(raw_row: Sequence[object]) -> SalesDetailRow:
    detail_id, sale_id, sr_no, product_id, quantity, rate, amount = raw_row[:7]
    return SalesDetailRow(
        detail_id=_text(detail_id),
        sale_id=_text(sale_id),
        sr_no=int(sr_no) if sr_no is not None else 0,
        product_id=_text(product_id),
        quantity=_decimal(quantity),
        rate=_decimal(rate, "0.00"),
        amount=_decimal(amount, "0.00"),
    )


def deserialize_invoice(raw_row: Sequence[object]) -> InvoiceRow:
    (
        invoice_id,
        invoice_number,
        sale_id,
        date,
        client_name,
        subtotal,
        gst_rate,
        gst_amount,
        discount,
        total_amount,
        status,
        payment_method,
        payment_status,
        created_at,
    ) = raw_row[:14]
    return InvoiceRow(
        invoice_id=_text(invoice_id),
        invoice_number=_text(invoice_number),
        sale_id=_text(sale_id),
        date=_text(date),
        client_name=_text(client_name),
        subtotal=_decimal(subtotal, "0.00"),
        gst_rate=_decimal(gst_rate, str(DEFAULT_GST_RATE)),
        gst_amount=_decimal(gst_amount, "0.00"),
        discount=_decimal(discount, "0.00"),
        total_amount=_decimal(total_amount, "0.00"),
        status=_text(status),
        payment_method=_text(payment_method),
        payment_status=_text(payment_status),
        created_at=_text(created_at),
    )


DESERIALIZERS: Dict[SheetName, Callable[[Sequence[object]], Record]] = {
    SheetName.PRODUCTS: deserialize_product,
    SheetName.STOCK: deserialize_stock,
    SheetName.SUPPLIERS: deserialize_supplier,
    SheetName.CUSTOMERS: deserialize_customer,
    SheetName.PURCHASE_MASTERS: deserialize_purchase_master,
    SheetName.PURCHASE_DETAILS: deserialize_purchase_detail,
    SheetName.SALES_MASTERS: deserialize_sales_master,
    SheetName.SALES_DETAILS: deserialize_sales_detail,
    SheetName.INVOICES: deserialize_invoice,
}
