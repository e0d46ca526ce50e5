"""Product catalog and party records.

``Product.stock`` is a denormalized copy of the ledger's closing stock kept
for fast listings. It only moves through :func:`adjust_stock`, which
transaction managers call in lockstep with the matching ledger operation, or
through a manual edit in :func:`update_product`, which restates the ledger's
opening balance to match.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from . import core_logic, ledger, log
from .constants import SheetName
from .data_manager import CustomerRow, ProductRow, SupplierRow


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def get_product(context: core_logic.RuntimeContext, product_id: str) -> ProductRow:
    """Resolve a product by id.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
    """

    return core_logic.get_record(context, SheetName.PRODUCTS, product_id, label="Product")


def find_product_by_name(context: core_logic.RuntimeContext, product_name: str) -> Optional[ProductRow]:
    """Case-insensitive lookup of a product by its name."""

    wanted = product_name.strip().casefold()
    matches = core_logic.filter_records(
        context, SheetName.PRODUCTS, lambda product: product.product_name.strip().casefold() == wanted
    )
    return matches[0] if matches else None


def list_products(context: core_logic.RuntimeContext) -> List[ProductRow]:
    """Return products newest first."""

    return list(reversed(core_logic.list_records(context, SheetName.PRODUCTS)))


def _require_unique_name(context: core_logic.RuntimeContext, product_name: str, *, exclude_id: Optional[str] = None) -> None:
    existing = find_product_by_name(context, product_name)
    if existing is not None and existing.product_id != exclude_id:
        log.warning("Duplicate product name rejected: '%s'", product_name)
        raise core_logic.ConflictError(f"Product already exists: {existing.product_name}", existing=existing)


def add_product(
    context: core_logic.RuntimeContext,
    *,
    product_name: str,
    price: Decimal,
    description: str = "",
    initial_stock: Decimal = Decimal("0"),
) -> ProductRow:
    """Register a product and open its ledger with ``initial_stock``.

    Raises:
        ValidationError: For a blank name, a negative price or negative stock.
        ConflictError: If another product has the same name ignoring case.
    """

    name = core_logic.require_text("Product name", product_name)
    core_logic.require_nonnegative_money(price, field_name="Price")
    core_logic.require_nonnegative_quantity(initial_stock, field_name="Initial stock")
    _require_unique_name(context, name)

    product = ProductRow(
        product_id=core_logic.generate_record_id("P"),
        product_name=name,
        description=description or "",
        price=price,
        stock=initial_stock,
        created_at=core_logic.now_iso(),
    )
    with core_logic.transaction(context, f"add product {name}"):
        core_logic.add_record(context, SheetName.PRODUCTS, product)
        ledger.ensure(context, product.product_id, opening_stock=initial_stock)
    log.info("Added product '%s' (%s) price=%s stock=%s", name, product.product_id, price, initial_stock)
    return product


def update_product(
    context: core_logic.RuntimeContext,
    product_id: str,
    *,
    product_name: Optional[str] = None,
    description: Optional[str] = None,
    price: Optional[Decimal] = None,
    stock: Optional[Decimal] = None,
) -> ProductRow:
    """Edit catalog fields; a new ``stock`` restates the ledger opening balance."""

    product = get_product(context, product_id)
    changes: Dict[str, Any] = {}
    if product_name is not None:
        name = core_logic.require_text("Product name", product_name)
        _require_unique_name(context, name, exclude_id=product_id)
        changes["ProductName"] = name
    if description is not None:
        changes["Description"] = description
    if price is not None:
        core_logic.require_nonnegative_money(price, field_name="Price")
        changes["Price"] = price
    if stock is not None:
        core_logic.require_nonnegative_quantity(stock, field_name="Stock")
        changes["Stock"] = stock

    if not changes:
        return product

    with core_logic.transaction(context, f"update product {product_id}"):
        updated = core_logic.change_record(context, SheetName.PRODUCTS, product_id, **changes)
        if stock is not None:
            ledger.set_opening(context, product_id, stock)
    log.info("Updated product '%s': %s", product_id, ", ".join(sorted(changes)))
    return updated


def _line_references(context: core_logic.RuntimeContext, product_id: str) -> int:
    count = 0
    for sheet in (SheetName.PURCHASE_DETAILS, SheetName.SALES_DETAILS):
        count += len(core_logic.filter_records(context, sheet, lambda line: line.product_id == product_id))
    return count


def delete_product(context: core_logic.RuntimeContext, product_id: str) -> None:
    """Delete a product together with its ledger row.

    Raises:
        ConflictError: While purchase or sales lines still reference it.
    """

    product = get_product(context, product_id)
    references = _line_references(context, product_id)
    if references:
        raise core_logic.ConflictError(
            f"Product '{product.product_name}' is referenced by {references} transaction line(s)"
        )
    with core_logic.transaction(context, f"delete product {product_id}"):
        core_logic.remove_record(context, SheetName.PRODUCTS, product_id)
        ledger.remove(context, product_id)
    log.info("Deleted product '%s' (%s)", product.product_name, product_id)


def adjust_stock(context: core_logic.RuntimeContext, product_id: str, delta: Decimal) -> ProductRow:
    """Move the denormalized stock counter of a product by ``delta``."""

    product = get_product(context, product_id)
    return core_logic.change_record(context, SheetName.PRODUCTS, product_id, Stock=product.stock + delta)


def audit_stock(context: core_logic.RuntimeContext) -> List[Dict[str, Any]]:
    """Report products whose counter or ledger row is out of balance.

    A product is reported when ``stock`` differs from the ledger's closing
    stock, or when the ledger row's closing stock differs from
    ``opening + inward - outward``.
    """

    findings = []
    for product in core_logic.list_records(context, SheetName.PRODUCTS):
        row = ledger.find(context, product.product_id)
        closing = row.closing_stock if row is not None else ledger.ZERO
        expected = (
            ledger.closing_of(row.opening_stock, row.inward, row.outward) if row is not None else ledger.ZERO
        )
        if product.stock != closing or closing != expected:
            findings.append(
                {
                    "product_id": product.product_id,
                    "product_name": product.product_name,
                    "product_stock": product.stock,
                    "closing_stock": closing,
                    "expected_closing": expected,
                }
            )
    if findings:
        log.warning("Stock audit found %d inconsistent product(s)", len(findings))
    return findings


# ---------------------------------------------------------------------------
# Suppliers and customers
# ---------------------------------------------------------------------------


def get_supplier(context: core_logic.RuntimeContext, supplier_id: str) -> SupplierRow:
    return core_logic.get_record(context, SheetName.SUPPLIERS, supplier_id, label="Supplier")


def list_suppliers(context: core_logic.RuntimeContext) -> List[SupplierRow]:
    return list(reversed(core_logic.list_records(context, SheetName.SUPPLIERS)))


def add_supplier(
    context: core_logic.RuntimeContext,
    *,
    supplier_name: str,
    contact: Optional[str] = None,
    email: Optional[str] = None,
    address: Optional[str] = None,
) -> SupplierRow:
    supplier = SupplierRow(
        supplier_id=core_logic.generate_record_id("S"),
        supplier_name=core_logic.require_text("Supplier name", supplier_name),
        contact=contact,
        email=email,
        address=address,
        created_at=core_logic.now_iso(),
    )
    with core_logic.transaction(context, "add supplier"):
        core_logic.add_record(context, SheetName.SUPPLIERS, supplier)
    log.info("Added supplier '%s' (%s)", supplier.supplier_name, supplier.supplier_id)
    return supplier


def _party_changes(
    name_column: str,
    name_label: str,
    name: Optional[str],
    contact: Optional[str],
    email: Optional[str],
    address: Optional[str],
) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    if name is not None:
        changes[name_column] = core_logic.require_text(name_label, name)
    for column, value in (("Contact", contact), ("Email", email), ("Address", address)):
        if value is not None:
            changes[column] = value or None
    return changes


def update_supplier(
    context: core_logic.RuntimeContext,
    supplier_id: str,
    *,
    supplier_name: Optional[str] = None,
    contact: Optional[str] = None,
    email: Optional[str] = None,
    address: Optional[str] = None,
) -> SupplierRow:
    """Edit a supplier. Purchases keep the supplier name printed on their bill.

    An empty string clears an optional contact field; ``None`` leaves it alone.
    """

    supplier = get_supplier(context, supplier_id)
    changes = _party_changes("SupplierName", "Supplier name", supplier_name, contact, email, address)
    if not changes:
        return supplier
    with core_logic.transaction(context, f"update supplier {supplier_id}"):
        updated = core_logic.change_record(context, SheetName.SUPPLIERS, supplier_id, **changes)
    log.info("Updated supplier '%s': %s", supplier_id, ", ".join(sorted(changes)))
    return updated


def delete_supplier(context: core_logic.RuntimeContext, supplier_id: str) -> None:
    """Delete a supplier that no purchase refers to.

    Raises:
        ConflictError: While purchases still name the supplier.
    """

    supplier = get_supplier(context, supplier_id)
    bills = core_logic.filter_records(
        context, SheetName.PURCHASE_MASTERS, lambda master: master.supplier_id == supplier_id
    )
    if bills:
        raise core_logic.ConflictError(
            f"Supplier '{supplier.supplier_name}' is referenced by {len(bills)} purchase(s)"
        )
    with core_logic.transaction(context, f"delete supplier {supplier_id}"):
        core_logic.remove_record(context, SheetName.SUPPLIERS, supplier_id)
    log.info("Deleted supplier '%s' (%s)", supplier.supplier_name, supplier_id)


def get_customer(context: core_logic.RuntimeContext, customer_id: str) -> CustomerRow:
    return core_logic.get_record(context, SheetName.CUSTOMERS, customer_id, label="Customer")


def list_customers(context: core_logic.RuntimeContext) -> List[CustomerRow]:
    return list(reversed(core_logic.list_records(context, SheetName.CUSTOMERS)))


def add_customer(
    context: core_logic.RuntimeContext,
    *,
    customer_name: str,
    contact: Optional[str] = None,
    email: Optional[str] = None,
    address: Optional[str] = None,
) -> CustomerRow:
    customer = CustomerRow(
        customer_id=core_logic.generate_record_id("C"),
        customer_name=core_logic.require_text("Customer name", customer_name),
        contact=contact,
        email=email,
        address=address,
        created_at=core_logic.now_iso(),
    )
    with core_logic.transaction(context, "add customer"):
        core_logic.add_record(context, SheetName.CUSTOMERS, customer)
    log.info("Added customer '%s' (%s)", customer.customer_name, customer.customer_id)
    return customer


def update_customer(
    context: core_logic.RuntimeContext,
    customer_id: str,
    *,
    customer_name: Optional[str] = None,
    contact: Optional[str] = None,
    email: Optional[str] = None,
    address: Optional[str] = None,
) -> CustomerRow:
    customer = get_customer(context, customer_id)
    changes = _party_changes("CustomerName", "Customer name", customer_name, contact, email, address)
    if not changes:
        return customer
    with core_logic.transaction(context, f"update customer {customer_id}"):
        updated = core_logic.change_record(context, SheetName.CUSTOMERS, customer_id, **changes)
    log.info("Updated customer '%s': %s", customer_id, ", ".join(sorted(changes)))
    return updated


def delete_customer(context: core_logic.RuntimeContext, customer_id: str) -> None:
    """Delete a customer; sales only carry the client name and are left as they are."""

    customer = get_customer(context, customer_id)
    with core_logic.transaction(context, f"delete customer {customer_id}"):
        core_logic.remove_record(context, SheetName.CUSTOMERS, customer_id)
    log.info("Deleted customer '%s' (%s)", customer.customer_name, customer_id)
