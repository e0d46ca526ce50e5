"""Command-line entry points for the Stockbook back office.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the workflow
modules, and printing results as JSON. Keeping the CLI thin ensures the same
parser configuration can be reused by tests, scripts, or any alternative
front-end that wants to expose the package capabilities.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import asdict, dataclass, is_dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import catalog, core_logic, invoices, ledger, log, purchases, sales
from .constants import PaymentMethod, PaymentStatus


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], Dict[str, Any]]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="stockbook",
        description="Command-line tools for the Stockbook workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini upwards).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def _simple_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], Dict[str, Any]],
    *arguments: Callable[[argparse.ArgumentParser], None],
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        for add in arguments:
            add(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def _required(flag: str, **kwargs: Any) -> Callable[[argparse.ArgumentParser], None]:
    return lambda parser: parser.add_argument(flag, required=True, **kwargs)


def _optional(flag: str, **kwargs: Any) -> Callable[[argparse.ArgumentParser], None]:
    return lambda parser: parser.add_argument(flag, default=None, **kwargs)


def _items(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--item",
        dest="items",
        action="append",
        required=True,
        metavar="PRODUCT:QTY:RATE",
        help="Line item as product id, quantity and rate; repeat for more lines.",
    )


def parse_date(raw: str) -> date:
    """argparse ``type`` for ISO ``YYYY-MM-DD`` dates."""
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date (expected YYYY-MM-DD): {raw}") from exc


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as purchases, sales and invoices."""
    purchase_fields = (
        _required("--supplier-id"),
        _required("--supplier-name"),
        _required("--bill-no"),
        _required("--date", type=parse_date),
        _items,
    )
    sale_fields = (
        _required("--client-name"),
        _optional("--date", type=parse_date),
        _items,
    )
    party_fields = (
        _optional("--name"),
        _optional("--contact"),
        _optional("--email"),
        _optional("--address"),
    )
    specs = {
        "purchase": _simple_command(
            "purchase", "Record a supplier bill and receive its items.", run_purchase, *purchase_fields
        ),
        "update-purchase": _simple_command(
            "update-purchase",
            "Replace the header and items of a purchase.",
            run_update_purchase,
            _required("--purchase-id"),
            *purchase_fields,
        ),
        "delete-purchase": _simple_command(
            "delete-purchase", "Delete a purchase and reverse its stock.", run_delete_purchase, _required("--purchase-id")
        ),
        "sale": _simple_command(
            "sale",
            "Record a sale and issue its items from stock.",
            run_sale,
            *sale_fields,
            _optional("--bill-no"),
        ),
        "update-sale": _simple_command(
            "update-sale",
            "Replace the client, date and items of a sale.",
            run_update_sale,
            _required("--sale-id"),
            *sale_fields,
        ),
        "delete-sale": _simple_command(
            "delete-sale", "Delete a sale and return its stock.", run_delete_sale, _required("--sale-id")
        ),
        "invoice": _simple_command(
            "invoice",
            "Generate the invoice of a sale.",
            run_invoice,
            _required("--sale-id"),
            _optional("--payment-status", choices=[member.value for member in PaymentStatus]),
            _optional("--payment-method", choices=[member.value for member in PaymentMethod]),
            _optional("--discount"),
        ),
        "pay-status": _simple_command(
            "pay-status",
            "Update the payment status of an invoice.",
            run_pay_status,
            _required("--invoice-id"),
            _required("--payment-status", choices=[member.value for member in PaymentStatus]),
        ),
        "delete-invoice": _simple_command(
            "delete-invoice", "Delete an invoice.", run_delete_invoice, _required("--invoice-id")
        ),
        "add-product": _simple_command(
            "add-product",
            "Register a new product.",
            run_add_product,
            _required("--product-name"),
            _required("--price"),
            _optional("--description"),
            _optional("--initial-stock"),
        ),
        "update-product": _simple_command(
            "update-product",
            "Edit a product; --stock restates its opening stock.",
            run_update_product,
            _required("--product-id"),
            _optional("--product-name"),
            _optional("--description"),
            _optional("--price"),
            _optional("--stock"),
        ),
        "delete-product": _simple_command(
            "delete-product", "Delete an unreferenced product.", run_delete_product, _required("--product-id")
        ),
        "add-supplier": _simple_command(
            "add-supplier",
            "Register a supplier.",
            run_add_supplier,
            _required("--name"),
            _optional("--contact"),
            _optional("--email"),
            _optional("--address"),
        ),
        "add-customer": _simple_command(
            "add-customer",
            "Register a customer.",
            run_add_customer,
            _required("--name"),
            _optional("--contact"),
            _optional("--email"),
            _optional("--address"),
        ),
        "update-supplier": _simple_command(
            "update-supplier",
            "Edit a supplier; an empty value clears a contact field.",
            run_update_supplier,
            _required("--supplier-id"),
            *party_fields,
        ),
        "delete-supplier": _simple_command(
            "delete-supplier", "Delete a supplier without purchases.", run_delete_supplier, _required("--supplier-id")
        ),
        "update-customer": _simple_command(
            "update-customer",
            "Edit a customer; an empty value clears a contact field.",
            run_update_customer,
            _required("--customer-id"),
            *party_fields,
        ),
        "delete-customer": _simple_command(
            "delete-customer", "Delete a customer.", run_delete_customer, _required("--customer-id")
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and stock reports."""
    specs = {
        "next-bill-no": _simple_command(
            "next-bill-no", "Suggest the next supplier bill number.", run_next_bill_no
        ),
        "stock": _simple_command("stock", "Display the stock ledger.", run_stock_report),
        "available": _simple_command(
            "available", "Display the closing stock of one product.", run_available, _required("--product-id")
        ),
        "products": _simple_command("products", "List products.", run_list_products),
        "purchases": _simple_command("purchases", "List purchases with their items.", run_list_purchases),
        "sales": _simple_command("sales", "List sales with their items.", run_list_sales),
        "invoices": _simple_command("invoices", "List invoices.", run_list_invoices),
        "show-invoice": _simple_command(
            "show-invoice",
            "Display an invoice with its sale and items.",
            run_show_invoice,
            _required("--invoice-id"),
        ),
        "suppliers": _simple_command("suppliers", "List suppliers.", run_list_suppliers),
        "customers": _simple_command("customers", "List customers.", run_list_customers),
        "audit": _simple_command(
            "audit", "Report products whose stock disagrees with the ledger.", run_audit
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations and check its schema."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> Dict[str, Any]:
    """Dispatch the parsed arguments and return the executor's JSON payload."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def parse_decimal(raw: Optional[str], *, field_name: str) -> Optional[Decimal]:
    """Parse a finite numeric argument, passing ``None`` through."""
    if raw is None:
        return None
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise core_logic.ValidationError(f"{field_name} must be a number, got {raw!r}") from exc
    if not value.is_finite():
        raise core_logic.ValidationError(f"{field_name} must be a finite number, got {raw!r}")
    return value


def parse_item(raw: str, position: int) -> tuple[str, Decimal, Decimal]:
    """Split a ``PRODUCT:QTY:RATE`` argument into typed parts."""
    parts = raw.split(":")
    if len(parts) != 3 or not parts[0].strip():
        raise core_logic.ValidationError(f"Item {position} must look like PRODUCT:QTY:RATE, got {raw!r}")
    product_id, quantity, rate = parts
    return (
        product_id.strip(),
        parse_decimal(quantity, field_name=f"Quantity of item {position}"),
        parse_decimal(rate, field_name=f"Rate of item {position}"),
    )


def translate_purchase(args: argparse.Namespace) -> purchases.PurchaseCommand:
    """Translate CLI args into a purchase command object."""
    lines = tuple(
        purchases.PurchaseLine(product_id=product_id, quantity=quantity, rate=rate)
        for product_id, quantity, rate in (parse_item(raw, index) for index, raw in enumerate(args.items, start=1))
    )
    return purchases.PurchaseCommand(
        supplier_id=args.supplier_id,
        supplier_name=args.supplier_name,
        bill_no=args.bill_no,
        date=args.date,
        lines=lines,
    )


def translate_sale(args: argparse.Namespace) -> sales.SaleCommand:
    """Translate CLI args into a sale command object."""
    lines = tuple(
        sales.SaleLine(product_id=product_id, quantity=quantity, rate=rate)
        for product_id, quantity, rate in (parse_item(raw, index) for index, raw in enumerate(args.items, start=1))
    )
    return sales.SaleCommand(
        client_name=args.client_name,
        lines=lines,
        date=args.date,
        bill_no=getattr(args, "bill_no", None),
    )


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    return {
        "product_name": args.product_name,
        "price": parse_decimal(args.price, field_name="Price"),
        "description": args.description or "",
        "initial_stock": parse_decimal(args.initial_stock, field_name="Initial stock") or Decimal("0"),
    }


def translate_update_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an update-product request."""
    return {
        "product_name": args.product_name,
        "description": args.description,
        "price": parse_decimal(args.price, field_name="Price"),
        "stock": parse_decimal(args.stock, field_name="Stock"),
    }


def translate_party(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into a supplier or customer request, minus the name."""
    return {"contact": args.contact, "email": args.email, "address": args.address}


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def to_jsonable(value: Any) -> Any:
    """Convert rows, documents and decimals into JSON-compatible values."""
    if is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(asdict(value))
    if isinstance(value, Mapping):
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


def envelope(**payload: Any) -> Dict[str, Any]:
    """Wrap an executor result in the success envelope."""
    return {"success": True, **payload}


def render(payload: Mapping[str, Any]) -> str:
    return json.dumps(to_jsonable(payload), indent=2)


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    """Execute the purchase workflow."""
    master = purchases.create_purchase(context, translate_purchase(args))
    return envelope(message="Purchase created successfully", data=purchases.get_purchase(context, master.purchase_id))


def run_update_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    """Execute the purchase update workflow."""
    purchases.update_purchase(context, args.purchase_id, translate_purchase(args))
    return envelope(message="Purchase updated successfully", data=purchases.get_purchase(context, args.purchase_id))


def run_delete_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    purchases.delete_purchase(context, args.purchase_id)
    return envelope(message="Purchase deleted successfully")


def run_next_bill_no(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    return envelope(bill_no=purchases.next_purchase_bill_no(context))


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    """Execute the sale workflow."""
    master = sales.create_sale(context, translate_sale(args))
    return envelope(message="Sale created successfully", data=sales.get_sale(context, master.sale_id))


def run_update_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    """Execute the sale update workflow."""
    sales.update_sale(context, args.sale_id, translate_sale(args))
    return envelope(message="Sale updated successfully", data=sales.get_sale(context, args.sale_id))


def run_delete_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    sales.delete_sale(context, args.sale_id)
    return envelope(message="Sale deleted successfully")


def run_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    """Execute the invoice generation workflow."""
    invoice = invoices.generate_invoice(
        context,
        args.sale_id,
        payment_status=args.payment_status,
        payment_method=args.payment_method,
        discount=parse_decimal(args.discount, field_name="Discount") or Decimal("0"),
    )
    return envelope(message="Invoice generated successfully", data=invoice)


def run_pay_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    invoice = invoices.update_payment_status(context, args.invoice_id, args.payment_status)
    return envelope(message="Payment status updated", data=invoice)


def run_delete_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    invoices.delete_invoice(context, args.invoice_id)
    return envelope(message="Invoice deleted successfully")


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    """Execute the add-product workflow."""
    product = catalog.add_product(context, **translate_add_product(args))
    return envelope(message="Product added successfully", data=product)


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    product = catalog.update_product(context, args.product_id, **translate_update_product(args))
    return envelope(message="Product updated successfully", data=product)


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    catalog.delete_product(context, args.product_id)
    return envelope(message="Product deleted successfully")


def run_add_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    supplier = catalog.add_supplier(context, supplier_name=args.name, **translate_party(args))
    return envelope(message="Supplier added successfully", data=supplier)


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    customer = catalog.add_customer(context, customer_name=args.name, **translate_party(args))
    return envelope(message="Customer added successfully", data=customer)


def run_update_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    supplier = catalog.update_supplier(context, args.supplier_id, supplier_name=args.name, **translate_party(args))
    return envelope(message="Supplier updated successfully", data=supplier)


def run_delete_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    catalog.delete_supplier(context, args.supplier_id)
    return envelope(message="Supplier deleted")


def run_update_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    customer = catalog.update_customer(context, args.customer_id, customer_name=args.name, **translate_party(args))
    return envelope(message="Customer updated successfully", data=customer)


def run_delete_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    catalog.delete_customer(context, args.customer_id)
    return envelope(message="Customer deleted")


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    """Execute the stock reporting workflow."""
    return envelope(data=ledger.list_stock(context))


def run_available(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    product = catalog.get_product(context, args.product_id)
    return envelope(
        data={
            "product_id": product.product_id,
            "product_name": product.product_name,
            "available": ledger.available(context, product.product_id),
        }
    )


def run_list_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    return envelope(data=catalog.list_products(context))


def run_list_purchases(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    return envelope(data=purchases.list_purchases(context))


def run_list_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    return envelope(data=sales.list_sales(context))


def run_list_invoices(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    return envelope(data=invoices.list_invoices(context))


def run_show_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    return envelope(data=invoices.get_invoice(context, args.invoice_id))


def run_list_suppliers(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    return envelope(data=catalog.list_suppliers(context))


def run_list_customers(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    return envelope(data=catalog.list_customers(context))


def run_audit(context: core_logic.RuntimeContext, args: argparse.Namespace) -> Dict[str, Any]:
    """Execute the stock reconciliation report."""
    findings: List[Dict[str, Any]] = catalog.audit_stock(context)
    return envelope(consistent=not findings, data=findings)


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, core_logic.IntegrityError):
        log.critical("%s", error)
        return 1
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution.

    The result is printed only once the workbook has been saved, so stdout
    never reports a success that did not reach disk.
    """
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        payload = dispatch_command(context, args, command_table)
        output = render(payload)
        persist_workbook(context)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
    print(output)
    return 0
