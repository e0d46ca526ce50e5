"""Integration tests describing the end-to-end Stockbook workflows.

These scenarios exercise the catalog, ledger, purchase, sales and invoice
layers together against a real workbook, persisting and reloading between
steps the way the CLI does between invocations.
"""

from __future__ import annotations

import threading
from datetime import date
from decimal import Decimal

import pytest

from stockbook import catalog, core_logic, identifiers, invoices, ledger, purchases, sales
from stockbook.constants import IdentifierStream


def _reload(context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Persist and reload so later steps read what a new process would."""

    core_logic.persist_context(context)
    return core_logic.refresh_context(context)


def _totals(context, product_id):
    row = ledger.find(context, product_id)
    return tuple(Decimal(value) for value in (row.opening_stock, row.inward, row.outward, row.closing_stock))


def _assert_in_balance(context):
    """Every product's counter matches its ledger, and every ledger row its formula."""

    assert catalog.audit_stock(context) == []


def test_purchase_sale_invoice_and_deletion_scenarios(runtime_context):
    """Scenarios A to D on a single product, reloading from disk in between."""

    context = runtime_context
    product = catalog.add_product(context, product_name="Widget", price=Decimal("10"), initial_stock=Decimal("20"))
    supplier = catalog.add_supplier(context, supplier_name="Acme")
    context = _reload(context)

    # A: purchase 5 at 8, then sell 10 at 10.
    purchases.create_purchase(
        context,
        purchases.PurchaseCommand(
            supplier_id=supplier.supplier_id,
            supplier_name=supplier.supplier_name,
            bill_no="BILL-0000001",
            date=date(2025, 1, 2),
            lines=(purchases.PurchaseLine(product.product_id, Decimal("5"), Decimal("8")),),
        ),
    )
    assert _totals(context, product.product_id) == (20, 5, 0, 25)
    context = _reload(context)

    sale = sales.create_sale(
        context,
        sales.SaleCommand(
            client_name="Jane Doe",
            lines=(sales.SaleLine(product.product_id, Decimal("10"), Decimal("10")),),
        ),
    )
    assert sale.amount == Decimal("100")
    assert _totals(context, product.product_id) == (20, 5, 10, 15)
    _assert_in_balance(context)
    context = _reload(context)

    # B: overselling is rejected and leaves nothing behind.
    with pytest.raises(core_logic.InsufficientStockError, match="Available: 15, Required: 30"):
        sales.create_sale(
            context,
            sales.SaleCommand(
                client_name="Jane Doe",
                lines=(sales.SaleLine(product.product_id, Decimal("30"), Decimal("10")),),
            ),
        )
    assert len(sales.list_sales(context)) == 1
    assert _totals(context, product.product_id) == (20, 5, 10, 15)

    # C: invoice the sale.
    invoice = invoices.generate_invoice(context, sale.sale_id)
    assert (invoice.subtotal, invoice.gst_amount, invoice.total_amount) == (100, Decimal("18.00"), Decimal("118.00"))
    assert invoice.invoice_number == "INV-0000001"
    context = _reload(context)
    assert sales.get_sale_master(context, sale.sale_id).invoice_id == invoice.invoice_id

    # D: deleting the sale returns its stock.
    sales.delete_sale(context, sale.sale_id)
    context = _reload(context)
    assert _totals(context, product.product_id) == (20, 5, 0, 25)
    assert catalog.get_product(context, product.product_id).stock == Decimal("25")
    assert invoices.list_invoices(context) == []
    _assert_in_balance(context)


def test_update_sale_from_five_to_three_units(runtime_context, stocked_product):
    context = runtime_context
    sale = sales.create_sale(
        context,
        sales.SaleCommand(client_name="Jane", lines=(sales.SaleLine(stocked_product.product_id, Decimal("5"), Decimal("10")),)),
    )
    context = _reload(context)

    sales.update_sale(
        context,
        sale.sale_id,
        sales.SaleCommand(client_name="Jane", lines=(sales.SaleLine(stocked_product.product_id, Decimal("3"), Decimal("10")),)),
    )
    context = _reload(context)

    assert _totals(context, stocked_product.product_id) == (20, 0, 3, 17)
    _assert_in_balance(context)


def test_identifiers_strictly_increase_without_deletions(runtime_context, stocked_product):
    numbers = []
    for _ in range(3):
        master = sales.create_sale(
            runtime_context,
            sales.SaleCommand(client_name="Jane", lines=(sales.SaleLine(stocked_product.product_id, Decimal("1"), Decimal("1")),)),
        )
        numbers.append(master.bill_no)
        invoices.generate_invoice(runtime_context, master.sale_id)

    assert numbers == ["BILL0001", "BILL0002", "BILL0003"]
    assert identifiers.next_id(runtime_context, IdentifierStream.INVOICE) == "INV-0000004"


def test_failure_midway_through_sale_lines_rolls_back(monkeypatch, runtime_context, stocked_product, product_factory):
    """A crash after the first line was issued leaves no trace of the sale."""

    gadget = product_factory("Gadget", initial_stock="5")
    real_issue = ledger.issue
    calls = {"count": 0}

    def flaky_issue(context, product_id, quantity):
        calls["count"] += 1
        if calls["count"] == 2:
            raise OSError("disk hiccup")
        return real_issue(context, product_id, quantity)

    monkeypatch.setattr(ledger, "issue", flaky_issue)

    with pytest.raises(OSError):
        sales.create_sale(
            runtime_context,
            sales.SaleCommand(
                client_name="Jane",
                lines=(
                    sales.SaleLine(stocked_product.product_id, Decimal("4"), Decimal("10")),
                    sales.SaleLine(gadget.product_id, Decimal("1"), Decimal("4")),
                ),
            ),
        )

    assert sales.list_sales(runtime_context) == []
    assert _totals(runtime_context, stocked_product.product_id) == (20, 0, 0, 20)
    assert _totals(runtime_context, gadget.product_id) == (5, 0, 0, 5)
    assert catalog.get_product(runtime_context, stocked_product.product_id).stock == Decimal("20")
    _assert_in_balance(runtime_context)


def test_failure_midway_through_purchase_update_rolls_back(monkeypatch, runtime_context, stocked_product, supplier):
    command = purchases.PurchaseCommand(
        supplier_id=supplier.supplier_id,
        supplier_name=supplier.supplier_name,
        bill_no="B-1",
        date=date(2025, 1, 2),
        lines=(purchases.PurchaseLine(stocked_product.product_id, Decimal("5"), Decimal("8")),),
    )
    master = purchases.create_purchase(runtime_context, command)

    def failing_receive(*_args, **_kwargs):
        raise RuntimeError("ledger offline")

    monkeypatch.setattr(ledger, "receive", failing_receive)

    with pytest.raises(RuntimeError):
        purchases.update_purchase(runtime_context, master.purchase_id, command)

    assert _totals(runtime_context, stocked_product.product_id) == (20, 5, 0, 25)
    assert len(purchases.get_purchase(runtime_context, master.purchase_id).details) == 1
    _assert_in_balance(runtime_context)


def test_concurrent_sales_on_one_context_are_serialized(runtime_context, stocked_product):
    """Writers sharing a context queue on its lock.

    Six threads race to sell four units each from twenty in stock. Exactly
    twenty sales go through with gap-free bill numbers and the rest are turned
    away by the stock check, so the ledger never goes below zero.
    """

    barrier = threading.Barrier(6)
    bill_numbers = []
    rejected = []
    unexpected = []
    results_lock = threading.Lock()

    def sell_four_units():
        barrier.wait()
        for _ in range(4):
            try:
                master = sales.create_sale(
                    runtime_context,
                    sales.SaleCommand(
                        client_name="Walk-in",
                        lines=(sales.SaleLine(stocked_product.product_id, Decimal("1"), Decimal("10")),),
                    ),
                )
            except core_logic.InsufficientStockError as error:
                with results_lock:
                    rejected.append(error)
            except Exception as error:  # surfaced through the assertion below
                with results_lock:
                    unexpected.append(error)
            else:
                with results_lock:
                    bill_numbers.append(master.bill_no)

    workers = [threading.Thread(target=sell_four_units) for _ in range(6)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=60)

    assert unexpected == []
    assert sorted(bill_numbers) == [f"BILL{number:04d}" for number in range(1, 21)]
    assert len(rejected) == 4
    assert _totals(runtime_context, stocked_product.product_id) == (20, 0, 20, 0)
    assert catalog.get_product(runtime_context, stocked_product.product_id).stock == Decimal("0")
    _assert_in_balance(runtime_context)
