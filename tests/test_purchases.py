"""Tests for recording, replacing and deleting supplier bills."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from stockbook import catalog, core_logic, data_manager, ledger, purchases


def _command(supplier, *lines, bill_no="BILL-0000001", when=date(2025, 1, 2)):
    return purchases.PurchaseCommand(
        supplier_id=supplier.supplier_id,
        supplier_name=supplier.supplier_name,
        bill_no=bill_no,
        date=when,
        lines=tuple(purchases.PurchaseLine(product_id, Decimal(qty), Decimal(rate)) for product_id, qty, rate in lines),
    )


def _totals(context, product_id):
    row = ledger.find(context, product_id)
    return (row.opening_stock, row.inward, row.outward, row.closing_stock)


def test_create_purchase_receives_stock(runtime_context, stocked_product, supplier):
    """Scenario A, first half: 5 units at 8 on top of 20 opening."""

    master = purchases.create_purchase(
        runtime_context, _command(supplier, (stocked_product.product_id, "5", "8"))
    )

    assert master.total_amount == Decimal("40")
    assert master.date == "2025-01-02"
    assert _totals(runtime_context, stocked_product.product_id) == (20, 5, 0, 25)
    assert catalog.get_product(runtime_context, stocked_product.product_id).stock == Decimal("25")

    document = purchases.get_purchase(runtime_context, master.purchase_id)
    (detail,) = document.details
    assert detail.product_name == "Widget"
    assert detail.amount == Decimal("40")


def test_create_purchase_opens_missing_ledger_row(runtime_context, stocked_product, supplier):
    with core_logic.transaction(runtime_context, "drop ledger"):
        ledger.remove(runtime_context, stocked_product.product_id)

    purchases.create_purchase(runtime_context, _command(supplier, (stocked_product.product_id, "2", "1")))

    assert _totals(runtime_context, stocked_product.product_id) == (0, 2, 0, 2)


def test_same_supplier_may_reuse_bill_number(runtime_context, stocked_product, supplier):
    purchases.create_purchase(runtime_context, _command(supplier, (stocked_product.product_id, "1", "1")))
    purchases.create_purchase(runtime_context, _command(supplier, (stocked_product.product_id, "1", "1")))

    assert len(purchases.list_purchases(runtime_context)) == 2


def test_bill_number_of_another_supplier_is_rejected(runtime_context, stocked_product, supplier):
    other = catalog.add_supplier(runtime_context, supplier_name="Other Co")
    purchases.create_purchase(runtime_context, _command(supplier, (stocked_product.product_id, "1", "1")))

    with pytest.raises(core_logic.ConflictError, match="already exists for another supplier"):
        purchases.create_purchase(runtime_context, _command(other, (stocked_product.product_id, "1", "1")))
    assert _totals(runtime_context, stocked_product.product_id) == (20, 1, 0, 21)


@pytest.mark.parametrize(
    ("line", "message"),
    [
        (("missing", "1", "1"), "Product not found for item 1"),
        ((None, "0", "1"), "Quantity of item 1 must be greater than zero"),
        ((None, "1", "-1"), "Rate of item 1 must be zero or positive"),
        ((None, "Infinity", "1"), "Quantity of item 1 must be a finite number"),
        ((None, "1", "NaN"), "Rate of item 1 must be a finite number"),
    ],
)
def test_invalid_lines_are_rejected_without_effects(runtime_context, stocked_product, supplier, line, message):
    product_id, qty, rate = line
    command = _command(supplier, (product_id or stocked_product.product_id, qty, rate))

    with pytest.raises(core_logic.ValidationError, match=message):
        purchases.create_purchase(runtime_context, command)
    assert purchases.list_purchases(runtime_context) == []
    assert _totals(runtime_context, stocked_product.product_id) == (20, 0, 0, 20)


def test_unknown_supplier_is_rejected(runtime_context, stocked_product):
    ghost = data_manager.SupplierRow("S404", "Ghost", None, None, None, "")
    with pytest.raises(core_logic.ValidationError, match="Invalid supplier"):
        purchases.create_purchase(runtime_context, _command(ghost, (stocked_product.product_id, "1", "1")))


def test_purchase_needs_lines_and_bill_number(runtime_context, supplier):
    with pytest.raises(core_logic.ValidationError, match="at least one item"):
        purchases.create_purchase(runtime_context, _command(supplier))
    with pytest.raises(core_logic.ValidationError, match="Bill number is required"):
        purchases.create_purchase(runtime_context, _command(supplier, ("P1", "1", "1"), bill_no=" "))


def test_update_purchase_replaces_lines(runtime_context, stocked_product, product_factory, supplier):
    """The ledger reflects only the lines on file after an update."""

    gadget = product_factory("Gadget")
    master = purchases.create_purchase(runtime_context, _command(supplier, (stocked_product.product_id, "5", "8")))

    updated = purchases.update_purchase(
        runtime_context,
        master.purchase_id,
        _command(supplier, (stocked_product.product_id, "2", "8"), (gadget.product_id, "4", "3"), bill_no="B-9"),
    )

    assert updated.purchase_id == master.purchase_id
    assert updated.bill_no == "B-9"
    assert updated.total_amount == Decimal("28")
    assert _totals(runtime_context, stocked_product.product_id) == (20, 2, 0, 22)
    assert _totals(runtime_context, gadget.product_id) == (0, 4, 0, 4)
    assert len(purchases.get_purchase(runtime_context, master.purchase_id).details) == 2
    assert catalog.audit_stock(runtime_context) == []


def test_update_purchase_may_keep_its_own_bill_number(runtime_context, stocked_product, supplier):
    other = catalog.add_supplier(runtime_context, supplier_name="Other Co")
    master = purchases.create_purchase(runtime_context, _command(other, (stocked_product.product_id, "1", "1")))

    updated = purchases.update_purchase(
        runtime_context, master.purchase_id, _command(other, (stocked_product.product_id, "3", "1"))
    )
    assert updated.bill_no == "BILL-0000001"


def test_failed_update_leaves_purchase_untouched(runtime_context, stocked_product, supplier):
    master = purchases.create_purchase(runtime_context, _command(supplier, (stocked_product.product_id, "5", "8")))

    with pytest.raises(core_logic.ValidationError):
        purchases.update_purchase(
            runtime_context, master.purchase_id, _command(supplier, (stocked_product.product_id, "-1", "8"))
        )

    assert _totals(runtime_context, stocked_product.product_id) == (20, 5, 0, 25)
    assert len(purchases.get_purchase(runtime_context, master.purchase_id).details) == 1


def test_delete_purchase_reverses_stock(runtime_context, stocked_product, supplier):
    master = purchases.create_purchase(runtime_context, _command(supplier, (stocked_product.product_id, "5", "8")))

    purchases.delete_purchase(runtime_context, master.purchase_id)

    assert purchases.list_purchases(runtime_context) == []
    assert _totals(runtime_context, stocked_product.product_id) == (20, 0, 0, 20)
    assert catalog.get_product(runtime_context, stocked_product.product_id).stock == Decimal("20")
    with pytest.raises(core_logic.NotFoundError):
        purchases.get_purchase(runtime_context, master.purchase_id)


def test_supplier_bills_and_next_bill_number(runtime_context, stocked_product, supplier):
    assert purchases.next_purchase_bill_no(runtime_context) == "BILL-0000001"
    purchases.create_purchase(runtime_context, _command(supplier, (stocked_product.product_id, "1", "1")))
    purchases.create_purchase(
        runtime_context,
        _command(supplier, (stocked_product.product_id, "1", "1"), bill_no="BILL-0000002", when=date(2025, 2, 1)),
    )

    assert purchases.supplier_bills(runtime_context, supplier.supplier_id) == [
        {"bill_no": "BILL-0000002", "date": "2025-02-01"},
        {"bill_no": "BILL-0000001", "date": "2025-01-02"},
    ]
    assert purchases.next_purchase_bill_no(runtime_context) == "BILL-0000003"
