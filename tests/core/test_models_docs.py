from __future__ import annotations

from decimal import Decimal

from core.models import (
    Allocation,
    AllocationType,
    CustomItem,
    Expense,
    ExpenseStatus,
    Invoice,
    PaymentStatus,
    Project,
    ProjectType,
)


def test_expense_doc_keeps_lock_and_split_fields() -> None:
    e = Expense(
        id="e1",
        user_id="u1",
        project_id=None,
        amount=Decimal("15000.00"),
        status=ExpenseStatus.APPROVED,
        invoice_id="inv1",
        split_group_id="g1",
    )
    doc = e.to_doc()
    assert doc["amount"] == "15000.00"
    assert doc["status"] == "approved"
    back = Expense.from_doc({**doc, "id": "e1"})
    assert back == e
    assert back.is_locked is True


def test_expense_from_partial_doc_uses_defaults() -> None:
    e = Expense.from_doc({"id": "e9", "user_id": "u1", "amount": "10", "project_id": ""})
    assert e.status is ExpenseStatus.PENDING
    assert e.project_id is None
    assert e.is_locked is False
    assert e.currency == "COP"


def test_transfer_leg_doc() -> None:
    a = Allocation(id="a1", user_id="u1", project_id="pA", amount=Decimal("-500.00"), date="2026-02-01", type=AllocationType.TRANSFER_OUT)
    doc = a.to_doc()
    assert doc["type"] == "transfer_out"
    assert Allocation.from_doc({**doc, "id": "a1"}).amount == Decimal("-500.00")


def test_petty_cash_detected_by_type_or_name() -> None:
    assert Project(id="p1", name="Fondo", type=ProjectType.PETTY_CASH).is_petty_cash
    assert Project(id="p2", name="Caja Chica Oficina").is_petty_cash
    assert not Project(id="p3", name="Cliente X").is_petty_cash


def test_invoice_doc_counts_items() -> None:
    inv = Invoice(
        id="i1",
        project_id="pA",
        client_id="ACME",
        expense_ids=("e1", "e2"),
        total_amount=Decimal("150.00"),
        custom_items=(CustomItem("Honorarios", Decimal("50.00")),),
    )
    doc = inv.to_doc()
    assert doc["item_count"] == 3
    back = Invoice.from_doc({**doc, "id": "i1"})
    assert back.payment_status is PaymentStatus.PENDING
    assert back.custom_items[0].amount == Decimal("50.00")
    assert back.payment_amount is None
