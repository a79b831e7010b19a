"""
Pre-invoices (pre-facturas) built from approved expenses of one project.

- generate: invoice document + invoice_id on every member expense, one batch
- payment status: pending <-> paid; pending|paid -> annulled (final)
- annul: clears invoice_id on every member in the same batch as the status flip

Payment status has no effect on balances: members are approved, so their balance and
project effects already happened at approval.
"""
from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from core import money
from core.errors import InvoiceStateError, ValidationError
from core.models import INVOICES, CustomItem, Expense, ExpenseStatus, Invoice, PaymentStatus
from core.money import ZERO, MoneyInput, to_money
from infra.document_store import DocumentStore
from infra.logging_config import get_logger
from infra.time_utils import now_iso
from viaticos import locks
from viaticos.repository import LedgerRepository

logger = get_logger(__name__)

NO_CLIENT = "Sin Cliente"
DEFAULT_DOCUMENT_TYPE = "electronic_invoice"

_P = PaymentStatus.PENDING
_PAID = PaymentStatus.PAID
_X = PaymentStatus.ANNULLED

_ALLOWED: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    _P: frozenset({_PAID, _X}),
    _PAID: frozenset({_P, _X}),
    _X: frozenset(),
}


def custom_item(description: str, amount: MoneyInput) -> CustomItem:
    text = (description or "").strip()
    if not text:
        raise ValidationError("custom item needs a description")
    value = to_money(amount)
    if value == ZERO:
        raise ValidationError("custom item amount must not be zero")
    return CustomItem(description=text, amount=value)


def check_transition(invoice: Invoice, target: PaymentStatus) -> None:
    if invoice.payment_status is target:
        return
    if target not in _ALLOWED[invoice.payment_status]:
        raise InvoiceStateError(
            f"invoice {invoice.id} is {invoice.payment_status.value}, cannot become {target.value}"
        )


def paid_fields(invoice: Invoice) -> Dict[str, Optional[str]]:
    """Document fields written when an invoice flips to paid."""
    return {
        "payment_status": _PAID.value,
        "paid_at": invoice.paid_at,
        "payment_amount": None if invoice.payment_amount is None else money.to_doc(invoice.payment_amount),
        "payment_reference": invoice.payment_reference,
    }


class InvoiceService:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self.repo = LedgerRepository(store)

    def invoiceable_expenses(self, project_id: str) -> List[Expense]:
        """Approved expenses of the project not yet attached to an invoice."""
        return [
            e
            for e in self.repo.expenses(project_id=project_id, status=ExpenseStatus.APPROVED)
            if not locks.is_locked(e)
        ]

    def generate_invoice(
        self,
        project_id: str,
        expense_ids: Optional[Sequence[str]] = None,
        custom_items: Iterable[CustomItem] = (),
        glosa: str = "",
        references: str = "",
        document_type: str = DEFAULT_DOCUMENT_TYPE,
    ) -> Invoice:
        """
        Bundle approved, unlocked expenses of one project (all of them when
        `expense_ids` is None) plus free-standing items into a pending invoice.
        """
        project = self.repo.get_project(project_id)
        available = {e.id: e for e in self.invoiceable_expenses(project.id)}
        if expense_ids is None:
            chosen = list(available.values())
        else:
            missing = [i for i in expense_ids if i not in available]
            if missing:
                raise ValidationError(f"expenses not invoiceable for project {project.id}: {missing}")
            chosen = [available[i] for i in dict.fromkeys(expense_ids)]
        items: Tuple[CustomItem, ...] = tuple(custom_items)
        if not chosen and not items:
            raise ValidationError("invoice needs at least one expense or custom item")

        total_expenses = money.total(e.amount for e in chosen)
        total_custom = money.total(c.amount for c in items)
        invoice = Invoice(
            id=self.store.new_id(),
            project_id=project.id,
            client_id=project.client or NO_CLIENT,
            expense_ids=tuple(e.id for e in chosen),
            total_amount=money.q2(total_expenses + total_custom),
            total_expenses=total_expenses,
            total_custom_items=total_custom,
            custom_items=items,
            payment_status=_P,
            project_name=project.name,
            glosa=glosa,
            references=references,
            document_type=document_type,
            created_at=now_iso(),
        )

        batch = self.store.batch()
        batch.create(INVOICES, invoice.id, invoice.to_doc())
        locks.lock_expenses(batch, invoice.expense_ids, invoice.id)
        batch.commit()
        logger.info(
            "Invoice generated",
            extra={
                "extra_data": {
                    "invoice_id": invoice.id,
                    "project_id": project.id,
                    "expenses": len(invoice.expense_ids),
                    "custom_items": len(items),
                    "total_amount": invoice.total_amount,
                }
            },
        )
        return invoice

    def mark_paid(
        self,
        invoice_id: str,
        paid_at: Optional[str] = None,
        payment_amount: Optional[MoneyInput] = None,
        payment_reference: Optional[str] = None,
    ) -> Invoice:
        invoice = self.repo.get_invoice(invoice_id)
        check_transition(invoice, _PAID)
        amount: Decimal = invoice.total_amount if payment_amount is None else to_money(payment_amount)
        updated = replace(
            invoice,
            payment_status=_PAID,
            paid_at=paid_at or now_iso(),
            payment_amount=amount,
            payment_reference=payment_reference,
        )
        self.store.batch().update(INVOICES, invoice.id, paid_fields(updated)).commit()
        logger.info("Invoice marked paid", extra={"extra_data": {"invoice_id": invoice.id, "payment_amount": amount}})
        return updated

    def mark_pending(self, invoice_id: str) -> Invoice:
        invoice = self.repo.get_invoice(invoice_id)
        check_transition(invoice, _P)
        self.store.batch().update(
            INVOICES,
            invoice.id,
            {"payment_status": _P.value, "paid_at": None, "payment_amount": None, "payment_reference": None},
        ).commit()
        logger.info("Invoice back to pending", extra={"extra_data": {"invoice_id": invoice.id}})
        return replace(invoice, payment_status=_P, paid_at=None, payment_amount=None, payment_reference=None)

    def annul_invoice(self, invoice_id: str) -> Tuple[Invoice, List[str]]:
        """Annul and release every member expense. Returns (invoice, released expense ids)."""
        invoice = self.repo.get_invoice(invoice_id)
        if invoice.payment_status is _X:
            raise InvoiceStateError(f"invoice {invoice.id} is already annulled")
        batch = self.store.batch()
        batch.update(INVOICES, invoice.id, {"payment_status": _X.value})
        released = locks.release_locks(self.repo, batch, invoice.id)
        batch.commit()
        logger.info(
            "Invoice annulled",
            extra={"extra_data": {"invoice_id": invoice.id, "released": len(released)}},
        )
        return replace(invoice, payment_status=_X), released

    def set_payment_status(self, invoice_id: str, status: PaymentStatus) -> Invoice:
        if status is _PAID:
            return self.mark_paid(invoice_id)
        if status is _P:
            return self.mark_pending(invoice_id)
        invoice, _ = self.annul_invoice(invoice_id)
        return invoice
