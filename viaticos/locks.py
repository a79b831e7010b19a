"""Invoice lock boundary: an expense with invoice_id set admits no mutation."""
from __future__ import annotations

from typing import Iterable, List

from core.errors import ExpenseLockedError
from core.models import EXPENSES, Expense
from infra.document_store import WriteBatch
from viaticos.repository import LedgerRepository


def is_locked(expense: Expense) -> bool:
    return expense.invoice_id is not None


def ensure_unlocked(expense: Expense) -> None:
    if expense.invoice_id is not None:
        raise ExpenseLockedError(expense.id, expense.invoice_id)


def lock_expenses(batch: WriteBatch, expense_ids: Iterable[str], invoice_id: str) -> List[str]:
    ids = list(expense_ids)
    for expense_id in ids:
        batch.update(EXPENSES, expense_id, {"invoice_id": invoice_id})
    return ids


def release_locks(repo: LedgerRepository, batch: WriteBatch, invoice_id: str) -> List[str]:
    """Queue invoice_id=None on every expense still pointing at the invoice."""
    ids = [e.id for e in repo.expenses_by_invoice(invoice_id)]
    for expense_id in ids:
        batch.update(EXPENSES, expense_id, {"invoice_id": None})
    return ids
