"""
Error taxonomy for the ledger.

- ValidationError: bad user input, rejected before any write
- PolicyError: action not allowed in the current state, rejected before any write
- NotFoundError: the primary record of the action does not exist
- InfrastructureError: the batch did not commit; nothing was applied, retry is safe

Missing *secondary* documents (the user whose balance should move, the project whose
cache should move) are not errors: they are reported as Inconsistency records.
"""
from __future__ import annotations


class LedgerError(Exception):
    """Base error for the ledger."""


class ValidationError(LedgerError):
    """Invalid input to the ledger."""


class PolicyError(LedgerError):
    """Operation not permitted by policy."""


class ExpenseLockedError(PolicyError):
    """Expense is attached to an invoice and frozen."""

    def __init__(self, expense_id: str, invoice_id: str) -> None:
        super().__init__(f"expense {expense_id} is locked by invoice {invoice_id}")
        self.expense_id = expense_id
        self.invoice_id = invoice_id


class InvalidTransitionError(PolicyError):
    """Status transition not allowed by the expense state machine."""


class InvoiceStateError(PolicyError):
    """Invoice payment status does not allow the operation."""


class NotFoundError(LedgerError):
    """Primary document missing."""

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class InfrastructureError(LedgerError):
    """Storage failure. The batch was rolled back."""

    retryable = True
