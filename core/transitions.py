"""
Expense state machine.

    pending --approve--> approved
    pending --reject---> rejected
    approved --reject--> rejected
    any     --delete---> (gone)

Every state has a fixed contribution to the two caches (see core.formulas):

    status     user.balance (non-company)   project.expenses
    pending    +amount                      0
    approved   +amount                      +amount
    rejected   0                            0

A transition's effect is contribution(after) - contribution(before), so each move is
the exact inverse of what the entry into the previous state applied. Locked
(invoiced) expenses admit no transition at all.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple

import deal

from core.errors import ExpenseLockedError, InvalidTransitionError
from core.models import Expense, ExpenseStatus
from core.money import ZERO, q2


class ExpenseAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    DELETE = "delete"


_P = ExpenseStatus.PENDING
_A = ExpenseStatus.APPROVED
_R = ExpenseStatus.REJECTED

# (from, action) -> to ; None means the record is removed
_TRANSITIONS: Dict[Tuple[ExpenseStatus, ExpenseAction], Optional[ExpenseStatus]] = {
    (_P, ExpenseAction.APPROVE): _A,
    (_P, ExpenseAction.REJECT): _R,
    (_A, ExpenseAction.REJECT): _R,
    (_P, ExpenseAction.DELETE): None,
    (_A, ExpenseAction.DELETE): None,
    (_R, ExpenseAction.DELETE): None,
}


@dataclass(frozen=True, slots=True)
class Effect:
    balance_delta: Decimal
    project_delta: Decimal
    next_status: Optional[ExpenseStatus]

    @property
    def removes_record(self) -> bool:
        return self.next_status is None


@dataclass(frozen=True, slots=True)
class EditEffect:
    balance_delta: Decimal
    project_deltas: Dict[str, Decimal]


def balance_contribution(status: Optional[ExpenseStatus], amount: Decimal, is_company: bool) -> Decimal:
    if status is None or is_company or status is _R:
        return ZERO
    return amount


def project_contribution(status: Optional[ExpenseStatus], amount: Decimal) -> Decimal:
    return amount if status is _A else ZERO


def allowed(status: ExpenseStatus, action: ExpenseAction) -> bool:
    return (status, action) in _TRANSITIONS


@deal.pre(lambda amount, is_company: isinstance(amount, Decimal) and amount > 0, message="amount must be positive Decimal")
@deal.post(lambda result: result.next_status is ExpenseStatus.PENDING)
def submit_effect(amount: Decimal, is_company: bool) -> Effect:
    return Effect(
        balance_delta=balance_contribution(_P, amount, is_company),
        project_delta=ZERO,
        next_status=_P,
    )


@deal.pre(lambda status, action, amount, is_company: isinstance(amount, Decimal), message="amount must be Decimal")
@deal.raises(InvalidTransitionError)
def effect_for(status: ExpenseStatus, action: ExpenseAction, amount: Decimal, is_company: bool) -> Effect:
    """(balance delta, project delta, next status) for one move; pure."""
    key = (status, action)
    if key not in _TRANSITIONS:
        raise InvalidTransitionError(f"cannot {action.value} an expense in status {status.value}")
    nxt = _TRANSITIONS[key]
    return Effect(
        balance_delta=q2(balance_contribution(nxt, amount, is_company) - balance_contribution(status, amount, is_company)),
        project_delta=q2(project_contribution(nxt, amount) - project_contribution(status, amount)),
        next_status=nxt,
    )


def transition(expense: Expense, action: ExpenseAction) -> Effect:
    if expense.invoice_id is not None:
        raise ExpenseLockedError(expense.id, expense.invoice_id)
    return effect_for(expense.status, action, expense.amount, expense.is_company_expense)


def edit_effect(before: Expense, after: Expense) -> EditEffect:
    """Deltas for an in-place edit of amount and/or project; status and owner are fixed."""
    if before.invoice_id is not None:
        raise ExpenseLockedError(before.id, before.invoice_id)
    bal = balance_contribution(after.status, after.amount, after.is_company_expense) - balance_contribution(
        before.status, before.amount, before.is_company_expense
    )
    proj: Dict[str, Decimal] = {}
    old_c = project_contribution(before.status, before.amount)
    new_c = project_contribution(after.status, after.amount)
    if before.project_id is not None and old_c:
        proj[before.project_id] = proj.get(before.project_id, ZERO) - old_c
    if after.project_id is not None and new_c:
        proj[after.project_id] = proj.get(after.project_id, ZERO) + new_c
    return EditEffect(
        balance_delta=q2(bal),
        project_deltas={k: q2(v) for k, v in proj.items() if v != ZERO},
    )
