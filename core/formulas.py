"""
Ledger primitives: the authoritative formulas relating raw records to derived totals.

Sign convention (single source of truth for every other module):

    balance > 0  -> the company owes the user (more rendered than given)
    balance < 0  -> the user owes the company (holds unrendered float)

    Balance(user)            = TotalJustified(user) - TotalAllocated(user)
    TotalAllocated(user)     = sum(allocation.amount), every allocation of the user
    TotalJustified(user)     = sum(expense.amount), user's expenses with
                               status != rejected and not is_company_expense
    ProjectSpent(project)    = sum(expense.amount), status == approved
    ProjectAssigned(project) = sum(allocation.amount)

So an allocation of `a` moves balance by -a and a justified expense of `a` by +a.
`user.balance` and `project.expenses` are caches of Balance and ProjectSpent.
"""
from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, Optional

import deal

from core.models import Allocation, Expense, ExpenseStatus
from core.money import ZERO, q2


def counts_toward_balance(expense: Expense) -> bool:
    return expense.status is not ExpenseStatus.REJECTED and not expense.is_company_expense


def counts_toward_project(expense: Expense) -> bool:
    return expense.status is ExpenseStatus.APPROVED


@deal.post(lambda result: isinstance(result, Decimal))
def allocation_delta(amount: Decimal) -> Decimal:
    """Balance delta applied when an allocation of `amount` comes into existence."""
    return -amount


@deal.post(lambda result: isinstance(result, Decimal))
def expense_delta(amount: Decimal) -> Decimal:
    """Balance delta applied when a justified expense of `amount` comes into existence."""
    return amount


@deal.post(lambda result: isinstance(result, Decimal))
def total_allocated(user_id: str, allocations: Iterable[Allocation]) -> Decimal:
    return q2(sum((a.amount for a in allocations if a.user_id == user_id), ZERO))


@deal.post(lambda result: isinstance(result, Decimal))
def total_justified(user_id: str, expenses: Iterable[Expense]) -> Decimal:
    return q2(sum((e.amount for e in expenses if e.user_id == user_id and counts_toward_balance(e)), ZERO))


def balance(user_id: str, allocations: Iterable[Allocation], expenses: Iterable[Expense]) -> Decimal:
    return q2(total_justified(user_id, expenses) - total_allocated(user_id, allocations))


@deal.post(lambda result: isinstance(result, Decimal))
def project_spent(project_id: str, expenses: Iterable[Expense]) -> Decimal:
    return q2(sum((e.amount for e in expenses if e.project_id == project_id and counts_toward_project(e)), ZERO))


@deal.post(lambda result: isinstance(result, Decimal))
def project_assigned(project_id: str, allocations: Iterable[Allocation]) -> Decimal:
    return q2(sum((a.amount for a in allocations if a.project_id == project_id), ZERO))


def balances_by_user(
    allocations: Iterable[Allocation],
    expenses: Iterable[Expense],
    user_ids: Optional[Iterable[str]] = None,
) -> Dict[str, Decimal]:
    """Balance for every user in one pass over both streams.

    With `user_ids`, every listed user gets an entry (zero when it has no records) and
    records of unlisted owners are ignored.
    """
    out: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    wanted = None if user_ids is None else set(user_ids)
    if wanted is not None:
        for uid in wanted:
            out[uid] = ZERO
    for e in expenses:
        if not counts_toward_balance(e):
            continue
        if wanted is None or e.user_id in wanted:
            out[e.user_id] += e.amount
    for a in allocations:
        if wanted is None or a.user_id in wanted:
            out[a.user_id] -= a.amount
    return {k: q2(v) for k, v in out.items()}


def spent_by_project(expenses: Iterable[Expense]) -> Dict[str, Decimal]:
    out: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for e in expenses:
        if e.project_id is not None and counts_toward_project(e):
            out[e.project_id] += e.amount
    return {k: q2(v) for k, v in out.items()}
