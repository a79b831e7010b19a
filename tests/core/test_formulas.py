from __future__ import annotations

from decimal import Decimal

from core import formulas
from core.models import COMPANY_EXPENSE_OWNER, Allocation, AllocationType, Expense, ExpenseStatus

D = Decimal


def _alloc(user: str, project: str, amount: str, t: AllocationType | None = None) -> Allocation:
    return Allocation(id=f"a-{user}-{project}-{amount}", user_id=user, project_id=project, amount=D(amount), date="2026-01-01", type=t)


def _exp(user: str, project: str | None, amount: str, status: ExpenseStatus, company: bool = False) -> Expense:
    return Expense(
        id=f"e-{user}-{amount}-{status.value}",
        user_id=COMPANY_EXPENSE_OWNER if company else user,
        project_id=project,
        amount=D(amount),
        status=status,
        is_company_expense=company,
    )


ALLOCS = [
    _alloc("u1", "pA", "100000"),
    _alloc("u1", "pA", "-20000", AllocationType.TRANSFER_OUT),
    _alloc("u1", "pB", "20000", AllocationType.TRANSFER_IN),
    _alloc("u2", "pB", "5000"),
]
EXPENSES = [
    _exp("u1", "pA", "30000", ExpenseStatus.APPROVED),
    _exp("u1", "pA", "1000", ExpenseStatus.PENDING),
    _exp("u1", "pB", "9999", ExpenseStatus.REJECTED),
    _exp("u1", None, "500", ExpenseStatus.PENDING),
    _exp("x", "pA", "7000", ExpenseStatus.APPROVED, company=True),
]


def test_allocation_and_expense_deltas_have_opposite_signs() -> None:
    assert formulas.allocation_delta(D("100")) == D("-100")
    assert formulas.expense_delta(D("100")) == D("100")


def test_total_allocated_includes_transfer_legs() -> None:
    assert formulas.total_allocated("u1", ALLOCS) == D("100000.00")


def test_total_justified_excludes_rejected_and_company() -> None:
    assert formulas.total_justified("u1", EXPENSES) == D("31500.00")


def test_balance_is_justified_minus_allocated() -> None:
    assert formulas.balance("u1", ALLOCS, EXPENSES) == D("-68500.00")
    assert formulas.balance("u2", ALLOCS, EXPENSES) == D("-5000.00")


def test_project_spent_counts_approved_only_company_included() -> None:
    assert formulas.project_spent("pA", EXPENSES) == D("37000.00")
    assert formulas.project_spent("pB", EXPENSES) == D("0.00")


def test_project_assigned_follows_transfers() -> None:
    assert formulas.project_assigned("pA", ALLOCS) == D("80000.00")
    assert formulas.project_assigned("pB", ALLOCS) == D("25000.00")


def test_balances_by_user_matches_single_user_formula() -> None:
    out = formulas.balances_by_user(ALLOCS, EXPENSES, user_ids=["u1", "u2", "u3"])
    assert out == {
        "u1": formulas.balance("u1", ALLOCS, EXPENSES),
        "u2": formulas.balance("u2", ALLOCS, EXPENSES),
        "u3": D("0.00"),
    }
    # company sentinel never becomes a user entry
    assert COMPANY_EXPENSE_OWNER not in formulas.balances_by_user(ALLOCS, EXPENSES)


def test_spent_by_project_ignores_unassigned() -> None:
    assert formulas.spent_by_project(EXPENSES) == {"pA": D("37000.00")}
