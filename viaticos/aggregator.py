"""
Read-side rollups recomputed from raw allocations and expenses.

Nothing here reads `user.balance` or `project.expenses` except the drift report, which
compares those caches against the derived values.

Project view:
    assigned    = sum of allocations of the project
    justified   = pending + approved expenses of users (company expenses excluded)
    spent_total = pending + approved expenses, company expenses included
    approved    = approved only (what the project.expenses cache tracks)

Pending counts in the views but not in the cache; both behaviours are intended.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from core import formulas
from core.models import PROJECTS, USERS, Allocation, Expense, ExpenseStatus, Project
from core.money import ZERO, q2
from viaticos.repository import LedgerRepository

UNASSIGNED = "unassigned"
UNASSIGNED_NAME = "Sin Proyecto"


@dataclass(frozen=True)
class ProjectSummary:
    project_id: str
    assigned: Decimal
    justified: Decimal
    spent_total: Decimal
    approved: Decimal
    rejected: Tuple[Expense, ...] = ()


@dataclass(frozen=True)
class UserProjectRow:
    project_id: str
    name: str
    code: str = ""
    recurrence: str = ""
    assigned: Decimal = ZERO
    justified: Decimal = ZERO

    @property
    def balance(self) -> Decimal:
        return q2(self.justified - self.assigned)


@dataclass(frozen=True)
class UserSummary:
    user_id: str
    rows: Tuple[UserProjectRow, ...]
    rejected: Tuple[Expense, ...] = ()

    @property
    def total_assigned(self) -> Decimal:
        return q2(sum((r.assigned for r in self.rows), ZERO))

    @property
    def total_justified(self) -> Decimal:
        return q2(sum((r.justified for r in self.rows), ZERO))

    @property
    def balance(self) -> Decimal:
        return q2(self.total_justified - self.total_assigned)

    def row(self, project_id: Optional[str]) -> Optional[UserProjectRow]:
        key = project_id or UNASSIGNED
        for r in self.rows:
            if r.project_id == key:
                return r
        return None


@dataclass(frozen=True)
class Drift:
    collection: str
    doc_id: str
    cached: Decimal
    derived: Decimal

    @property
    def difference(self) -> Decimal:
        return q2(self.cached - self.derived)


@dataclass(frozen=True)
class DriftReport:
    users: List[Drift] = field(default_factory=list)
    projects: List[Drift] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.users and not self.projects


def summarize_project(project_id: str, allocations: Iterable[Allocation], expenses: Iterable[Expense]) -> ProjectSummary:
    mine = [e for e in expenses if e.project_id == project_id]
    live = [e for e in mine if e.status is not ExpenseStatus.REJECTED]
    return ProjectSummary(
        project_id=project_id,
        assigned=formulas.project_assigned(project_id, allocations),
        justified=q2(sum((e.amount for e in live if not e.is_company_expense), ZERO)),
        spent_total=q2(sum((e.amount for e in live), ZERO)),
        approved=formulas.project_spent(project_id, mine),
        rejected=tuple(e for e in mine if e.status is ExpenseStatus.REJECTED),
    )


def summarize_user(
    user_id: str,
    allocations: Iterable[Allocation],
    expenses: Iterable[Expense],
    projects: Sequence[Project] = (),
) -> UserSummary:
    """Per-project rows for one user; records without a project go to the unassigned row."""
    meta: Dict[str, Project] = {p.id: p for p in projects}
    names: Dict[str, str] = {}
    assigned: Dict[str, Decimal] = {}
    justified: Dict[str, Decimal] = {}
    rejected: List[Expense] = []

    for e in expenses:
        if e.user_id != user_id:
            continue
        if not formulas.counts_toward_balance(e):
            if e.status is ExpenseStatus.REJECTED:
                rejected.append(e)
            continue
        key = e.project_id or UNASSIGNED
        justified[key] = justified.get(key, ZERO) + e.amount
        assigned.setdefault(key, ZERO)
        if e.project_name:
            names[key] = e.project_name
    for a in allocations:
        if a.user_id != user_id:
            continue
        key = a.project_id or UNASSIGNED
        assigned[key] = assigned.get(key, ZERO) + a.amount
        justified.setdefault(key, ZERO)
        if key not in names and a.project_name:
            names[key] = a.project_name

    rows: List[UserProjectRow] = []
    for key in assigned:
        project = meta.get(key)
        rows.append(
            UserProjectRow(
                project_id=key,
                name=project.name if project else names.get(key, UNASSIGNED_NAME),
                code=project.code if project else "",
                recurrence=project.recurrence if project else "",
                assigned=q2(assigned[key]),
                justified=q2(justified[key]),
            )
        )
    return UserSummary(user_id=user_id, rows=tuple(rows), rejected=tuple(rejected))


class Aggregator:
    def __init__(self, repo: LedgerRepository) -> None:
        self.repo = repo

    def project_summary(self, project_id: str) -> ProjectSummary:
        return summarize_project(
            project_id,
            self.repo.allocations(project_id=project_id),
            self.repo.expenses(project_id=project_id),
        )

    def user_summary(self, user_id: str) -> UserSummary:
        return summarize_user(
            user_id,
            self.repo.allocations(user_id=user_id),
            self.repo.expenses(user_id=user_id),
            self.repo.projects(),
        )

    def derived_balances(self) -> Dict[str, Decimal]:
        users = self.repo.users()
        return formulas.balances_by_user(
            self.repo.allocations(),
            self.repo.expenses(),
            user_ids=[u.id for u in users],
        )

    def drift_report(self) -> DriftReport:
        """Cached vs derived for every user and project. Read-only."""
        allocations = self.repo.allocations()
        expenses = self.repo.expenses()
        users = self.repo.users()
        projects = self.repo.projects()

        derived = formulas.balances_by_user(allocations, expenses, user_ids=[u.id for u in users])
        spent = formulas.spent_by_project(expenses)

        report = DriftReport()
        for u in users:
            if u.balance != derived[u.id]:
                report.users.append(Drift(USERS, u.id, u.balance, derived[u.id]))
        for p in projects:
            want = spent.get(p.id, ZERO)
            if p.expenses != want:
                report.projects.append(Drift(PROJECTS, p.id, p.expenses, want))
        return report
