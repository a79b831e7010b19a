"""
Balance repair: recompute every cached balance from the full record history.

    balance(user)     = justified(user) - allocated(user)   (core.formulas)
    expenses(project) = approved spend of the project       (optional)

Reads users, allocations and expenses into memory, then writes every changed cache in
ONE batch. Only documents whose value differs are written, so a second run with no
intervening writes touches nothing. Maintenance operation: do not run concurrently
with itself or under heavy write load.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Sequence

from core import formulas, money
from core.models import PROJECTS, USERS, Expense, Project
from core.money import ZERO
from infra.logging_config import get_logger
from viaticos.aggregator import Drift
from viaticos.repository import LedgerRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class RepairReport:
    users_scanned: int
    projects_scanned: int = 0
    changes: List[Drift] = field(default_factory=list)
    dry_run: bool = False
    written: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.changes)

    def total_correction(self) -> Decimal:
        return money.total(c.derived - c.cached for c in self.changes if c.collection == USERS)


def _project_drift(projects: Sequence[Project], expenses: Sequence[Expense]) -> List[Drift]:
    spent = formulas.spent_by_project(expenses)
    return [
        Drift(PROJECTS, p.id, p.expenses, spent.get(p.id, ZERO))
        for p in projects
        if p.expenses != spent.get(p.id, ZERO)
    ]


def _write(repo: LedgerRepository, changes: Sequence[Drift]) -> int:
    """One batch for every corrected cache; returns documents written."""
    batch = repo.store.batch()
    for c in changes:
        field_name = "balance" if c.collection == USERS else "expenses"
        batch.update(c.collection, c.doc_id, {field_name: money.to_doc(c.derived)})
    return batch.commit()


def repair_balances(repo: LedgerRepository, dry_run: bool = False, include_projects: bool = False) -> RepairReport:
    users = repo.users()
    allocations = repo.allocations()
    expenses = repo.expenses()
    derived = formulas.balances_by_user(allocations, expenses, user_ids=[u.id for u in users])

    changes: List[Drift] = [Drift(USERS, u.id, u.balance, derived[u.id]) for u in users if u.balance != derived[u.id]]

    projects = repo.projects() if include_projects else []
    changes.extend(_project_drift(projects, expenses))

    written = _write(repo, changes) if changes and not dry_run else 0

    for c in changes:
        logger.info(
            "Cache corrected" if not dry_run else "Cache drift (dry run)",
            extra={
                "extra_data": {
                    "collection": c.collection,
                    "doc_id": c.doc_id,
                    "cached": c.cached,
                    "derived": c.derived,
                }
            },
        )
    logger.info(
        "Repair finished",
        extra={
            "extra_data": {
                "users": len(users),
                "projects": len(projects),
                "changes": len(changes),
                "written": written,
                "dry_run": dry_run,
            }
        },
    )
    return RepairReport(
        users_scanned=len(users),
        projects_scanned=len(projects),
        changes=changes,
        dry_run=dry_run,
        written=written,
    )


def repair_project_totals(repo: LedgerRepository, dry_run: bool = False) -> RepairReport:
    """Same contract as repair_balances, applied to project.expenses only."""
    projects = repo.projects()
    changes = _project_drift(projects, repo.expenses())
    written = _write(repo, changes) if changes and not dry_run else 0
    logger.info(
        "Project totals repair finished",
        extra={"extra_data": {"projects": len(projects), "changes": len(changes), "written": written, "dry_run": dry_run}},
    )
    return RepairReport(users_scanned=0, projects_scanned=len(projects), changes=changes, dry_run=dry_run, written=written)
