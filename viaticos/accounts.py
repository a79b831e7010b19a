"""
Users and projects lifecycle.

ensure_user() runs on first sign-in. When an administrator pre-seeded the person under
a provisional id (same email), the document is moved to the real account id: copied
verbatim (balance included), old document deleted, allocations and expenses
re-pointed, all in one batch. The copied balance is then compared against the formula
and a mismatch is reported, not corrected; repair_balances() fixes it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from core import formulas
from core.errors import PolicyError, ValidationError
from core.models import (
    ALLOCATIONS,
    EXPENSES,
    PROJECTS,
    USERS,
    Project,
    ProjectStatus,
    ProjectType,
    Role,
    User,
)
from core.money import ZERO
from infra.config_loader import AccountsConfig, get_app_config
from infra.document_store import DocumentStore
from infra.logging_config import get_logger
from infra.time_utils import now_iso
from viaticos.protocol import BALANCE_MISMATCH, Inconsistency
from viaticos.repository import LedgerRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class AccountResult:
    user: User
    created: bool = False
    migrated_from: Optional[str] = None
    moved_allocations: int = 0
    moved_expenses: int = 0
    warnings: List[Inconsistency] = field(default_factory=list)


def _display_name(email: str, display_name: Optional[str]) -> str:
    if display_name and display_name.strip():
        return display_name.strip()
    return email.split("@")[0]


class AccountService:
    def __init__(self, store: DocumentStore, config: Optional[AccountsConfig] = None) -> None:
        self.store = store
        self.repo = LedgerRepository(store)
        self.config = config or get_app_config().accounts

    # ----------------------
    # USERS
    # ----------------------

    def ensure_user(self, account_id: str, email: str, display_name: Optional[str] = None) -> AccountResult:
        if not account_id:
            raise ValidationError("account id is required")
        email = (email or "").strip().lower()
        if not email:
            raise ValidationError("email is required")

        existing = self.repo.find_user(account_id)
        if existing is not None:
            return AccountResult(user=existing)

        provisional = [u for u in self.repo.users_by_email(email) if u.id != account_id]
        if provisional:
            return self.migrate_account(provisional[0].id, account_id)

        admins = {e.strip().lower() for e in self.config.admin_emails}
        user = User(
            id=account_id,
            email=email,
            display_name=_display_name(email, display_name),
            role=Role.ADMIN if email in admins else Role.PROFESSIONAL,
            balance=ZERO,
        )
        self.store.batch().create(USERS, user.id, user.to_doc()).commit()
        logger.info("User created", extra={"extra_data": {"user_id": user.id, "role": user.role.value}})
        return AccountResult(user=user, created=True)

    def seed_user(self, email: str, display_name: str, role: Role = Role.PROFESSIONAL) -> User:
        """
        Pre-register a person before their first sign-in.

        The document lives under a provisional id `user_<local>_<nnnn>` with a zero
        balance; ensure_user() later moves it to the real account id.
        """
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationError(f"invalid email: {email!r}")
        if not display_name or not display_name.strip():
            raise ValidationError("display name is required")
        if self.repo.users_by_email(email):
            raise ValidationError(f"a user with email {email} already exists")

        local = email.split("@")[0]
        user = User(
            id=f"user_{local}_{self.store.new_id()[-4:]}",
            email=email,
            display_name=display_name.strip(),
            role=Role(role),
            balance=ZERO,
        )
        self.store.batch().create(USERS, user.id, user.to_doc()).commit()
        logger.info(
            "User seeded",
            extra={"extra_data": {"user_id": user.id, "email": email, "role": user.role.value}},
        )
        return user

    def migrate_account(self, old_id: str, new_id: str) -> AccountResult:
        """Move a user document and every record that references it to a new id."""
        if old_id == new_id:
            raise ValidationError("old and new account ids are the same")
        raw = self.store.get(USERS, old_id)
        if raw is None:
            raise ValidationError(f"no user document under {old_id}")
        data = {k: v for k, v in raw.items() if k != "id"}

        allocations = self.repo.allocations(user_id=old_id)
        expenses = self.repo.expenses(user_id=old_id)

        batch = self.store.batch()
        batch.create(USERS, new_id, data)
        batch.delete(USERS, old_id)
        for a in allocations:
            batch.update(ALLOCATIONS, a.id, {"user_id": new_id})
        for e in expenses:
            batch.update(EXPENSES, e.id, {"user_id": new_id})
        batch.commit()

        user = self.repo.get_user(new_id)
        warnings: List[Inconsistency] = []
        derived = formulas.balance(new_id, self.repo.allocations(user_id=new_id), self.repo.expenses(user_id=new_id))
        if derived != user.balance:
            warnings.append(
                Inconsistency(
                    kind=BALANCE_MISMATCH,
                    collection=USERS,
                    doc_id=new_id,
                    detail=f"copied balance {user.balance}, derived {derived}",
                )
            )
            logger.warning(
                "Migrated balance disagrees with history",
                extra={"extra_data": {"user_id": new_id, "cached": user.balance, "derived": derived}},
            )
        logger.info(
            "Account migrated",
            extra={
                "extra_data": {
                    "old_id": old_id,
                    "new_id": new_id,
                    "allocations": len(allocations),
                    "expenses": len(expenses),
                }
            },
        )
        return AccountResult(
            user=user,
            migrated_from=old_id,
            moved_allocations=len(allocations),
            moved_expenses=len(expenses),
            warnings=warnings,
        )

    # ----------------------
    # PROJECTS
    # ----------------------

    def create_project(
        self,
        name: str,
        client: str = "",
        code: str = "",
        recurrence: str = "",
        type: ProjectType = ProjectType.PROJECT,
    ) -> Project:
        if not name or not name.strip():
            raise ValidationError("project name is required")
        project = Project(
            id=self.store.new_id(),
            name=name.strip(),
            client=client,
            code=code,
            recurrence=recurrence,
            type=type,
            status=ProjectStatus.ACTIVE,
            expenses=ZERO,
            created_at=now_iso(),
        )
        self.store.batch().create(PROJECTS, project.id, project.to_doc()).commit()
        logger.info("Project created", extra={"extra_data": {"project_id": project.id, "type": type.value}})
        return project

    def soft_delete_project(self, project_id: str, force: bool = False) -> Project:
        """Hide a project. History keeps pointing at it; the petty-cash fund needs force=True."""
        project = self.repo.get_project(project_id)
        if project.is_petty_cash and not force:
            raise PolicyError("petty cash project cannot be deleted without force")
        if project.status is ProjectStatus.DELETED:
            return project
        self.store.batch().update(PROJECTS, project.id, {"status": ProjectStatus.DELETED.value}).commit()
        logger.info("Project deleted", extra={"extra_data": {"project_id": project.id}})
        return self.repo.get_project(project.id)

    def list_active_projects(self) -> List[Project]:
        return self.repo.projects(include_deleted=False)

    def petty_cash_project(self) -> Optional[Project]:
        for p in self.list_active_projects():
            if p.is_petty_cash:
                return p
        return None
