"""
Balance Mutation Protocol.

Every operation that moves `user.balance` or `project.expenses` lives here and commits
as ONE WriteBatch: record write + balance increment + project increment land together
or not at all.

Deltas come from core.transitions (expenses) and core.formulas (allocations), never
from local sign arithmetic. A missing user/project at mutation time skips only the
cache increment; the record write still commits and the gap is returned as an
Inconsistency (and logged) for a later repair run.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core import formulas, transitions
from core.errors import ValidationError
from core.models import (
    ALLOCATIONS,
    COMPANY_EXPENSE_OWNER,
    EXPENSES,
    PROJECTS,
    USERS,
    Allocation,
    AllocationType,
    Expense,
    ExpenseStatus,
    Project,
    ProjectStatus,
)
from core.money import ZERO, MoneyInput, q2, to_money
from core.transitions import ExpenseAction
from infra.config_loader import LedgerConfig, get_app_config
from infra.document_store import DocumentStore, WriteBatch
from infra.logging_config import get_logger
from infra.time_utils import now_iso, parse_date, today_iso
from viaticos import locks
from viaticos.repository import LedgerRepository

logger = get_logger(__name__)

SPLIT_SUFFIX = " [Distribución]"

MISSING_USER = "missing_user"
MISSING_PROJECT = "missing_project"
BALANCE_MISMATCH = "balance_mismatch"


@dataclass(frozen=True, slots=True)
class Inconsistency:
    """Cache update that could not be applied (or a cache that disagrees with history)."""

    kind: str
    collection: str
    doc_id: str
    detail: str = ""


@dataclass(frozen=True)
class MutationResult:
    operation: str
    ids: List[str]
    balance_deltas: Dict[str, Decimal] = field(default_factory=dict)
    project_deltas: Dict[str, Decimal] = field(default_factory=dict)
    warnings: List[Inconsistency] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.ids[0]

    @property
    def ok(self) -> bool:
        return not self.warnings


@dataclass(frozen=True)
class ExpenseDraft:
    """Fields of a new expense as typed (or prefilled) in the capture form."""

    user_id: str
    amount: MoneyInput
    project_id: Optional[str] = None
    category: str = ""
    event_name: str = ""
    date: Optional[str] = None
    time: Optional[str] = None
    merchant: Optional[str] = None
    tax_id: Optional[str] = None
    invoice_number: Optional[str] = None
    payment_method: Optional[str] = None
    description: str = ""
    currency: Optional[str] = None
    receipt_url: Optional[str] = None
    voucher_url: Optional[str] = None


@dataclass(frozen=True)
class SplitRow:
    project_id: str
    amount: MoneyInput


EDITABLE_EXPENSE_FIELDS = frozenset(
    {
        "amount",
        "project_id",
        "category",
        "event_name",
        "description",
        "date",
        "time",
        "merchant",
        "tax_id",
        "invoice_number",
        "payment_method",
        "receipt_url",
        "voucher_url",
    }
)


def _positive(value: MoneyInput, what: str = "amount") -> Decimal:
    amount = to_money(value)
    if amount <= ZERO:
        raise ValidationError(f"{what} must be greater than zero")
    return amount


def _valid_date(value: Optional[str]) -> str:
    if value is None or str(value).strip() == "":
        return today_iso()
    try:
        parse_date(str(value))
    except ValueError as exc:
        raise ValidationError(f"invalid date: {value!r}") from exc
    return str(value).strip()


class _Mutation:
    """One atomic unit: a WriteBatch plus the cache deltas it will carry."""

    def __init__(self, repo: LedgerRepository, operation: str) -> None:
        self.repo = repo
        self.operation = operation
        self.batch: WriteBatch = repo.store.batch()
        self.ids: List[str] = []
        self.balance: Dict[str, Decimal] = {}
        self.project: Dict[str, Decimal] = {}
        self.warnings: List[Inconsistency] = []
        self._checked: Dict[Tuple[str, str], bool] = {}

    def _exists(self, collection: str, doc_id: str) -> bool:
        key = (collection, doc_id)
        if key not in self._checked:
            self._checked[key] = self.repo.store.exists(collection, doc_id)
        return self._checked[key]

    def _warn(self, kind: str, collection: str, doc_id: str, detail: str) -> None:
        w = Inconsistency(kind=kind, collection=collection, doc_id=doc_id, detail=detail)
        if w in self.warnings:
            return
        self.warnings.append(w)
        logger.warning(
            "Cache update skipped, document missing",
            extra={
                "extra_data": {
                    "operation": self.operation,
                    "kind": kind,
                    "collection": collection,
                    "doc_id": doc_id,
                    "detail": detail,
                }
            },
        )

    def move_balance(self, user_id: str, delta: Decimal) -> None:
        if delta == ZERO or user_id == COMPANY_EXPENSE_OWNER:
            return
        if not self._exists(USERS, user_id):
            self._warn(MISSING_USER, USERS, user_id, f"balance delta {delta} not applied")
            return
        self.balance[user_id] = q2(self.balance.get(user_id, ZERO) + delta)

    def move_project(self, project_id: Optional[str], delta: Decimal) -> None:
        if delta == ZERO or project_id is None:
            return
        if not self._exists(PROJECTS, project_id):
            self._warn(MISSING_PROJECT, PROJECTS, project_id, f"expenses delta {delta} not applied")
            return
        self.project[project_id] = q2(self.project.get(project_id, ZERO) + delta)

    def commit(self) -> MutationResult:
        for user_id, delta in self.balance.items():
            if delta != ZERO:
                self.batch.increment(USERS, user_id, "balance", delta)
        for project_id, delta in self.project.items():
            if delta != ZERO:
                self.batch.increment(PROJECTS, project_id, "expenses", delta)
        self.batch.commit()
        result = MutationResult(
            operation=self.operation,
            ids=list(self.ids),
            balance_deltas={k: v for k, v in self.balance.items() if v != ZERO},
            project_deltas={k: v for k, v in self.project.items() if v != ZERO},
            warnings=list(self.warnings),
        )
        logger.info(
            "Mutation committed",
            extra={
                "extra_data": {
                    "operation": self.operation,
                    "ids": result.ids,
                    "balance_deltas": result.balance_deltas,
                    "project_deltas": result.project_deltas,
                    "warnings": len(result.warnings),
                }
            },
        )
        return result


class BalanceProtocol:
    """Single entry point for every balance-affecting write."""

    def __init__(self, store: DocumentStore, config: Optional[LedgerConfig] = None) -> None:
        self.store = store
        self.repo = LedgerRepository(store)
        self.config = config or get_app_config().ledger

    # ----------------------
    # HELPERS
    # ----------------------

    def _project_for_new_record(self, project_id: Optional[str], required: bool) -> Optional[Project]:
        if project_id is None or str(project_id).strip() == "":
            if required:
                raise ValidationError("project is required")
            return None
        project = self.repo.find_project(project_id)
        if project is None:
            raise ValidationError(f"unknown project: {project_id}")
        if project.status is ProjectStatus.DELETED:
            raise ValidationError(f"project {project_id} is deleted and takes no new records")
        return project

    def _user_name(self, user_id: str) -> str:
        user = self.repo.find_user(user_id)
        return user.display_name if user else ""

    def _expense_from_draft(
        self,
        draft: ExpenseDraft,
        amount: Decimal,
        project: Optional[Project],
        is_company: bool,
    ) -> Expense:
        if self.config.require_category and not draft.category.strip():
            raise ValidationError("category is required")
        owner = COMPANY_EXPENSE_OWNER if is_company else draft.user_id
        if not owner:
            raise ValidationError("user is required")
        return Expense(
            id=self.store.new_id(),
            user_id=owner,
            project_id=project.id if project else None,
            amount=amount,
            status=ExpenseStatus.PENDING,
            is_company_expense=is_company,
            event_name=draft.event_name,
            category=draft.category,
            date=_valid_date(draft.date),
            time=draft.time,
            merchant=draft.merchant,
            tax_id=draft.tax_id,
            invoice_number=draft.invoice_number,
            payment_method=draft.payment_method,
            description=draft.description,
            currency=draft.currency or self.config.currency,
            receipt_url=draft.receipt_url,
            voucher_url=draft.voucher_url,
            user_name="Gasto Empresa" if is_company else self._user_name(owner),
            project_name=project.name if project else "",
            created_at=now_iso(),
        )

    # ----------------------
    # EXPENSES
    # ----------------------

    def submit_expense(self, draft: ExpenseDraft, is_company: bool = False) -> MutationResult:
        """Create one pending expense; a non-company one credits the owner immediately."""
        amount = _positive(draft.amount)
        project = self._project_for_new_record(draft.project_id, self.config.require_project)
        expense = self._expense_from_draft(draft, amount, project, is_company)
        effect = transitions.submit_effect(amount, is_company)

        m = _Mutation(self.repo, "submit_expense")
        m.batch.create(EXPENSES, expense.id, expense.to_doc())
        m.ids.append(expense.id)
        m.move_balance(expense.user_id, effect.balance_delta)
        return m.commit()

    def submit_split(
        self,
        draft: ExpenseDraft,
        rows: Sequence[SplitRow],
        is_company: bool = False,
    ) -> MutationResult:
        """
        Distribute one receipt across several projects.

        draft.amount is the declared total. The rows must add up to it within
        `split_tolerance`; all rows plus a single balance increment of their sum go in
        one batch.
        """
        declared = _positive(draft.amount, "declared total")
        if not rows:
            raise ValidationError("split needs at least one row")
        amounts = [_positive(r.amount, "split row amount") for r in rows]
        projects = [self._project_for_new_record(r.project_id, True) for r in rows]
        split_sum = q2(sum(amounts, ZERO))
        if abs(split_sum - declared) > self.config.split_tolerance:
            raise ValidationError(f"split rows add up to {split_sum}, declared total is {declared}")

        group_id = self.store.new_id()
        m = _Mutation(self.repo, "submit_split")
        credit = ZERO
        for amount, project in zip(amounts, projects):
            base = self._expense_from_draft(draft, amount, project, is_company)
            expense = base.with_changes(
                split_group_id=group_id,
                description=draft.description + SPLIT_SUFFIX,
            )
            m.batch.create(EXPENSES, expense.id, expense.to_doc())
            m.ids.append(expense.id)
            credit += transitions.submit_effect(amount, is_company).balance_delta
        owner = COMPANY_EXPENSE_OWNER if is_company else draft.user_id
        m.move_balance(owner, q2(credit))
        return m.commit()

    def _apply_action(self, expense_id: str, action: ExpenseAction, reason: Optional[str] = None) -> MutationResult:
        expense = self.repo.get_expense(expense_id)
        locks.ensure_unlocked(expense)
        effect = transitions.transition(expense, action)

        m = _Mutation(self.repo, f"{action.value}_expense")
        if effect.removes_record:
            m.batch.delete(EXPENSES, expense.id)
        else:
            assert effect.next_status is not None
            fields: Dict[str, Any] = {"status": effect.next_status.value}
            if action is ExpenseAction.REJECT:
                fields["rejection_reason"] = reason
            m.batch.update(EXPENSES, expense.id, fields)
        m.ids.append(expense.id)
        m.move_balance(expense.user_id, effect.balance_delta)
        m.move_project(expense.project_id, effect.project_delta)
        return m.commit()

    def approve_expense(self, expense_id: str) -> MutationResult:
        return self._apply_action(expense_id, ExpenseAction.APPROVE)

    def reject_expense(self, expense_id: str, reason: Optional[str] = None) -> MutationResult:
        """Reject with a mandatory reason; a blank one is refused before anything is read or written."""
        text = (reason or "").strip()
        if not text:
            raise ValidationError("rejection reason is required")
        return self._apply_action(expense_id, ExpenseAction.REJECT, text)

    def delete_expense(self, expense_id: str) -> MutationResult:
        return self._apply_action(expense_id, ExpenseAction.DELETE)

    def edit_expense(self, expense_id: str, **changes: Any) -> MutationResult:
        """Edit an unlocked expense in place. Owner, status and company flag are fixed."""
        unknown = set(changes) - EDITABLE_EXPENSE_FIELDS
        if unknown:
            raise ValidationError(f"fields not editable: {sorted(unknown)}")
        before = self.repo.get_expense(expense_id)
        locks.ensure_unlocked(before)

        updates: Dict[str, Any] = {}
        if "amount" in changes:
            updates["amount"] = _positive(changes["amount"])
        if "project_id" in changes and changes["project_id"] != before.project_id:
            project = self._project_for_new_record(changes["project_id"], self.config.require_project)
            updates["project_id"] = project.id if project else None
            updates["project_name"] = project.name if project else ""
        if "date" in changes:
            updates["date"] = _valid_date(changes["date"])
        if "category" in changes and self.config.require_category and not str(changes["category"] or "").strip():
            raise ValidationError("category is required")
        for name in EDITABLE_EXPENSE_FIELDS - {"amount", "project_id", "date"}:
            if name in changes:
                updates[name] = changes[name]
        after = before.with_changes(**updates)
        effect = transitions.edit_effect(before, after)

        m = _Mutation(self.repo, "edit_expense")
        doc = after.to_doc()
        m.batch.update(EXPENSES, before.id, {k: doc[k] for k in updates})
        m.ids.append(before.id)
        m.move_balance(before.user_id, effect.balance_delta)
        for project_id, delta in effect.project_deltas.items():
            m.move_project(project_id, delta)
        return m.commit()

    # ----------------------
    # ALLOCATIONS
    # ----------------------

    def create_allocation(
        self,
        user_id: str,
        project_id: str,
        amount: MoneyInput,
        date: Optional[str] = None,
    ) -> MutationResult:
        """Grant funds to a user for a project: balance moves by -amount."""
        value = _positive(amount)
        project = self._project_for_new_record(project_id, True)
        assert project is not None
        allocation = Allocation(
            id=self.store.new_id(),
            user_id=user_id,
            project_id=project.id,
            amount=value,
            date=_valid_date(date),
            user_name=self._user_name(user_id),
            project_name=project.name,
            created_at=now_iso(),
        )
        m = _Mutation(self.repo, "create_allocation")
        m.batch.create(ALLOCATIONS, allocation.id, allocation.to_doc())
        m.ids.append(allocation.id)
        m.move_balance(user_id, formulas.allocation_delta(value))
        return m.commit()

    def edit_allocation(
        self,
        allocation_id: str,
        amount: Optional[MoneyInput] = None,
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
        date: Optional[str] = None,
    ) -> MutationResult:
        """
        Change amount / user / project / date of an allocation.

        Same user: balance moves by -(a' - a). New user: the old one gets +a back and
        the new one takes -a'. Transfer legs keep their sign.
        """
        before = self.repo.get_allocation(allocation_id)
        new_amount = before.amount if amount is None else to_money(amount)
        if new_amount == ZERO:
            raise ValidationError("amount must not be zero")
        if (new_amount > ZERO) != (before.amount > ZERO):
            raise ValidationError("amount cannot change sign")
        new_user = before.user_id if user_id is None else user_id
        if not new_user:
            raise ValidationError("user is required")

        updates: Dict[str, Any] = {"amount": new_amount}
        if project_id is not None and project_id != before.project_id:
            project = self._project_for_new_record(project_id, True)
            assert project is not None
            updates["project_id"] = project.id
            updates["project_name"] = project.name
        if date is not None:
            updates["date"] = _valid_date(date)
        if new_user != before.user_id:
            updates["user_id"] = new_user
            updates["user_name"] = self._user_name(new_user)
        after = replace(before, **updates)

        m = _Mutation(self.repo, "edit_allocation")
        doc = after.to_doc()
        m.batch.update(ALLOCATIONS, before.id, {k: doc[k] for k in updates})
        m.ids.append(before.id)
        if new_user == before.user_id:
            m.move_balance(new_user, formulas.allocation_delta(new_amount - before.amount))
        else:
            m.move_balance(before.user_id, -formulas.allocation_delta(before.amount))
            m.move_balance(new_user, formulas.allocation_delta(new_amount))
        return m.commit()

    def delete_allocation(self, allocation_id: str) -> MutationResult:
        allocation = self.repo.get_allocation(allocation_id)
        m = _Mutation(self.repo, "delete_allocation")
        m.batch.delete(ALLOCATIONS, allocation.id)
        m.ids.append(allocation.id)
        m.move_balance(allocation.user_id, -formulas.allocation_delta(allocation.amount))
        return m.commit()

    def transfer_funds(
        self,
        user_id: str,
        source_project_id: str,
        target_project_id: str,
        amount: MoneyInput,
        date: Optional[str] = None,
    ) -> MutationResult:
        """Move previously granted funds between two projects of the same user. Balance-neutral."""
        if not user_id:
            raise ValidationError("user is required")
        value = _positive(amount)
        if source_project_id == target_project_id:
            raise ValidationError("target project must differ from source project")
        source = self._project_for_new_record(source_project_id, True)
        target = self._project_for_new_record(target_project_id, True)
        assert source is not None and target is not None
        when = _valid_date(date)
        user_name = self._user_name(user_id)
        created = now_iso()

        legs = [
            Allocation(
                id=self.store.new_id(),
                user_id=user_id,
                project_id=source.id,
                amount=-value,
                date=when,
                type=AllocationType.TRANSFER_OUT,
                user_name=user_name,
                project_name=source.name,
                created_at=created,
            ),
            Allocation(
                id=self.store.new_id(),
                user_id=user_id,
                project_id=target.id,
                amount=value,
                date=when,
                type=AllocationType.TRANSFER_IN,
                user_name=user_name,
                project_name=target.name,
                created_at=created,
            ),
        ]
        m = _Mutation(self.repo, "transfer_funds")
        net = ZERO
        for leg in legs:
            m.batch.create(ALLOCATIONS, leg.id, leg.to_doc())
            m.ids.append(leg.id)
            net += formulas.allocation_delta(leg.amount)
        # net is zero: the user document is not touched
        m.move_balance(user_id, q2(net))
        return m.commit()
