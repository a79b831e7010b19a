"""
Record types of the ledger and their document mapping.

Documents are JSON objects; money is stored as decimal strings (see core.money).
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from core import money
from core.money import ZERO

USERS = "users"
PROJECTS = "projects"
ALLOCATIONS = "allocations"
EXPENSES = "expenses"
INVOICES = "invoices"

# Owner id of expenses charged straight to a project; never a real user.
COMPANY_EXPENSE_OWNER = "company_expense"


class Role(str, Enum):
    ADMIN = "admin"
    PROFESSIONAL = "professional"


class ExpenseStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AllocationType(str, Enum):
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"


class ProjectType(str, Enum):
    PROJECT = "project"
    PETTY_CASH = "petty_cash"


class ProjectStatus(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    ANNULLED = "annulled"


def _opt(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


@dataclass(frozen=True, slots=True)
class User:
    id: str
    email: str
    display_name: str
    role: Role = Role.PROFESSIONAL
    balance: Decimal = ZERO

    def to_doc(self) -> Dict[str, Any]:
        return {
            "email": self.email,
            "display_name": self.display_name,
            "role": self.role.value,
            "balance": money.to_doc(self.balance),
        }

    @staticmethod
    def from_doc(d: Dict[str, Any]) -> "User":
        return User(
            id=str(d["id"]),
            email=str(d.get("email", "")),
            display_name=str(d.get("display_name", "")),
            role=Role(d.get("role", Role.PROFESSIONAL.value)),
            balance=money.from_doc(d.get("balance")),
        )


@dataclass(frozen=True, slots=True)
class Project:
    id: str
    name: str
    client: str = ""
    code: str = ""
    recurrence: str = ""
    type: ProjectType = ProjectType.PROJECT
    status: ProjectStatus = ProjectStatus.ACTIVE
    expenses: Decimal = ZERO
    created_at: str = ""

    @property
    def is_petty_cash(self) -> bool:
        return self.type is ProjectType.PETTY_CASH or "caja chica" in self.name.lower()

    def to_doc(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "client": self.client,
            "code": self.code,
            "recurrence": self.recurrence,
            "type": self.type.value,
            "status": self.status.value,
            "expenses": money.to_doc(self.expenses),
            "created_at": self.created_at,
        }

    @staticmethod
    def from_doc(d: Dict[str, Any]) -> "Project":
        return Project(
            id=str(d["id"]),
            name=str(d.get("name", "")),
            client=str(d.get("client") or ""),
            code=str(d.get("code") or ""),
            recurrence=str(d.get("recurrence") or ""),
            type=ProjectType(d.get("type") or ProjectType.PROJECT.value),
            status=ProjectStatus(d.get("status") or ProjectStatus.ACTIVE.value),
            expenses=money.from_doc(d.get("expenses")),
            created_at=str(d.get("created_at") or ""),
        )


@dataclass(frozen=True, slots=True)
class Allocation:
    """Funds given to a user for a project. Signed: transfer_out legs are negative."""

    id: str
    user_id: str
    project_id: Optional[str]
    amount: Decimal
    date: str
    type: Optional[AllocationType] = None
    user_name: str = ""
    project_name: str = ""
    created_at: str = ""

    def to_doc(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "user_name": self.user_name,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "amount": money.to_doc(self.amount),
            "date": self.date,
            "type": self.type.value if self.type else None,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_doc(d: Dict[str, Any]) -> "Allocation":
        t = d.get("type")
        return Allocation(
            id=str(d["id"]),
            user_id=str(d.get("user_id", "")),
            project_id=_opt(d.get("project_id")),
            amount=money.from_doc(d.get("amount")),
            date=str(d.get("date") or ""),
            type=AllocationType(t) if t else None,
            user_name=str(d.get("user_name") or ""),
            project_name=str(d.get("project_name") or ""),
            created_at=str(d.get("created_at") or ""),
        )


@dataclass(frozen=True, slots=True)
class Expense:
    """A rendered item. `amount` is positive; `invoice_id` set means locked."""

    id: str
    user_id: str
    project_id: Optional[str]
    amount: Decimal
    status: ExpenseStatus = ExpenseStatus.PENDING
    is_company_expense: bool = False
    invoice_id: Optional[str] = None
    split_group_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    event_name: str = ""
    category: str = ""
    date: str = ""
    time: Optional[str] = None
    merchant: Optional[str] = None
    tax_id: Optional[str] = None
    invoice_number: Optional[str] = None
    payment_method: Optional[str] = None
    description: str = ""
    currency: str = "COP"
    receipt_url: Optional[str] = None
    voucher_url: Optional[str] = None
    user_name: str = ""
    project_name: str = ""
    created_at: str = ""

    @property
    def is_locked(self) -> bool:
        return self.invoice_id is not None

    def with_changes(self, **changes: Any) -> "Expense":
        return replace(self, **changes)

    def to_doc(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "user_name": self.user_name,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "amount": money.to_doc(self.amount),
            "status": self.status.value,
            "is_company_expense": self.is_company_expense,
            "invoice_id": self.invoice_id,
            "split_group_id": self.split_group_id,
            "rejection_reason": self.rejection_reason,
            "event_name": self.event_name,
            "category": self.category,
            "date": self.date,
            "time": self.time,
            "merchant": self.merchant,
            "tax_id": self.tax_id,
            "invoice_number": self.invoice_number,
            "payment_method": self.payment_method,
            "description": self.description,
            "currency": self.currency,
            "receipt_url": self.receipt_url,
            "voucher_url": self.voucher_url,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_doc(d: Dict[str, Any]) -> "Expense":
        return Expense(
            id=str(d["id"]),
            user_id=str(d.get("user_id", "")),
            project_id=_opt(d.get("project_id")),
            amount=money.from_doc(d.get("amount")),
            status=ExpenseStatus(d.get("status") or ExpenseStatus.PENDING.value),
            is_company_expense=bool(d.get("is_company_expense", False)),
            invoice_id=_opt(d.get("invoice_id")),
            split_group_id=_opt(d.get("split_group_id")),
            rejection_reason=_opt(d.get("rejection_reason")),
            event_name=str(d.get("event_name") or ""),
            category=str(d.get("category") or ""),
            date=str(d.get("date") or ""),
            time=_opt(d.get("time")),
            merchant=_opt(d.get("merchant")),
            tax_id=_opt(d.get("tax_id")),
            invoice_number=_opt(d.get("invoice_number")),
            payment_method=_opt(d.get("payment_method")),
            description=str(d.get("description") or ""),
            currency=str(d.get("currency") or "COP"),
            receipt_url=_opt(d.get("receipt_url")),
            voucher_url=_opt(d.get("voucher_url")),
            user_name=str(d.get("user_name") or ""),
            project_name=str(d.get("project_name") or ""),
            created_at=str(d.get("created_at") or ""),
        )


@dataclass(frozen=True, slots=True)
class CustomItem:
    description: str
    amount: Decimal

    def to_doc(self) -> Dict[str, Any]:
        return {"description": self.description, "amount": money.to_doc(self.amount)}

    @staticmethod
    def from_doc(d: Dict[str, Any]) -> "CustomItem":
        return CustomItem(description=str(d.get("description") or ""), amount=money.from_doc(d.get("amount")))


@dataclass(frozen=True, slots=True)
class Invoice:
    id: str
    project_id: str
    client_id: str
    expense_ids: Tuple[str, ...]
    total_amount: Decimal
    total_expenses: Decimal = ZERO
    total_custom_items: Decimal = ZERO
    custom_items: Tuple[CustomItem, ...] = field(default_factory=tuple)
    payment_status: PaymentStatus = PaymentStatus.PENDING
    project_name: str = ""
    glosa: str = ""
    references: str = ""
    document_type: str = ""
    created_at: str = ""
    paid_at: Optional[str] = None
    payment_amount: Optional[Decimal] = None
    payment_reference: Optional[str] = None

    @property
    def item_count(self) -> int:
        return len(self.expense_ids) + len(self.custom_items)

    def to_doc(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "project_name": self.project_name,
            "client_id": self.client_id,
            "expense_ids": list(self.expense_ids),
            "custom_items": [c.to_doc() for c in self.custom_items],
            "total_amount": money.to_doc(self.total_amount),
            "total_expenses": money.to_doc(self.total_expenses),
            "total_custom_items": money.to_doc(self.total_custom_items),
            "item_count": self.item_count,
            "payment_status": self.payment_status.value,
            "glosa": self.glosa,
            "references": self.references,
            "document_type": self.document_type,
            "created_at": self.created_at,
            "paid_at": self.paid_at,
            "payment_amount": None if self.payment_amount is None else money.to_doc(self.payment_amount),
            "payment_reference": self.payment_reference,
        }

    @staticmethod
    def from_doc(d: Dict[str, Any]) -> "Invoice":
        pay = d.get("payment_amount")
        return Invoice(
            id=str(d["id"]),
            project_id=str(d.get("project_id") or ""),
            client_id=str(d.get("client_id") or ""),
            expense_ids=tuple(str(x) for x in d.get("expense_ids") or ()),
            total_amount=money.from_doc(d.get("total_amount")),
            total_expenses=money.from_doc(d.get("total_expenses")),
            total_custom_items=money.from_doc(d.get("total_custom_items")),
            custom_items=tuple(CustomItem.from_doc(c) for c in d.get("custom_items") or ()),
            payment_status=PaymentStatus(d.get("payment_status") or PaymentStatus.PENDING.value),
            project_name=str(d.get("project_name") or ""),
            glosa=str(d.get("glosa") or ""),
            references=str(d.get("references") or ""),
            document_type=str(d.get("document_type") or ""),
            created_at=str(d.get("created_at") or ""),
            paid_at=_opt(d.get("paid_at")),
            payment_amount=None if pay is None else money.from_doc(pay),
            payment_reference=_opt(d.get("payment_reference")),
        )
