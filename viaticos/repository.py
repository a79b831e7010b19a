"""Typed reads over the document store.

Writes never go through here: every mutation is composed by the caller into one
WriteBatch so it commits atomically.
"""
from __future__ import annotations

from typing import List, Optional

from core.errors import NotFoundError
from core.models import (
    ALLOCATIONS,
    EXPENSES,
    INVOICES,
    PROJECTS,
    USERS,
    Allocation,
    Expense,
    ExpenseStatus,
    Invoice,
    PaymentStatus,
    Project,
    ProjectStatus,
    User,
)
from infra.document_store import DocumentStore


class LedgerRepository:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    # ----------------------
    # USERS
    # ----------------------

    def find_user(self, user_id: str) -> Optional[User]:
        d = self.store.get(USERS, user_id)
        return User.from_doc(d) if d else None

    def get_user(self, user_id: str) -> User:
        user = self.find_user(user_id)
        if user is None:
            raise NotFoundError(USERS, user_id)
        return user

    def users(self) -> List[User]:
        return [User.from_doc(d) for d in self.store.all(USERS)]

    def users_by_email(self, email: str) -> List[User]:
        return [User.from_doc(d) for d in self.store.query(USERS, email=email)]

    # ----------------------
    # PROJECTS
    # ----------------------

    def find_project(self, project_id: str) -> Optional[Project]:
        d = self.store.get(PROJECTS, project_id)
        return Project.from_doc(d) if d else None

    def get_project(self, project_id: str) -> Project:
        project = self.find_project(project_id)
        if project is None:
            raise NotFoundError(PROJECTS, project_id)
        return project

    def projects(self, include_deleted: bool = True) -> List[Project]:
        out = [Project.from_doc(d) for d in self.store.all(PROJECTS)]
        if include_deleted:
            return out
        return [p for p in out if p.status is not ProjectStatus.DELETED]

    # ----------------------
    # ALLOCATIONS
    # ----------------------

    def find_allocation(self, allocation_id: str) -> Optional[Allocation]:
        d = self.store.get(ALLOCATIONS, allocation_id)
        return Allocation.from_doc(d) if d else None

    def get_allocation(self, allocation_id: str) -> Allocation:
        allocation = self.find_allocation(allocation_id)
        if allocation is None:
            raise NotFoundError(ALLOCATIONS, allocation_id)
        return allocation

    def allocations(self, user_id: Optional[str] = None, project_id: Optional[str] = None) -> List[Allocation]:
        filters = {}
        if user_id is not None:
            filters["user_id"] = user_id
        if project_id is not None:
            filters["project_id"] = project_id
        return [Allocation.from_doc(d) for d in self.store.query(ALLOCATIONS, **filters)]

    # ----------------------
    # EXPENSES
    # ----------------------

    def find_expense(self, expense_id: str) -> Optional[Expense]:
        d = self.store.get(EXPENSES, expense_id)
        return Expense.from_doc(d) if d else None

    def get_expense(self, expense_id: str) -> Expense:
        expense = self.find_expense(expense_id)
        if expense is None:
            raise NotFoundError(EXPENSES, expense_id)
        return expense

    def expenses(
        self,
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
        status: Optional[ExpenseStatus] = None,
    ) -> List[Expense]:
        filters = {}
        if user_id is not None:
            filters["user_id"] = user_id
        if project_id is not None:
            filters["project_id"] = project_id
        if status is not None:
            filters["status"] = status
        return [Expense.from_doc(d) for d in self.store.query(EXPENSES, **filters)]

    def expenses_by_invoice(self, invoice_id: str) -> List[Expense]:
        return [Expense.from_doc(d) for d in self.store.query(EXPENSES, invoice_id=invoice_id)]

    def expenses_in_split_group(self, split_group_id: str) -> List[Expense]:
        return [Expense.from_doc(d) for d in self.store.query(EXPENSES, split_group_id=split_group_id)]

    # ----------------------
    # INVOICES
    # ----------------------

    def find_invoice(self, invoice_id: str) -> Optional[Invoice]:
        d = self.store.get(INVOICES, invoice_id)
        return Invoice.from_doc(d) if d else None

    def get_invoice(self, invoice_id: str) -> Invoice:
        invoice = self.find_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError(INVOICES, invoice_id)
        return invoice

    def invoices(self, payment_status: Optional[PaymentStatus] = None) -> List[Invoice]:
        if payment_status is None:
            docs = self.store.all(INVOICES)
        else:
            docs = self.store.query(INVOICES, payment_status=payment_status)
        return [Invoice.from_doc(d) for d in docs]
