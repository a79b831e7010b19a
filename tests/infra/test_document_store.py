# tests/infra/test_document_store.py
from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import deal
import pytest
from hypothesis import given, settings, strategies as st

from core.models import ExpenseStatus
from infra.document_store import (
    DocumentExistsError,
    DocumentNotFoundError,
    DocumentStore,
    StoreError,
)

_DELTA = st.decimals(
    min_value=Decimal("-1000000.00"),
    max_value=Decimal("1000000.00"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


def test_create_then_get_adds_id(store: DocumentStore) -> None:
    n = store.batch().create("users", "u1", {"email": "a@x.cl", "balance": "0.00"}).commit()
    assert n == 1
    doc = store.get("users", "u1")
    assert doc == {"id": "u1", "email": "a@x.cl", "balance": "0.00"}
    assert store.exists("users", "u1")
    assert store.get("users", "nope") is None
    assert store.count("users") == 1


def test_failed_update_rolls_back_whole_batch(store: DocumentStore) -> None:
    store.batch().create("users", "u1", {"balance": "10.00"}).commit()
    b = store.batch()
    b.increment("users", "u1", "balance", Decimal("5.00"))
    b.create("expenses", "e1", {"amount": "5.00"})
    b.update("projects", "missing", {"expenses": "1.00"})
    with pytest.raises(DocumentNotFoundError) as ei:
        b.commit()
    assert ei.value.collection == "projects"
    assert store.get("users", "u1")["balance"] == "10.00"
    assert store.exists("expenses", "e1") is False


def test_create_existing_id_fails(store: DocumentStore) -> None:
    store.batch().create("projects", "p1", {"name": "A"}).commit()
    with pytest.raises(DocumentExistsError):
        store.batch().create("projects", "p1", {"name": "B"}).commit()
    assert store.get("projects", "p1")["name"] == "A"


def test_set_replaces_and_delete_removes(store: DocumentStore) -> None:
    store.batch().set("projects", "p1", {"name": "A", "code": "X"}).commit()
    store.batch().set("projects", "p1", {"name": "B"}).commit()
    assert store.get("projects", "p1") == {"id": "p1", "name": "B"}
    store.batch().delete("projects", "p1").commit()
    assert store.get("projects", "p1") is None


def test_increment_missing_field_starts_at_zero(store: DocumentStore) -> None:
    store.batch().create("projects", "p1", {"name": "A"}).commit()
    store.batch().increment("projects", "p1", "expenses", Decimal("12.50")).commit()
    store.batch().increment("projects", "p1", "expenses", Decimal("-2.50")).commit()
    assert store.get("projects", "p1")["expenses"] == "10.00"


@settings(max_examples=50, deadline=None)
@given(st.lists(_DELTA, min_size=1, max_size=15))
def test_increments_compose(deltas: list[Decimal]) -> None:
    s = DocumentStore(":memory:")
    try:
        s.batch().create("users", "u1", {"balance": "0.00"}).commit()
        b = s.batch()
        for d in deltas:
            b.increment("users", "u1", "balance", d)
        b.commit()
        assert Decimal(s.get("users", "u1")["balance"]) == sum(deltas, Decimal("0"))
    finally:
        s.close()


def test_increment_contract_rejects_float(store: DocumentStore) -> None:
    with pytest.raises(deal.PreContractError):
        store.batch().increment("users", "u1", "balance", 1.5)  # type: ignore[arg-type]


def test_query_filters_none_bool_and_enum(store: DocumentStore) -> None:
    b = store.batch()
    b.create("expenses", "e1", {"status": "pending", "is_company_expense": False, "invoice_id": None})
    b.create("expenses", "e2", {"status": "approved", "is_company_expense": True, "invoice_id": "i1"})
    b.create("expenses", "e3", {"status": "approved", "is_company_expense": False})
    b.commit()

    assert [d["id"] for d in store.query("expenses", invoice_id=None)] == ["e1", "e3"]
    assert [d["id"] for d in store.query("expenses", is_company_expense=True)] == ["e2"]
    assert [d["id"] for d in store.query("expenses", status=ExpenseStatus.APPROVED)] == ["e2", "e3"]
    assert [d["id"] for d in store.all("expenses")] == ["e1", "e2", "e3"]


def test_batch_commits_once(store: DocumentStore) -> None:
    b = store.batch().create("users", "u1", {})
    b.commit()
    with pytest.raises(StoreError):
        b.commit()


def test_empty_batch_commits_nothing(store: DocumentStore) -> None:
    assert store.batch().commit() == 0


def test_file_store_persists(tmp_path: Path) -> None:
    db = str(tmp_path / "sub" / "ledger.db")
    s = DocumentStore(db)
    s.batch().create("users", "u1", {"balance": "1.00"}).commit()
    s.close()

    again = DocumentStore(db)
    try:
        assert again.get("users", "u1")["balance"] == "1.00"
    finally:
        again.close()


def test_new_ids_are_unique() -> None:
    assert len({DocumentStore.new_id() for _ in range(100)}) == 100
