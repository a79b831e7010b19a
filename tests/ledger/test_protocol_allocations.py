# tests/ledger/test_protocol_allocations.py
from __future__ import annotations

from decimal import Decimal

import pytest

from core import formulas
from core.errors import NotFoundError, ValidationError
from core.models import ALLOCATIONS, AllocationType
from infra.config_loader import AccountsConfig
from tests.ledger_helpers import balance_of
from viaticos.accounts import AccountService
from viaticos.protocol import MISSING_USER, BalanceProtocol

D = Decimal


def test_allocation_debits_user(ledger: BalanceProtocol) -> None:
    res = ledger.create_allocation("u1", "pA", "100000", date="2026-03-01")
    assert res.balance_deltas == {"u1": D("-100000.00")}
    a = ledger.repo.get_allocation(res.id)
    assert a.amount == D("100000.00")
    assert a.type is None
    assert a.user_name == "U1"
    assert a.project_name == "Proyecto pA"
    assert a.date == "2026-03-01"
    assert balance_of(ledger, "u1") == D("-100000.00")


@pytest.mark.parametrize(
    "user,project,amount",
    [("u1", "pA", "0"), ("u1", "pA", "-10"), ("u1", "", "10"), ("u1", "nope", "10")],
)
def test_invalid_allocation_writes_nothing(ledger: BalanceProtocol, user: str, project: str, amount: str) -> None:
    with pytest.raises(ValidationError):
        ledger.create_allocation(user, project, amount)
    assert ledger.store.count(ALLOCATIONS) == 0


def test_allocation_for_missing_user_is_recorded_with_warning(ledger: BalanceProtocol) -> None:
    res = ledger.create_allocation("ghost", "pA", "10")
    assert [w.kind for w in res.warnings] == [MISSING_USER]
    assert ledger.repo.find_allocation(res.id) is not None


def test_edit_amount_same_user(ledger: BalanceProtocol) -> None:
    aid = ledger.create_allocation("u1", "pA", "100000").id
    res = ledger.edit_allocation(aid, amount="80000")
    assert res.balance_deltas == {"u1": D("20000.00")}
    assert balance_of(ledger, "u1") == D("-80000.00")


def test_edit_reassigns_user(ledger: BalanceProtocol) -> None:
    aid = ledger.create_allocation("u1", "pA", "100000").id
    ledger.edit_allocation(aid, amount="90000", user_id="u2", project_id="pB")
    a = ledger.repo.get_allocation(aid)
    assert (a.user_id, a.user_name, a.project_id, a.amount) == ("u2", "U2", "pB", D("90000.00"))
    assert balance_of(ledger, "u1") == D("0.00")
    assert balance_of(ledger, "u2") == D("-90000.00")


@pytest.mark.parametrize("amount", ["0", "-5"])
def test_edit_rejects_zero_or_sign_flip(ledger: BalanceProtocol, amount: str) -> None:
    aid = ledger.create_allocation("u1", "pA", "100").id
    with pytest.raises(ValidationError):
        ledger.edit_allocation(aid, amount=amount)
    assert balance_of(ledger, "u1") == D("-100.00")


def test_delete_allocation_restores_balance(ledger: BalanceProtocol) -> None:
    aid = ledger.create_allocation("u1", "pA", "100").id
    ledger.delete_allocation(aid)
    assert ledger.repo.find_allocation(aid) is None
    assert balance_of(ledger, "u1") == D("0.00")
    with pytest.raises(NotFoundError):
        ledger.delete_allocation(aid)


def test_transfer_is_balance_neutral(ledger: BalanceProtocol) -> None:
    ledger.create_allocation("u1", "pA", "100000")
    res = ledger.transfer_funds("u1", "pA", "pB", "20000")
    assert res.balance_deltas == {}
    assert res.ok
    assert balance_of(ledger, "u1") == D("-100000.00")

    legs = [ledger.repo.get_allocation(i) for i in res.ids]
    assert [(leg.type, leg.project_id, leg.amount) for leg in legs] == [
        (AllocationType.TRANSFER_OUT, "pA", D("-20000.00")),
        (AllocationType.TRANSFER_IN, "pB", D("20000.00")),
    ]
    allocs = ledger.repo.allocations()
    assert formulas.project_assigned("pA", allocs) == D("80000.00")
    assert formulas.project_assigned("pB", allocs) == D("20000.00")


@pytest.mark.parametrize(
    "src,dst,amount",
    [("pA", "pA", "10"), ("pA", "pB", "0"), ("pA", "nope", "10"), ("pA", "pB", "-1")],
)
def test_invalid_transfer_writes_nothing(ledger: BalanceProtocol, src: str, dst: str, amount: str) -> None:
    with pytest.raises(ValidationError):
        ledger.transfer_funds("u1", src, dst, amount)
    assert ledger.store.count(ALLOCATIONS) == 0


def test_transfer_leg_keeps_its_sign_on_edit(ledger: BalanceProtocol) -> None:
    out_id = ledger.transfer_funds("u1", "pA", "pB", "500").ids[0]
    ledger.edit_allocation(out_id, amount="-300")
    assert balance_of(ledger, "u1") == D("-200.00")
    with pytest.raises(ValidationError):
        ledger.edit_allocation(out_id, amount="300")


def test_transfer_for_missing_user_warns_nothing(ledger: BalanceProtocol) -> None:
    res = ledger.transfer_funds("ghost", "pA", "pB", "10")
    assert res.warnings == []
    assert len(res.ids) == 2


def test_deleted_project_takes_no_new_allocations(ledger: BalanceProtocol) -> None:
    aid = ledger.create_allocation("u1", "pB", "1000").id
    AccountService(ledger.store, AccountsConfig()).soft_delete_project("pA")

    with pytest.raises(ValidationError):
        ledger.create_allocation("u1", "pA", "500")
    with pytest.raises(ValidationError):
        ledger.transfer_funds("u1", "pB", "pA", "50")
    with pytest.raises(ValidationError):
        ledger.transfer_funds("u1", "pA", "pB", "50")
    with pytest.raises(ValidationError):
        ledger.edit_allocation(aid, project_id="pA")
    assert ledger.store.count(ALLOCATIONS) == 1
    assert balance_of(ledger, "u1") == D("-1000.00")


def test_allocation_on_deleted_project_can_still_be_undone(ledger: BalanceProtocol) -> None:
    aid = ledger.create_allocation("u1", "pA", "1000").id
    AccountService(ledger.store, AccountsConfig()).soft_delete_project("pA")
    ledger.edit_allocation(aid, amount="800")
    ledger.delete_allocation(aid)
    assert balance_of(ledger, "u1") == D("0.00")
