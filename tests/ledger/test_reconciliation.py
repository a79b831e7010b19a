# tests/ledger/test_reconciliation.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from pathlib import Path

import openpyxl
import pytest

from core.errors import InvoiceStateError
from core.models import Invoice, PaymentStatus
from infra.config_loader import ReconciliationConfig
from infra.document_store import DocumentStore
from infra.result import Err, Ok
from tests.ledger_helpers import balance_of, seed_project
from viaticos.invoicing import InvoiceService, custom_item
from viaticos.protocol import BalanceProtocol
from viaticos.reconciliation import (
    Movement,
    Reconciler,
    match_movements,
    parse_amount,
    parse_movement_date,
    parse_statement_text,
    parse_workbook,
)

D = Decimal

STATEMENT = """Banco Estado - Cartola histórica
Cuenta,00-123-45678
Fecha,Descripción,Cargos,Abonos
01/03/2026,Transferencia ACME SpA,,"1.500.000"
02/03/2026,Pago proveedor,"250.000",
03-03-26,Depósito cheque,,"99.999,50"
04/03/2026,Abono raro,,xx
,,,
05/03/2026,,,"10"
"""


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("1.500.000", Ok(D("1500000.00"))),
        ("$ 1.500.000", Ok(D("1500000.00"))),
        ("99.999,50", Ok(D("99999.50"))),
        ("(2.000)", Ok(D("-2000.00"))),
        ("-2.000", Ok(D("-2000.00"))),
        ("2.000-", Ok(D("-2000.00"))),
        ("", Err("empty amount")),
    ],
)
def test_parse_amount(raw: str, expected) -> None:
    assert parse_amount(raw) == expected


@pytest.mark.parametrize("raw", ["abc", ",", "$"])
def test_parse_amount_rejects(raw: str) -> None:
    assert parse_amount(raw).is_err()


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("01/03/2026", "2026-03-01"),
        ("1-3-26", "2026-03-01"),
        ("2026-03-01", "2026-03-01"),
        ("31/02/2026", None),
        ("", None),
        ("marzo", None),
    ],
)
def test_parse_movement_date(raw: str, expected) -> None:
    assert parse_movement_date(raw) == expected


def test_parse_statement_finds_header_and_keeps_credits() -> None:
    parsed = parse_statement_text(STATEMENT, bank="Banco Estado")
    assert [(m.line, m.date, m.description, m.amount) for m in parsed.movements] == [
        (4, "2026-03-01", "Transferencia ACME SpA", D("1500000.00")),
        (6, "2026-03-03", "Depósito cheque", D("99999.50")),
        (9, "2026-03-05", "Sin descripción", D("10.00")),
    ]
    assert all(m.bank == "Banco Estado" for m in parsed.movements)
    assert parsed.skipped == 1
    assert [e.line for e in parsed.errors] == [7]


def test_parse_statement_with_amount_and_bank_columns() -> None:
    text = "Date,Description,Amount,Bank\n2026-03-01,Pago,1000,BCI\n2026-03-02,Cargo,-50,BCI\n"
    parsed = parse_statement_text(text)
    assert [(m.amount, m.bank) for m in parsed.movements] == [(D("1000.00"), "BCI")]
    assert parsed.skipped == 1


def test_parse_statement_without_header() -> None:
    parsed = parse_statement_text("a,b,c\n1,2,3\n")
    assert parsed.movements == []
    assert [e.line for e in parsed.errors] == [0]


def _write_workbook(path: Path, rows: list) -> Path:
    wb = openpyxl.Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    wb.save(path)
    return path


def test_parse_workbook_reads_dates_and_numbers(tmp_path: Path) -> None:
    path = _write_workbook(
        tmp_path / "cartola.xlsx",
        [
            ["Banco de Chile - Cartola histórica"],
            ["Cuenta", "00-123-45678"],
            ["Fecha", "Descripción", "Cargos", "Abonos"],
            [datetime(2026, 3, 1), "Transferencia ACME SpA", None, 1500000],
            [datetime(2026, 3, 2), "Pago proveedor", 250000, None],
            [46086, "Depósito cheque", None, 99999.5],
            ["06/03/2026", "Abono en texto", None, "1.234,50"],
        ],
    )
    parsed = parse_workbook(path, bank="Banco de Chile")
    assert [(m.line, m.date, m.description, m.amount) for m in parsed.movements] == [
        (4, "2026-03-01", "Transferencia ACME SpA", D("1500000.00")),
        (6, "2026-03-05", "Depósito cheque", D("99999.50")),
        (7, "2026-03-06", "Abono en texto", D("1234.50")),
    ]
    assert all(m.bank == "Banco de Chile" for m in parsed.movements)
    assert parsed.skipped == 1
    assert parsed.errors == []


def test_parse_workbook_without_header(tmp_path: Path) -> None:
    path = _write_workbook(tmp_path / "vacia.xlsx", [["a", "b"], [1, 2]])
    parsed = parse_workbook(path)
    assert parsed.movements == []
    assert [e.line for e in parsed.errors] == [0]


def _inv(inv_id: str, total: str, status: PaymentStatus = PaymentStatus.PENDING) -> Invoice:
    return Invoice(id=inv_id, project_id="pA", client_id="ACME", expense_ids=(), total_amount=D(total), payment_status=status)


def _mov(amount: str, line: int = 2) -> Movement:
    return Movement(line=line, date="2026-03-01", description=f"mov {amount}", amount=D(amount), bank="")


def test_match_tolerance_is_strict() -> None:
    invoices = [_inv("i1", "1000")]
    matches, unmatched = match_movements([_mov("1009.99")], invoices, D("10"))
    assert [m.invoice.id for m in matches] == ["i1"]
    assert matches[0].reason == "Monto exacto"
    matches, unmatched = match_movements([_mov("1010")], invoices, D("10"))
    assert matches == []
    assert len(unmatched) == 1


def test_each_invoice_matches_once_and_only_pending() -> None:
    invoices = [_inv("paid", "500", PaymentStatus.PAID), _inv("i1", "500"), _inv("i2", "500")]
    movs = [_mov("500", 2), _mov("500", 3), _mov("500", 4), _mov("-500", 5)]
    matches, unmatched = match_movements(movs, invoices, D("10"))
    assert [(m.movement.line, m.invoice.id) for m in matches] == [(2, "i1"), (3, "i2")]
    assert [m.line for m in unmatched] == [4, 5]


def _billed(store: DocumentStore, *totals: str) -> list[Invoice]:
    seed_project(store, "pR")
    svc = InvoiceService(store)
    return [svc.generate_invoice("pR", custom_items=[custom_item("Servicio", t)]) for t in totals]


def test_reconciler_applies_matches(ledger: BalanceProtocol) -> None:
    inv_a, inv_b = _billed(ledger.store, "1500000", "80000")
    rec = Reconciler(ledger.store, ReconciliationConfig())
    parsed = parse_statement_text(STATEMENT)

    matches, unmatched = rec.propose(parsed.movements)
    assert [m.invoice.id for m in matches] == [inv_a.id]
    assert len(unmatched) == 2

    updated = rec.apply_matches(matches)
    stored = ledger.repo.get_invoice(inv_a.id)
    assert updated[0] == stored
    assert stored.payment_status is PaymentStatus.PAID
    assert stored.payment_amount == D("1500000.00")
    assert stored.payment_reference == "Conciliación Auto: Transferencia ACME SpA"
    assert ledger.repo.get_invoice(inv_b.id).payment_status is PaymentStatus.PENDING
    assert balance_of(ledger, "u1") == D("0.00")

    # paid invoices are no longer proposed
    assert rec.propose(parsed.movements)[0] == []


def test_apply_is_all_or_nothing(ledger: BalanceProtocol) -> None:
    inv_a, inv_b = _billed(ledger.store, "100", "200")
    rec = Reconciler(ledger.store, ReconciliationConfig())
    matches, _ = rec.propose([_mov("100", 2), _mov("200", 3)])
    assert len(matches) == 2
    InvoiceService(ledger.store).annul_invoice(inv_b.id)

    with pytest.raises(InvoiceStateError):
        rec.apply_matches(matches)
    assert ledger.repo.get_invoice(inv_a.id).payment_status is PaymentStatus.PENDING
