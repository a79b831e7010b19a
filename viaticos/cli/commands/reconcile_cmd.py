from __future__ import annotations

import argparse
from pathlib import Path

from viaticos.cli.commands._store import open_store
from viaticos.reconciliation import Reconciler, StatementParse, parse_statement, parse_workbook

WORKBOOK_SUFFIXES = {".xlsx", ".xlsm"}


def register(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("reconcile", help="Match bank statement credits against pending invoices.")
    p.add_argument("statement", help="CSV or .xlsx statement (date, description, amount[, bank]).")
    p.add_argument("--bank", default="", help="Bank label when the statement has no bank column.")
    p.add_argument("--apply", action="store_true", help="Mark matched invoices as paid.")
    p.set_defaults(_fn=_run)


def _read_statement(path: Path, bank: str) -> StatementParse:
    if path.suffix.lower() in WORKBOOK_SUFFIXES:
        return parse_workbook(path, bank=bank)
    with path.open("r", encoding="utf-8-sig", newline="") as f:
        return parse_statement(f, bank=bank)


def _run(args: argparse.Namespace) -> int:
    path = Path(args.statement)
    if not path.exists():
        print(f"reconcile: statement not found: {path}")
        return 2
    if path.suffix.lower() == ".xls":
        print(f"reconcile: legacy .xls is not readable, save it as .xlsx: {path}")
        return 2

    parsed = _read_statement(path, str(args.bank))
    for e in parsed.errors:
        print(f"line {e.line}: {e.reason}")

    store = open_store(args)
    try:
        reconciler = Reconciler(store)
        matches, unmatched = reconciler.propose(parsed.movements)
        for m in matches:
            print(f"{m.movement.date or 'S/F'} {m.movement.amount} -> invoice {m.invoice.id} ({m.invoice.total_amount})")
        if args.apply and matches:
            reconciler.apply_matches(matches)
    finally:
        store.close()

    state = "applied" if args.apply and matches else "proposed"
    print(f"reconcile: {state} matches={len(matches)} unmatched={len(unmatched)} errors={len(parsed.errors)}")
    if args.apply and not matches:
        return 1
    return 0
