from __future__ import annotations

import argparse

from viaticos.cli.commands._store import open_store
from viaticos.repair import repair_balances
from viaticos.repository import LedgerRepository


def register(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("repair", help="Recompute cached balances from allocation/expense history.")
    p.add_argument("--dry-run", action="store_true", help="Report changes without writing.")
    p.add_argument("--projects", action="store_true", help="Also repair project.expenses totals.")
    p.set_defaults(_fn=_run)


def _run(args: argparse.Namespace) -> int:
    store = open_store(args)
    try:
        report = repair_balances(LedgerRepository(store), dry_run=bool(args.dry_run), include_projects=bool(args.projects))
    finally:
        store.close()

    for c in report.changes:
        print(f"{c.collection}/{c.doc_id}: {c.cached} -> {c.derived}")
    mode = "dry_run" if report.dry_run else "applied"
    print(
        f"repair: {mode} users={report.users_scanned} projects={report.projects_scanned} "
        f"changes={len(report.changes)} written={report.written}"
    )
    return 0
