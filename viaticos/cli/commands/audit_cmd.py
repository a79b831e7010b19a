from __future__ import annotations

import argparse

from viaticos.aggregator import Aggregator
from viaticos.cli.commands._store import open_store
from viaticos.repository import LedgerRepository


def register(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("audit", help="Compare cached balances and project totals with history (read-only).")
    p.set_defaults(_fn=_run)


def _run(args: argparse.Namespace) -> int:
    store = open_store(args)
    try:
        report = Aggregator(LedgerRepository(store)).drift_report()
    finally:
        store.close()

    for d in report.users + report.projects:
        print(f"{d.collection}/{d.doc_id}: cached={d.cached} derived={d.derived} diff={d.difference}")
    if report.clean:
        print("audit: clean")
        return 0
    print(f"audit: drift users={len(report.users)} projects={len(report.projects)}")
    return 1
