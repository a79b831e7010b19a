from __future__ import annotations

import argparse
from typing import Sequence

from core.errors import LedgerError
from infra.logging_config import get_logger, setup_logging
from viaticos.cli.commands import audit_cmd, reconcile_cmd, repair_cmd

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="viaticos.cli",
        description="Viáticos ledger maintenance (repair, audit, reconcile).",
    )
    p.add_argument("--db", default=None, help="SQLite path (default: store.path from config).")
    p.add_argument("--log-level", default=None, help="Override logging.level (DEBUG, INFO, WARNING...).")
    sub = p.add_subparsers(dest="command", required=True)

    repair_cmd.register(sub)
    audit_cmd.register(sub)
    reconcile_cmd.register(sub)

    return p


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as e:
        code = getattr(e, "code", 2)
        return int(code) if isinstance(code, int) else 2

    fn = getattr(args, "_fn", None)
    if fn is None:
        parser.print_help()
        return 2

    setup_logging(args.log_level)
    try:
        rc = fn(args)
        if rc is None:
            return 0
        if isinstance(rc, bool):
            return 0 if rc else 1
        return int(rc)

    except KeyboardInterrupt:
        print("viaticos: CANCELLED (KeyboardInterrupt)", flush=True)
        return 130

    except LedgerError as e:
        logger.error("Command failed", extra={"extra_data": {"command": args.command, "error": str(e)}})
        print(f"viaticos: ERROR {type(e).__name__}: {e}", flush=True)
        if getattr(e, "retryable", False):
            print("viaticos: nothing was written, safe to retry", flush=True)
        return 3

    except Exception as e:
        logger.exception("Unexpected failure", extra={"extra_data": {"command": args.command}})
        print(f"viaticos: ERROR {type(e).__name__}: {e}", flush=True)
        return 3
