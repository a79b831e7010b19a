"""
Bank statement reconciliation.

1) parse_statement() / parse_workbook(): CSV or .xlsx -> Movement rows. The header row
   is searched within the first lines (bank exports carry preamble rows); bad rows become
   errors, not exceptions. Worksheet dates may be real dates or bare serial numbers.
2) match_movements(): each credit goes to the first pending invoice whose total is
   within `amount_tolerance`; an invoice is matched at most once.
3) apply_matches(): one batch flipping every matched invoice to paid.

Only invoice payment fields change; balances are never touched.
"""
from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, BinaryIO, Iterable, List, Optional, Sequence, Set, TextIO, Tuple, Union

import openpyxl
from openpyxl.utils.datetime import from_excel

from core import money
from core.models import INVOICES, Invoice, PaymentStatus
from core.money import ZERO
from infra.config_loader import ReconciliationConfig, get_app_config
from infra.document_store import DocumentStore
from infra.logging_config import get_logger
from infra.result import Err, Ok, Result, partition
from infra.time_utils import now_iso
from viaticos.invoicing import check_transition, paid_fields
from viaticos.repository import LedgerRepository

logger = get_logger(__name__)

HEADER_SCAN_ROWS = 50
NO_DESCRIPTION = "Sin descripción"

_DATE_NAMES = ("fecha", "date")
_DESC_NAMES = ("descripción", "descripcion", "description", "detalle", "glosa")
_CREDIT_NAMES = ("abono", "abonos", "credit")
_AMOUNT_NAMES = ("monto", "importe", "amount")
_BANK_NAMES = ("banco", "bank")

_DMY = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2,4})$")


@dataclass(frozen=True)
class Movement:
    line: int
    date: Optional[str]
    description: str
    amount: Decimal
    bank: str


@dataclass(frozen=True)
class RowError:
    line: int
    reason: str


@dataclass(frozen=True)
class StatementParse:
    movements: List[Movement] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)
    skipped: int = 0


@dataclass(frozen=True)
class Match:
    movement: Movement
    invoice: Invoice
    reason: str = "Monto exacto"


# ----------------------
# PARSING
# ----------------------


def parse_amount(raw: str) -> Result[Decimal, str]:
    """
    Local bank format: '.' thousands, ',' decimals. '(100)', '-100' and '100-' are
    negative.
    """
    s = (raw or "").strip()
    if not s:
        return Err("empty amount")
    negative = "(" in s or "-" in s
    s = s.replace(".", "").replace(",", ".", 1)
    s = re.sub(r"[^0-9.]", "", s)
    if not s:
        return Err(f"not a number: {raw!r}")
    try:
        value = Decimal(s)
    except InvalidOperation:
        return Err(f"not a number: {raw!r}")
    value = money.q2(value)
    return Ok(-value if negative else value)


def parse_movement_date(raw: str) -> Optional[str]:
    """ISO date for DD/MM/YYYY, DD-MM-YY or YYYY-MM-DD; None when unreadable."""
    s = (raw or "").strip()
    if not s:
        return None
    m = _DMY.match(s)
    try:
        if m:
            d, mo, y = (int(x) for x in m.groups())
            if y < 100:
                y += 2000
            return date(y, mo, d).isoformat()
        return datetime.fromisoformat(s).date().isoformat()
    except ValueError:
        return None


def _find(header: Sequence[str], names: Iterable[str]) -> int:
    norm = [h.strip().lower() for h in header]
    for name in names:
        for i, h in enumerate(norm):
            if h == name or h.startswith(name):
                return i
    return -1


def _text(value: Any) -> str:
    """Cell as statement text. Numbers use the local ',' decimal mark so parse_amount reads them."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return format(Decimal(str(value)), "f").replace(".", ",")
    return str(value)


def _cell(row: Sequence[Any], idx: int) -> str:
    if idx < 0 or idx >= len(row):
        return ""
    return _text(row[idx])


def _cell_date(row: Sequence[Any], idx: int) -> Optional[str]:
    if 0 <= idx < len(row):
        value = row[idx]
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            # Excel serial day number in a cell without a date format
            try:
                return from_excel(value).date().isoformat()
            except (ValueError, OverflowError):
                return None
    return parse_movement_date(_cell(row, idx))


def parse_rows(rows: Sequence[Sequence[Any]], bank: str = "") -> StatementParse:
    """Header scan plus row parsing over any row source (CSV lines or worksheet rows)."""
    header_idx = -1
    cols = (-1, -1, -1, -1, -1)
    for i, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        names = [_text(c) for c in row]
        d, desc = _find(names, _DATE_NAMES), _find(names, _DESC_NAMES)
        credit, amount = _find(names, _CREDIT_NAMES), _find(names, _AMOUNT_NAMES)
        if d != -1 and desc != -1 and (credit != -1 or amount != -1):
            header_idx = i
            cols = (d, desc, credit, amount, _find(names, _BANK_NAMES))
            break
    if header_idx == -1:
        logger.warning("Statement header not found", extra={"extra_data": {"bank": bank, "rows": len(rows)}})
        return StatementParse(errors=[RowError(0, "header with date, description and amount not found")])

    date_i, desc_i, credit_i, amount_i, bank_i = cols
    results: List[Result[Movement, RowError]] = []
    skipped = 0
    for n, row in enumerate(rows[header_idx + 1 :], start=header_idx + 2):
        if not any(_text(c).strip() for c in row):
            continue
        raw = _cell(row, credit_i).strip() or _cell(row, amount_i).strip()
        if not raw:
            # debit-only row in a cargos/abonos layout
            skipped += 1
            continue
        parsed = parse_amount(raw)
        if parsed.is_ok() and parsed.unwrap_or(ZERO) <= ZERO:
            # debits and zero rows are not income
            skipped += 1
            continue
        results.append(
            parsed.map(
                lambda value, row=row, n=n: Movement(
                    line=n,
                    date=_cell_date(row, date_i),
                    description=_cell(row, desc_i).strip() or NO_DESCRIPTION,
                    amount=value,
                    bank=_cell(row, bank_i).strip() or bank,
                )
            ).map_err(lambda reason, n=n: RowError(n, reason))
        )

    movements, errors = partition(results)
    logger.info(
        "Statement parsed",
        extra={"extra_data": {"bank": bank, "movements": len(movements), "errors": len(errors), "skipped": skipped}},
    )
    return StatementParse(movements=movements, errors=errors, skipped=skipped)


def parse_statement(stream: TextIO, bank: str = "") -> StatementParse:
    return parse_rows(list(csv.reader(stream)), bank=bank)


def parse_statement_text(text: str, bank: str = "") -> StatementParse:
    return parse_statement(io.StringIO(text), bank=bank)


def workbook_rows(source: Union[str, Path, BinaryIO]) -> List[List[Any]]:
    """Cell values of the active sheet; formulas come back as their cached results."""
    workbook = openpyxl.load_workbook(source, data_only=True)
    try:
        sheet = workbook.active
        if sheet is None:
            return []
        return [list(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def parse_workbook(source: Union[str, Path, BinaryIO], bank: str = "") -> StatementParse:
    return parse_rows(workbook_rows(source), bank=bank)


# ----------------------
# MATCHING
# ----------------------


def match_movements(
    movements: Sequence[Movement],
    invoices: Sequence[Invoice],
    tolerance: Decimal,
) -> Tuple[List[Match], List[Movement]]:
    """(matches, unmatched movements). Pure."""
    open_invoices = [i for i in invoices if i.payment_status is PaymentStatus.PENDING]
    taken: Set[str] = set()
    matches: List[Match] = []
    unmatched: List[Movement] = []
    for mov in movements:
        if mov.amount <= ZERO:
            unmatched.append(mov)
            continue
        hit = next(
            (i for i in open_invoices if i.id not in taken and abs(i.total_amount - mov.amount) < tolerance),
            None,
        )
        if hit is None:
            unmatched.append(mov)
            continue
        taken.add(hit.id)
        matches.append(Match(movement=mov, invoice=hit))
    return matches, unmatched


class Reconciler:
    def __init__(self, store: DocumentStore, config: Optional[ReconciliationConfig] = None) -> None:
        self.store = store
        self.repo = LedgerRepository(store)
        self.config = config or get_app_config().reconciliation

    def propose(self, movements: Sequence[Movement]) -> Tuple[List[Match], List[Movement]]:
        pending = self.repo.invoices(payment_status=PaymentStatus.PENDING)
        return match_movements(movements, pending, self.config.amount_tolerance)

    def apply_matches(self, matches: Sequence[Match]) -> List[Invoice]:
        """Mark every matched invoice paid in one batch. Returns the updated invoices."""
        paid_at = now_iso()
        batch = self.store.batch()
        updated: List[Invoice] = []
        for m in matches:
            current = self.repo.get_invoice(m.invoice.id)
            check_transition(current, PaymentStatus.PAID)
            inv = replace(
                current,
                payment_status=PaymentStatus.PAID,
                paid_at=paid_at,
                payment_amount=m.movement.amount,
                payment_reference=f"Conciliación Auto: {m.movement.description}",
            )
            batch.update(INVOICES, inv.id, paid_fields(inv))
            updated.append(inv)
        batch.commit()
        logger.info("Reconciliation applied", extra={"extra_data": {"invoices": len(updated)}})
        return updated
