"""
Receipt prefill.

The extraction service (an AI model behind DocumentExtractor) returns a best-effort
guess where every field may be missing. build_draft() merges the guess with what the
user typed; the user's value always wins. Nothing is persisted here: the draft goes to
BalanceProtocol.submit_expense like any hand-typed one.
"""
from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from core.errors import LedgerError, ValidationError
from core.money import MoneyInput
from infra.logging_config import get_logger
from infra.result import Err, Ok, Result
from viaticos.protocol import ExpenseDraft

logger = get_logger(__name__)

FALLBACK_CATEGORY = "VARIOS"

DRAFT_FIELDS = frozenset(ExpenseDraft.__dataclass_fields__) - {"user_id"}


class ExtractionError(LedgerError):
    """The extraction service could not produce a guess."""


class ExtractionGuess(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    date: Optional[str] = None
    time: Optional[str] = None
    invoice_number: Optional[str] = Field(default=None, alias="invoiceNumber")
    merchant: Optional[str] = None
    tax_id: Optional[str] = Field(default=None, alias="taxId")
    address: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")
    description: Optional[str] = None
    card_last4: Optional[str] = Field(default=None, alias="cardLast4")
    category: Optional[str] = None


class DocumentExtractor(Protocol):
    def extract(
        self,
        receipt: bytes,
        voucher: Optional[bytes] = None,
        category_hints: Sequence[str] = (),
    ) -> ExtractionGuess:
        ...


def parse_model_reply(text: str) -> Result[ExtractionGuess, str]:
    """Model replies come wrapped in prose or ``` fences; keep the outer JSON object."""
    s = (text or "").replace("```json", "").replace("```", "").strip()
    first, last = s.find("{"), s.rfind("}")
    if first == -1 or last == -1 or last < first:
        return Err("no JSON object in reply")
    try:
        raw = json.loads(s[first : last + 1], parse_float=Decimal)
    except json.JSONDecodeError as exc:
        return Err(f"invalid JSON: {exc.msg}")
    if not isinstance(raw, dict):
        return Err("reply is not a JSON object")
    try:
        return Ok(ExtractionGuess.model_validate(raw))
    except PydanticValidationError as exc:
        return Err(f"unexpected field types: {exc.error_count()} errors")


def normalize_category(guess: ExtractionGuess, category_hints: Sequence[str]) -> ExtractionGuess:
    if not category_hints or guess.category in category_hints:
        return guess
    if guess.category is None and FALLBACK_CATEGORY not in category_hints:
        return guess
    return guess.model_copy(update={"category": FALLBACK_CATEGORY})


def prefill(
    extractor: DocumentExtractor,
    receipt: bytes,
    voucher: Optional[bytes] = None,
    category_hints: Sequence[str] = (),
) -> Result[ExtractionGuess, str]:
    """Ask the extractor; an ExtractionError becomes Err so the form stays usable."""
    try:
        guess = extractor.extract(receipt, voucher, category_hints)
    except ExtractionError as exc:
        logger.warning("Extraction failed, manual entry", extra={"extra_data": {"error": str(exc)}})
        return Err(str(exc))
    return Ok(normalize_category(guess, category_hints))


def _guess_values(guess: ExtractionGuess) -> dict:
    return {
        "amount": guess.amount,
        "category": guess.category,
        "date": guess.date,
        "time": guess.time,
        "merchant": guess.merchant,
        "tax_id": guess.tax_id,
        "invoice_number": guess.invoice_number,
        "payment_method": guess.payment_method,
        "description": guess.description,
        "currency": guess.currency,
    }


def build_draft(user_id: str, guess: Optional[ExtractionGuess], overrides: Mapping[str, Any]) -> ExpenseDraft:
    unknown = set(overrides) - DRAFT_FIELDS
    if unknown:
        raise ValidationError(f"unknown expense fields: {sorted(unknown)}")
    values = {k: v for k, v in _guess_values(guess).items() if v is not None} if guess else {}
    values.update(overrides)
    amount: Optional[MoneyInput] = values.pop("amount", None)
    if amount is None:
        raise ValidationError("amount is required")
    for text_field in ("category", "event_name", "description"):
        if values.get(text_field) is None:
            values.pop(text_field, None)
    return ExpenseDraft(user_id=user_id, amount=amount, **values)
