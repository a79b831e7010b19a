"""Receipt blobs. The ledger only keeps the URL returned by the storage."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Protocol

from core.errors import ValidationError
from infra.document_store import DocumentStore
from infra.logging_config import get_logger

logger = get_logger(__name__)

_SAFE = re.compile(r"[^A-Za-z0-9._-]+")


class ReceiptStorage(Protocol):
    def save(self, owner_id: str, filename: str, content: bytes) -> str:
        """Store the blob and return a URL that can be fetched later."""
        ...


def _safe_name(value: str) -> str:
    cleaned = _SAFE.sub("_", value).strip("._")
    if not cleaned:
        raise ValidationError(f"unusable name: {value!r}")
    return cleaned


class LocalReceiptStorage:
    """receipts/<owner>/<id>_<filename> under a base directory; file:// URLs."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)

    def save(self, owner_id: str, filename: str, content: bytes) -> str:
        if not content:
            raise ValidationError("empty receipt")
        folder = self.base_dir / "receipts" / _safe_name(owner_id)
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / f"{DocumentStore.new_id()[:12]}_{_safe_name(filename)}"
        path.write_bytes(content)
        logger.info("Receipt stored", extra={"extra_data": {"owner_id": owner_id, "bytes": len(content)}})
        return path.resolve().as_uri()
