from __future__ import annotations

import argparse

from infra.config_loader import get_app_config
from infra.document_store import DocumentStore


def open_store(args: argparse.Namespace) -> DocumentStore:
    """--db wins over store.path from config."""
    path = getattr(args, "db", None) or get_app_config().store.path
    return DocumentStore(path)
