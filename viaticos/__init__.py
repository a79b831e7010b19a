"""Viáticos: ledger de anticipos y rendiciones por usuario y proyecto."""
