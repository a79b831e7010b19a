from __future__ import annotations

from datetime import date, datetime, timezone


def now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return now_utc().isoformat()


def today_iso() -> str:
    return now_utc().date().isoformat()


def parse_date(value: str) -> date:
    """Accepts YYYY-MM-DD or a full ISO timestamp; returns the calendar date."""
    s = value.strip()
    if "T" in s:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    return date.fromisoformat(s)
