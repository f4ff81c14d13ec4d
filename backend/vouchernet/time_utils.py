from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


# Timestamps are stored naive and always mean UTC; API output carries a 'Z'.

def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utctoday() -> date:
    """Calendar day used for voucher expiry and charge due dates."""
    return utcnow().date()


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """YYYY-MM-DD to date; blank means None, garbage raises ValueError."""
    text = (value or "").strip()
    return date.fromisoformat(text) if text else None


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    aware = dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return aware.astimezone(timezone.utc).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


def to_iso_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None
