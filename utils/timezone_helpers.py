from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

SCHOOL_TZ = ZoneInfo("Asia/Kolkata")


def db_now() -> datetime:
    """Current UTC time as a naive datetime, the form stored in DATETIME columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def school_today() -> date:
    """Today's date on the school's wall clock."""
    return datetime.now(SCHOOL_TZ).date()


def to_iso(value: Any) -> Any:
    """Serialise DB datetimes (naive = UTC) and dates to ISO-8601 strings."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


def parse_iso_date(value: Any) -> date | None:
    """Parse ``YYYY-MM-DD`` or a full ISO timestamp into a date; ``None`` if invalid."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None
