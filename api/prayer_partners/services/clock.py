from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso_week(now: datetime, tz: str = "Africa/Nairobi") -> tuple[int, int]:
    """Return ``(iso_year, iso_week)`` for ``now`` in the community's timezone."""
    local_now = now.astimezone(ZoneInfo(tz))
    iso = local_now.isocalendar()
    return iso[0], iso[1]


def week_index(year: int, week_number: int) -> int:
    """Continuous week counter, so consecutive ISO weeks differ by one across year boundaries."""
    monday = date.fromisocalendar(year, week_number, 1)
    return monday.toordinal() // 7
