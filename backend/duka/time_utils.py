# Overview: UTC clock, ISO-8601 parsing and the inclusive date windows used by sales history.

"""
All timestamps are stored as naive UTC datetimes. Values leave the API as
ISO-8601 strings with a trailing "Z".
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

_ONE_DAY = timedelta(days=1)
_DATE_ONLY_LENGTH = len("YYYY-MM-DD")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    "2026-10-19", "2026-10-19T08:30:00Z" or "...+03:00" -> naive UTC.

    Blank input gives None; anything unparseable raises ValueError.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"
    return _as_naive_utc(datetime.fromisoformat(text))


def sales_window(
    start_date: Optional[str], end_date: Optional[str]
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Half-open [start, end) bounds for a history query.

    A bare date as end_date covers that whole day; a full timestamp is
    inclusive to the microsecond.
    """
    start = parse_iso_datetime(start_date)
    end = parse_iso_datetime(end_date)
    if end is not None:
        if len(end_date.strip()) <= _DATE_ONLY_LENGTH:
            end += _ONE_DAY
        else:
            end += timedelta(microseconds=1)
    return start, end


def to_utc_z(moment: Optional[datetime]) -> Optional[str]:
    """Whole-second ISO-8601 with "Z"; naive input is taken as UTC already."""
    if moment is None:
        return None
    stamp = _as_naive_utc(moment).replace(microsecond=0)
    return stamp.isoformat() + "Z"
