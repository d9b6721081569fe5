from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from otplus.domain import WEEKDAY_NAMES

logger = logging.getLogger("otplus.calendar")


@lru_cache
def resolve_timezone(name: str | None) -> tzinfo:
    raw_name = (name or "").strip() or "UTC"
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("report_timezone_invalid", extra={"time_zone": raw_name})
        return timezone.utc


def localize(moment: datetime, tz: tzinfo) -> datetime:
    # Naive timestamps are already expressed in the report time zone.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment.astimezone(tz)


def date_key(moment: datetime, tz: tzinfo) -> date:
    return localize(moment, tz).date()


def week_key(day: date) -> str:
    iso_year, iso_week, _ = day.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def weekday_name(day: date) -> str:
    return WEEKDAY_NAMES[day.weekday()]


def days_in_range(start: date, end: date) -> list[date]:
    if end < start:
        return []
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]
