"""
Clinic calendar helpers.

The clinic's calendar day runs from local midnight to the next local
midnight in the configured IANA timezone. All values handed back are
UTC-aware so they can be compared directly against stored timestamps.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import NamedTuple, Optional
from zoneinfo import ZoneInfo


class DayWindow(NamedTuple):
    """``[start, end)`` of one clinic day, both UTC."""

    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


def local_date(moment: datetime, tz: ZoneInfo) -> date:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz).date()


def day_window_for(day: date, tz: ZoneInfo) -> DayWindow:
    start = datetime.combine(day, time.min, tzinfo=tz)
    # Re-anchor the end on the next calendar date so DST days keep 23/25 hours
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return DayWindow(start.astimezone(timezone.utc), end.astimezone(timezone.utc))


def clinic_day_window(now: datetime, tz: ZoneInfo) -> DayWindow:
    """Window of the clinic day that contains ``now``.

    ``window.end`` doubles as the start of "upcoming".
    """
    return day_window_for(local_date(now, tz), tz)


def to_utc(value: datetime, tz: ZoneInfo) -> datetime:
    """Naive datetimes are read as clinic-local wall time."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value.astimezone(timezone.utc)


def to_clinic_time(value: Optional[datetime], tz: ZoneInfo) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(tz)
