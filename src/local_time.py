"""
Time zone helpers

Timestamps are stored as naive UTC datetimes. Weekday/hour bucket keys are derived
from the configured local time zone exactly once, when a row is created, and are
never recomputed afterwards.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

import pytz

from src.holidays import is_holiday

LOCAL_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"


@dataclass(frozen=True)
class LocalStamp:
    """Local-time facts stamped onto a measurement or prediction at creation"""

    local_timestamp: str  # YYYY-MM-DDTHH:MM:SS in the configured zone
    day_of_week: int  # 0=Sunday .. 6=Saturday
    hour_local: int  # 0-23
    is_holiday: bool


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_local(utc_dt: datetime, tz_name: str) -> datetime:
    """Convert a naive UTC datetime to an aware datetime in tz_name"""
    if utc_dt.tzinfo is None:
        utc_dt = pytz.utc.localize(utc_dt)
    return utc_dt.astimezone(pytz.timezone(tz_name))


def local_to_utc(local_dt: datetime, tz_name: str) -> datetime:
    """Convert a naive local wall-clock datetime in tz_name to naive UTC"""
    aware = pytz.timezone(tz_name).localize(local_dt)
    return aware.astimezone(pytz.utc).replace(tzinfo=None)


def sunday_based_weekday(dt: datetime) -> int:
    # isoweekday: Mon=1..Sun=7
    return dt.isoweekday() % 7


def stamp_local(utc_dt: datetime, tz_name: str) -> LocalStamp:
    local_dt = to_local(utc_dt, tz_name)
    return LocalStamp(
        local_timestamp=local_dt.strftime(LOCAL_TIMESTAMP_FORMAT),
        day_of_week=sunday_based_weekday(local_dt),
        hour_local=local_dt.hour,
        is_holiday=is_holiday(local_dt.date()),
    )
