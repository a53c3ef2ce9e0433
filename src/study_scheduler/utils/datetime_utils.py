import pytz
from datetime import datetime, timedelta
from typing import Optional

from pytz.exceptions import UnknownTimeZoneError

utc = pytz.utc


def get_timezone(name: Optional[str]):
    """Resolve a timezone name, falling back to UTC for empty or unknown names"""
    if not name:
        return utc
    try:
        return pytz.timezone(name)
    except UnknownTimeZoneError:
        return utc


def ensure_utc(dt):
    """Ensure datetime object is timezone-aware and in UTC"""
    if dt is None:
        return None

    if isinstance(dt, str):
        dt = datetime.fromisoformat(dt.replace("Z", "+00:00"))

    if dt.tzinfo is not None:
        return dt.astimezone(utc)
    else:
        # Timezone-naive values are stored as UTC
        return utc.localize(dt)


def to_local(dt, tz_name: Optional[str]):
    """Convert a datetime into the named timezone"""
    return ensure_utc(dt).astimezone(get_timezone(tz_name))


def localize(naive_dt, tz_name: Optional[str]):
    """Attach the named timezone to a naive wall-clock datetime, resolving DST gaps"""
    tz = get_timezone(tz_name)
    return tz.normalize(tz.localize(naive_dt))


def shift_days_at_hour(base_time, days_offset: int, hour: int):
    """UTC date shift: `days_offset` days after `base_time`, at `hour`:00 UTC"""
    shifted = ensure_utc(base_time) + timedelta(days=days_offset)
    return shifted.replace(hour=hour, minute=0, second=0, microsecond=0)


def schedule_at_local_hour(base_time, days_offset: int, hour: int, tz_name: Optional[str]):
    """
    Local calendar shift: `days_offset` days after `base_time` as seen in `tz_name`,
    at `hour`:00 local time, returned in UTC
    """
    local_base = to_local(base_time, tz_name)
    target_date = local_base.date() + timedelta(days=days_offset)
    naive = datetime(target_date.year, target_date.month, target_date.day, hour)
    return localize(naive, tz_name).astimezone(utc)


def start_of_month(dt):
    """First instant of the UTC month containing `dt`"""
    return ensure_utc(dt).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def sunday_week_start(dt):
    """Midnight of the Sunday starting the week containing `dt`"""
    days_since_sunday = (dt.weekday() + 1) % 7
    start = dt - timedelta(days=days_since_sunday)
    return start.replace(hour=0, minute=0, second=0, microsecond=0)
