"""
wabot/utils/timeutil.py
Timezone-aware clock helpers (all stored timestamps are UTC)
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pytz

Clock = Callable[[], datetime]

DATE_FORMAT = "%d-%m-%Y"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_tz(name: str):
    return pytz.timezone(name)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_now(tz_name: str, now: Optional[datetime] = None) -> datetime:
    """Current wall-clock time in the given zone."""
    now = ensure_utc(now or utcnow())
    return now.astimezone(get_tz(tz_name))


def local_date_str(tz_name: str, now: Optional[datetime] = None, days_ago: int = 0) -> str:
    """DD-MM-YYYY in the given zone, optionally shifted back by whole days."""
    local = local_now(tz_name, now)
    return (local.date() - timedelta(days=days_ago)).strftime(DATE_FORMAT)


def local_iso_date(tz_name: str, now: Optional[datetime] = None) -> str:
    return local_now(tz_name, now).date().isoformat()


def weekday_name(tz_name: str, now: Optional[datetime] = None) -> str:
    return local_now(tz_name, now).strftime("%A").lower()


def format_local(value: datetime, tz_name: str, fmt: str = "%d/%m/%Y %H:%M") -> str:
    return ensure_utc(value).astimezone(get_tz(tz_name)).strftime(fmt)


def humanize_delta(delta: timedelta) -> str:
    seconds = int(max(0, delta.total_seconds()))
    hours, rem = divmod(seconds, 3600)
    minutes = rem // 60
    if hours >= 24:
        return f"{hours // 24}d {hours % 24}h"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
