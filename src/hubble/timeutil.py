"""Clock, observer time zone, and timeline window helpers."""

from collections.abc import Callable
from datetime import date, datetime, timedelta, tzinfo
from functools import lru_cache

from pytz import timezone, utc
from timezonefinder import TimezoneFinder

from hubble.models import Observer

Clock = Callable[[], datetime]

# Timeline API accepts pins at most 2 days old and 1 year (leap-safe) ahead
PAST_LIMIT = timedelta(days=2)
FUTURE_LIMIT = timedelta(days=366)
VISIBLE_DAYS = 2

_tf: TimezoneFinder | None = None


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(utc)


def ensure_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are converted."""
    if dt.tzinfo is None:
        return utc.localize(dt)
    return dt.astimezone(utc)


@lru_cache(maxsize=256)
def _zone_at(lat: float, lng: float) -> str | None:
    global _tf
    if _tf is None:
        _tf = TimezoneFinder()
    return _tf.timezone_at(lat=lat, lng=lng)


def observer_zone(observer: Observer) -> tzinfo:
    """Local zone of the observer. Explicit zone wins, then coordinates, then UTC."""
    name = observer.timezone
    if name is None:
        name = _zone_at(round(observer.latitude, 2), round(observer.longitude, 2))
    if name is None:
        return utc
    return timezone(name)


def local_date(dt: datetime, zone: tzinfo) -> date:
    return ensure_utc(dt).astimezone(zone).date()


def sequence_index(event_time: datetime, now: datetime, zone: tzinfo) -> int:
    """Whole local-day difference between the event and today (positive = future)."""
    return (local_date(event_time, zone) - local_date(now, zone)).days


def is_visible(event_time: datetime, now: datetime, zone: tzinfo) -> bool:
    """Within the ±2 local-day window used for recurring pins."""
    return abs(sequence_index(event_time, now, zone)) <= VISIBLE_DAYS


def in_timeline_range(event_time: datetime, now: datetime) -> bool:
    """Within the window the timeline API accepts for one-time pins."""
    event_time = ensure_utc(event_time)
    now = ensure_utc(now)
    return now - PAST_LIMIT <= event_time <= now + FUTURE_LIMIT
