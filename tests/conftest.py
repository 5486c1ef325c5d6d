"""Shared fixtures: a deterministic ephemeris, a settable clock, and a recording sink."""

from collections import Counter
from datetime import date, datetime, time, timedelta, timezone

import pytest

from hubble.cache import MemoryStore
from hubble.ephemeris import (
    ApsisInfo,
    GlobalSolarEclipseInfo,
    LunarEclipseInfo,
    Seasons,
    TransitInfo,
)
from hubble.errors import EphemerisError
from hubble.models import Observer, PinCommand

UTC = timezone.utc
_ANCHOR = date(2000, 1, 1)

# Local midnight in New York (EDT) on a summer day
SUMMER_MIDNIGHT = datetime(2025, 6, 21, 4, 0, tzinfo=UTC)
NEW_YORK = Observer(latitude=40.0, longitude=-74.0, timezone="America/New_York")


def _daily(start: datetime, limit_days: float, at: time) -> datetime | None:
    """Nearest daily occurrence of ``at`` (UTC) after/before ``start`` within the limit."""
    end = start + timedelta(days=limit_days)
    if limit_days >= 0:
        offsets = range(-1, int(limit_days) + 2)
        match = lambda t: start <= t <= end  # noqa: E731
    else:
        offsets = range(0, int(limit_days) - 2, -1)
        match = lambda t: end <= t < start  # noqa: E731
    for offset in offsets:
        t = datetime.combine(start.date() + timedelta(days=offset), at, tzinfo=UTC)
        if match(t):
            return t
    return None


class StubEphemeris:
    """Same events every UTC day, roughly New York in June.

    ``calls`` counts every method invocation; names listed in ``failing``
    raise EphemerisError.
    """

    RISE = {"Sun": time(9, 30), "Moon": time(14, 10), "Venus": time(7, 45)}
    SET = {"Sun": time(0, 30), "Moon": time(2, 20), "Venus": time(21, 5)}
    TWILIGHT_MINUTES = {-6.0: 30, -12.0: 65, -18.0: 105}
    NOON = time(16, 55)
    MIDNIGHT = time(4, 55)

    def __init__(self) -> None:
        self.calls: Counter[str] = Counter()
        self.failing: set[str] = set()
        self.circumpolar: set[str] = set()
        self.moon_angle = 100.0
        self.transits: dict[str, TransitInfo] = {}
        self.lunar_eclipse: LunarEclipseInfo | None = LunarEclipseInfo(
            peak=datetime(2025, 9, 7, 18, 11, tzinfo=UTC),
            kind="total",
            partial_begin=datetime(2025, 9, 7, 16, 27, tzinfo=UTC),
            total_begin=datetime(2025, 9, 7, 17, 30, tzinfo=UTC),
            total_end=datetime(2025, 9, 7, 18, 53, tzinfo=UTC),
            partial_end=datetime(2025, 9, 7, 19, 56, tzinfo=UTC),
        )
        self.solar_eclipse: GlobalSolarEclipseInfo | None = GlobalSolarEclipseInfo(
            peak=datetime(2025, 9, 21, 19, 41, tzinfo=UTC), kind="partial", distance_km=7000.0
        )

    def _record(self, name: str) -> None:
        self.calls[name] += 1
        if name in self.failing:
            raise EphemerisError(f"{name} unavailable")

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def horizontal(self, body, observer, when):
        self._record("horizontal")
        return 123.4, 45.6

    def search_rise_set(self, body, observer, direction, start, limit_days):
        self._record("search_rise_set")
        if body in self.circumpolar:
            return None
        table = self.RISE if direction > 0 else self.SET
        return _daily(start, limit_days, table.get(body, time(12, 0)))

    def search_altitude(self, body, observer, direction, start, limit_days, altitude):
        self._record("search_altitude")
        shift = timedelta(minutes=self.TWILIGHT_MINUTES[altitude])
        if direction > 0:
            at = (datetime.combine(_ANCHOR, self.RISE["Sun"]) - shift).time()
        else:
            at = (datetime.combine(_ANCHOR, self.SET["Sun"]) + shift).time()
        return _daily(start, limit_days, at)

    def search_hour_angle(self, body, observer, hour_angle, start, direction):
        self._record("search_hour_angle")
        at = self.NOON if hour_angle == 0 else self.MIDNIGHT
        return _daily(start, 2.0 if direction > 0 else -2.0, at)

    def magnitude(self, body, when):
        self._record("magnitude")
        return -12.3 if body == "Moon" else -1.0

    def moon_phase(self, when):
        self._record("moon_phase")
        return self.moon_angle

    def seasons(self, year):
        self._record("seasons")
        return Seasons(
            march_equinox=datetime(year, 3, 20, 9, 1, tzinfo=UTC),
            june_solstice=datetime(year, 6, 21, 2, 42, tzinfo=UTC),
            september_equinox=datetime(year, 9, 22, 18, 19, tzinfo=UTC),
            december_solstice=datetime(year, 12, 21, 15, 3, tzinfo=UTC),
        )

    def search_transit(self, body, start, until=None):
        self._record("search_transit")
        info = self.transits.get(body)
        if info is None or info.start < start:
            return None
        if until is not None and info.start >= until:
            return None
        return info

    def search_lunar_eclipse(self, start):
        self._record("search_lunar_eclipse")
        return self.lunar_eclipse

    def search_global_solar_eclipse(self, start):
        self._record("search_global_solar_eclipse")
        return self.solar_eclipse

    def search_lunar_apsis(self, start):
        self._record("search_lunar_apsis")
        return ApsisInfo(time=start + timedelta(days=3), kind="perigee", distance_km=360123.6)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSink:
    def __init__(self) -> None:
        self.commands: list[PinCommand] = []

    def submit(self, command: PinCommand) -> None:
        self.commands.append(command)

    def ids(self, op: str) -> list[str]:
        return [c.pin_id for c in self.commands if c.op.value == op]

    def clear(self) -> None:
        self.commands.clear()


class FailingStore(MemoryStore):
    """Push-cache store on a read-only disk."""

    def save(self, state) -> None:
        raise OSError("read-only file system")


@pytest.fixture
def ephemeris() -> StubEphemeris:
    return StubEphemeris()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(SUMMER_MIDNIGHT)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def observer() -> Observer:
    return NEW_YORK
