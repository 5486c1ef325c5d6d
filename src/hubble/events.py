"""Event aggregation: per-category sequences from the ephemeris, normalized and cached."""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from hubble.ephemeris import Ephemeris
from hubble.models import (
    EventSet,
    LunarApsisEvent,
    LunarEclipseEvent,
    MoonPhase,
    Observer,
    RiseSetEvent,
    SeasonalEvent,
    SolarEclipseEvent,
    SolarNoonMidnightEvent,
    TransitEvent,
    TwilightEvent,
)
from hubble.settings import (
    CFG_MOON_APOGEE_PERIGEE,
    CFG_MOON_RISE_SET,
    CFG_SUN_ECLIPSES,
    CFG_SUN_EQUINOXES,
    CFG_SUN_RISE_SET,
    CFG_SUN_SOLAR_NOON_MIDNIGHT,
    CFG_SUN_SOLAR_TRANSITS,
    CFG_SUN_SOLSTICES,
    PLANETS,
    TWILIGHT_KEYS,
    Settings,
    is_enabled,
    planet_flags,
    settings_fingerprint,
)
from hubble.timeutil import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)

SEARCH_LIMIT_DAYS = 30.0
_NEXT_OFFSET = timedelta(minutes=1)

TWILIGHT_ALTITUDES: dict[str, float] = {
    "civil": -6.0,
    "nautical": -12.0,
    "astronomical": -18.0,
}

MOON_PHASE_NAMES: tuple[str, ...] = (
    "New Moon",
    "Waxing Crescent",
    "First Quarter",
    "Waxing Gibbous",
    "Full Moon",
    "Waning Gibbous",
    "Third Quarter",
    "Waning Crescent",
)

Point = datetime | None
Search = Callable[[datetime, float], Point]


@dataclass(frozen=True)
class RiseSetSequence:
    """[prev-1, prev, today, next, next+1] for each direction; None = not found."""

    rise: tuple[Point, ...]
    set: tuple[Point, ...]
    moon_phases: tuple[MoonPhase | None, ...] = ()  # Parallel to ``rise``, Moon only


@dataclass(frozen=True)
class TwilightSequence:
    dawn: tuple[Point, ...]
    dusk: tuple[Point, ...]


@dataclass(frozen=True)
class SolarNoonMidnightSequence:
    noon: tuple[Point, ...]
    midnight: tuple[Point, ...]


def moon_phase_index(angle: float) -> int:
    """Bucket a phase angle (0 new, 180 full) into one of eight 45° phases."""
    return int(math.floor(((angle + 22.5) % 360.0) / 45.0)) % 8


def moon_phase_name(angle: float) -> str:
    return MOON_PHASE_NAMES[moon_phase_index(angle)]


def _moon_phase(ephemeris: Ephemeris, when: datetime) -> MoonPhase:
    index = moon_phase_index(ephemeris.moon_phase(when))
    return MoonPhase(index=index, name=MOON_PHASE_NAMES[index])


def _five_point(search: Search, seed: datetime) -> tuple[Point, ...]:
    """Build the prior/today/next sequence around ``seed``.

    ``search(start, limit_days)`` returns the nearest crossing; a negative
    limit searches backward. Later points step forward one minute past the
    previous hit so the same instant is never found twice.
    """
    today = search(seed, SEARCH_LIMIT_DAYS)
    prev = search(today, -SEARCH_LIMIT_DAYS) if today else None
    prev_prev = search(prev, -SEARCH_LIMIT_DAYS) if prev else None
    following = search(today + _NEXT_OFFSET, SEARCH_LIMIT_DAYS) if today else None
    following_2 = (
        search(following + _NEXT_OFFSET, SEARCH_LIMIT_DAYS) if following else None
    )
    return (prev_prev, prev, today, following, following_2)


def get_rise_set_sequence(
    ephemeris: Ephemeris, body: str, observer: Observer, when: datetime
) -> RiseSetSequence:
    """Two prior, today's, and two upcoming rises and sets of ``body``.

    For the Moon every found rise also carries its MoonPhase.
    """
    seed = ensure_utc(when)
    rise = _five_point(
        lambda start, limit: ephemeris.search_rise_set(body, observer, +1, start, limit), seed
    )
    set_ = _five_point(
        lambda start, limit: ephemeris.search_rise_set(body, observer, -1, start, limit), seed
    )
    phases: tuple[MoonPhase | None, ...] = ()
    if body == "Moon":
        phases = tuple(_moon_phase(ephemeris, t) if t else None for t in rise)
    return RiseSetSequence(rise=rise, set=set_, moon_phases=phases)


def get_twilight_sequence(
    ephemeris: Ephemeris, observer: Observer, when: datetime, subtype: str
) -> TwilightSequence:
    """Dawn (ascending) and dusk (descending) crossings of the subtype's solar altitude.

    Raises:
        ValueError: If ``subtype`` is not civil, nautical or astronomical.
    """
    try:
        altitude = TWILIGHT_ALTITUDES[subtype]
    except KeyError:
        raise ValueError(
            f"Invalid twilight type {subtype!r}. Use: civil, nautical, or astronomical"
        ) from None
    seed = ensure_utc(when)

    def crossing(direction: int) -> Search:
        return lambda start, limit: ephemeris.search_altitude(
            "Sun", observer, direction, start, limit, altitude
        )

    return TwilightSequence(
        dawn=_five_point(crossing(+1), seed), dusk=_five_point(crossing(-1), seed)
    )


def get_solar_noon_midnight_sequence(
    ephemeris: Ephemeris, observer: Observer, when: datetime
) -> SolarNoonMidnightSequence:
    seed = ensure_utc(when)

    def hour_angle(value: float) -> Search:
        return lambda start, limit: ephemeris.search_hour_angle(
            "Sun", observer, value, start, 1 if limit > 0 else -1
        )

    return SolarNoonMidnightSequence(
        noon=_five_point(hour_angle(0.0), seed),
        midnight=_five_point(hour_angle(12.0), seed),
    )


def get_next_seasonal_event(
    ephemeris: Ephemeris,
    when: datetime,
    equinoxes: bool = True,
    solstices: bool = True,
) -> SeasonalEvent | None:
    """First enabled equinox or solstice strictly after ``when``."""
    when = ensure_utc(when)
    year = when.year
    this_year = ephemeris.seasons(year)
    next_year = ephemeris.seasons(year + 1)
    candidates = (
        SeasonalEvent("marchEquinox", this_year.march_equinox, year),
        SeasonalEvent("juneSolstice", this_year.june_solstice, year),
        SeasonalEvent("septemberEquinox", this_year.september_equinox, year),
        SeasonalEvent("decemberSolstice", this_year.december_solstice, year),
        SeasonalEvent("marchEquinox", next_year.march_equinox, year + 1),
        SeasonalEvent("juneSolstice", next_year.june_solstice, year + 1),
    )
    return next(
        (
            e
            for e in candidates
            if e.time > when and (equinoxes if e.is_equinox else solstices)
        ),
        None,
    )


def get_next_transit(ephemeris: Ephemeris, when: datetime) -> TransitEvent | None:
    """Next Mercury or Venus transit, whichever starts first."""
    mercury = ephemeris.search_transit("Mercury", when)
    # Venus only matters if it beats Mercury
    venus = ephemeris.search_transit("Venus", when, until=mercury.start if mercury else None)
    found = [(b, t) for b, t in (("Mercury", mercury), ("Venus", venus)) if t is not None]
    if not found:
        return None
    body, info = min(found, key=lambda pair: pair[1].start)
    return TransitEvent(body=body, start=info.start, peak=info.peak, finish=info.finish)


def get_next_eclipse(
    ephemeris: Ephemeris, when: datetime
) -> LunarEclipseEvent | SolarEclipseEvent | None:
    """Next lunar or global solar eclipse, whichever peaks first."""
    lunar = ephemeris.search_lunar_eclipse(when)
    solar = ephemeris.search_global_solar_eclipse(when)
    if lunar is not None and (solar is None or lunar.peak < solar.peak):
        return LunarEclipseEvent(
            peak=lunar.peak,
            eclipse_kind=lunar.kind,
            partial_begin=lunar.partial_begin,
            total_begin=lunar.total_begin,
            total_end=lunar.total_end,
            partial_end=lunar.partial_end,
        )
    if solar is None:
        return None
    central = solar.kind in ("total", "annular")
    return SolarEclipseEvent(
        peak=solar.peak,
        eclipse_kind=solar.kind,
        distance_km=solar.distance_km,
        latitude=solar.latitude if central else None,
        longitude=solar.longitude if central else None,
        obscuration=solar.obscuration if central else None,
    )


def get_next_lunar_apsis(ephemeris: Ephemeris, when: datetime) -> LunarApsisEvent | None:
    apsis = ephemeris.search_lunar_apsis(when)
    if apsis is None:
        return None
    return LunarApsisEvent(apsis=apsis.kind, time=apsis.time, distance_km=apsis.distance_km)


# --- Cache ----------------------------------------------------------------


@dataclass(frozen=True)
class EventCacheEntry:
    events: EventSet
    captured_at: datetime
    observer: Observer


class EventCache:
    """Aggregation results keyed by rounded location, UTC day, and settings.

    An entry is served only while it is younger than ``duration`` and the
    observer has moved at most ``threshold`` degrees on either axis.
    """

    def __init__(
        self,
        clock: Clock = utc_now,
        duration: timedelta = timedelta(minutes=30),
        threshold: float = 0.01,
    ) -> None:
        self._clock = clock
        self._duration = duration
        self._threshold = threshold
        self._entries: dict[str, EventCacheEntry] = {}

    @staticmethod
    def key(observer: Observer, when: datetime, settings: Settings | None) -> str:
        lat = round(observer.latitude, 2)
        lon = round(observer.longitude, 2)
        day = ensure_utc(when).strftime("%Y-%m-%d")
        return f"{lat}_{lon}_{day}_{settings_fingerprint(settings)}"

    def _is_valid(self, entry: EventCacheEntry, observer: Observer) -> bool:
        if self._clock() - entry.captured_at > self._duration:
            return False
        return (
            abs(entry.observer.latitude - observer.latitude) <= self._threshold
            and abs(entry.observer.longitude - observer.longitude) <= self._threshold
        )

    def get(
        self, observer: Observer, when: datetime, settings: Settings | None
    ) -> EventSet | None:
        entry = self._entries.get(self.key(observer, when, settings))
        if entry is None or not self._is_valid(entry, observer):
            return None
        return entry.events

    def put(
        self, observer: Observer, when: datetime, settings: Settings | None, events: EventSet
    ) -> None:
        now = self._clock()
        # Drop expired entries so the cache only holds the working set
        self._entries = {
            k: e for k, e in self._entries.items() if now - e.captured_at <= self._duration
        }
        self._entries[self.key(observer, when, settings)] = EventCacheEntry(
            events=events, captured_at=now, observer=observer
        )

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# --- Aggregator -----------------------------------------------------------


def _sorted(events: list) -> tuple:
    return tuple(sorted(events, key=lambda e: e.when))


class EventAggregator:
    """Builds the EventSet for an observer, instant, and settings mapping.

    Each category is computed in isolation: an exception in one is logged and
    that category comes back empty while the others are unaffected.
    """

    def __init__(
        self,
        ephemeris: Ephemeris,
        cache: EventCache | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._ephemeris = ephemeris
        self._clock = clock
        self._cache = cache if cache is not None else EventCache(clock=clock)

    @property
    def cache(self) -> EventCache:
        return self._cache

    def rise_set_bodies(self, settings: Settings | None) -> list[str]:
        bodies = []
        if is_enabled(settings, CFG_SUN_RISE_SET):
            bodies.append("Sun")
        if is_enabled(settings, CFG_MOON_RISE_SET):
            bodies.append("Moon")
        bodies.extend(name for name, on in zip(PLANETS, planet_flags(settings)) if on)
        return bodies

    def get_all_events(
        self,
        observer: Observer,
        when: datetime | None = None,
        settings: Settings | None = None,
    ) -> EventSet:
        when = ensure_utc(when) if when is not None else self._clock()

        cached = self._cache.get(observer, when, settings)
        if cached is not None:
            logger.debug("Event cache hit for %s", self._cache.key(observer, when, settings))
            return cached

        eph = self._ephemeris
        rise_set: list[RiseSetEvent] = []
        for body in self.rise_set_bodies(settings):
            try:
                seq = get_rise_set_sequence(eph, body, observer, when)
            except Exception as e:
                logger.warning("Error getting rise/set for %s: %s", body, e)
                continue
            phases = seq.moon_phases or (None,) * len(seq.rise)
            rise_set.extend(
                RiseSetEvent(body, "rise", t, moon_phase=p)
                for t, p in zip(seq.rise, phases)
                if t is not None
            )
            rise_set.extend(RiseSetEvent(body, "set", t) for t in seq.set if t is not None)

        twilight: list[TwilightEvent] = []
        for subtype, key in TWILIGHT_KEYS.items():
            if not is_enabled(settings, key):
                continue
            try:
                tw = get_twilight_sequence(eph, observer, when, subtype)
            except Exception as e:
                logger.warning("Error getting %s twilight: %s", subtype, e)
                continue
            twilight.extend(TwilightEvent(subtype, "dawn", t) for t in tw.dawn if t is not None)
            twilight.extend(TwilightEvent(subtype, "dusk", t) for t in tw.dusk if t is not None)

        noon_midnight: list[SolarNoonMidnightEvent] = []
        if is_enabled(settings, CFG_SUN_SOLAR_NOON_MIDNIGHT):
            try:
                nm = get_solar_noon_midnight_sequence(eph, observer, when)
            except Exception as e:
                logger.warning("Error getting solar noon/midnight events: %s", e)
            else:
                noon_midnight.extend(
                    SolarNoonMidnightEvent("noon", t) for t in nm.noon if t is not None
                )
                noon_midnight.extend(
                    SolarNoonMidnightEvent("midnight", t) for t in nm.midnight if t is not None
                )

        equinoxes = is_enabled(settings, CFG_SUN_EQUINOXES)
        solstices = is_enabled(settings, CFG_SUN_SOLSTICES)
        seasonal = self._one_time(
            equinoxes or solstices,
            "seasonal",
            lambda: get_next_seasonal_event(eph, when, equinoxes, solstices),
        )
        transit = self._one_time(
            is_enabled(settings, CFG_SUN_SOLAR_TRANSITS),
            "transit",
            lambda: get_next_transit(eph, when),
        )
        eclipse = self._one_time(
            is_enabled(settings, CFG_SUN_ECLIPSES),
            "eclipse",
            lambda: get_next_eclipse(eph, when),
        )
        apsis = self._one_time(
            is_enabled(settings, CFG_MOON_APOGEE_PERIGEE),
            "lunar apsis",
            lambda: get_next_lunar_apsis(eph, when),
        )

        events = EventSet(
            rise_set=_sorted(rise_set),
            twilight=_sorted(twilight),
            solar_noon_midnight=_sorted(noon_midnight),
            seasonal=_sorted(seasonal),
            transit=_sorted(transit),
            eclipse=_sorted(eclipse),
            lunar_apsis=_sorted(apsis),
        )
        self._cache.put(observer, when, settings, events)
        return events

    @staticmethod
    def _one_time(enabled: bool, label: str, compute: Callable[[], object]) -> list:
        if not enabled:
            return []
        try:
            event = compute()
        except Exception as e:
            logger.warning("Error getting %s events: %s", label, e)
            return []
        return [event] if event is not None else []
