"""Ephemeris adapter: the astronomy queries the sync layer needs, backed by skyfield.

The rest of the package only talks to the ``Ephemeris`` protocol. All times
crossing this boundary are timezone-aware UTC datetimes; every search returns
None when nothing is found inside its window.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import cached_property
from pathlib import Path
from typing import Protocol

import numpy as np
from skyfield import almanac
from skyfield.api import Loader, Star, wgs84
from skyfield.constants import AU_KM
from skyfield.eclipselib import LUNAR_ECLIPSES, lunar_eclipses
from skyfield.errors import EphemerisRangeError
from skyfield.framelib import ecliptic_frame
from skyfield.magnitudelib import planetary_magnitude
from skyfield.positionlib import Geocentric
from skyfield.searchlib import find_maxima, find_minima

from hubble.errors import EphemerisError, UnknownBodyError
from hubble.models import Observer
from hubble.timeutil import ensure_utc

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6378.1366
SUN_RADIUS_KM = 695_700.0
MOON_RADIUS_KM = 1737.4
_SUN_ABSOLUTE_MAGNITUDE = -26.74  # At 1 au

_SOLAR_SYSTEM_TARGETS: dict[str, str] = {
    "Sun": "sun",
    "Moon": "moon",
    "Mercury": "mercury",
    "Venus": "venus",
    "Mars": "mars barycenter",
    "Jupiter": "jupiter barycenter",
    "Saturn": "saturn barycenter",
    "Uranus": "uranus barycenter",
    "Neptune": "neptune barycenter",
    "Pluto": "pluto barycenter",
}

# Representative constellation centers (RA degrees, Dec degrees)
CONSTELLATION_CENTERS: dict[str, tuple[float, float]] = {
    "Aries": (39.75, 20.8),
    "Taurus": (70.5, 15.8),
    "Gemini": (105.0, 22.5),
    "Cancer": (129.75, 20.0),
    "Leo": (160.05, 15.0),
    "Virgo": (201.3, -3.0),
    "Libra": (228.0, -15.5),
    "Scorpius": (253.05, -26.5),
    "Sagittarius": (285.0, -25.0),
    "Capricornus": (315.0, -18.0),
    "Aquarius": (334.5, -10.5),
    "Pisces": (7.5, 10.0),
    "Orion": (83.7, 0.0),
    "Ursa Major": (165.0, 50.0),
    "Ursa Minor": (225.0, 75.0),
    "Cassiopeia": (15.0, 60.0),
    "Cygnus": (309.0, 42.0),
    "Crux": (187.5, -60.0),
    "Lyra": (283.5, 38.5),
}

# Apparent disc radius used for upper-limb rise/set
_DISC_RADIUS_DEGREES: dict[str, float] = {"Sun": 16.0 / 60.0, "Moon": 15.5 / 60.0}

_EPSILON = timedelta(seconds=1)


@dataclass(frozen=True)
class Seasons:
    march_equinox: datetime
    june_solstice: datetime
    september_equinox: datetime
    december_solstice: datetime


@dataclass(frozen=True)
class TransitInfo:
    start: datetime
    peak: datetime
    finish: datetime


@dataclass(frozen=True)
class LunarEclipseInfo:
    peak: datetime
    kind: str  # "penumbral" | "partial" | "total"
    partial_begin: datetime | None = None
    total_begin: datetime | None = None
    total_end: datetime | None = None
    partial_end: datetime | None = None


@dataclass(frozen=True)
class GlobalSolarEclipseInfo:
    peak: datetime
    kind: str  # "partial" | "annular" | "total"
    distance_km: float  # Closest approach of the shadow axis to Earth's center
    latitude: float | None = None
    longitude: float | None = None
    obscuration: float | None = None


@dataclass(frozen=True)
class ApsisInfo:
    time: datetime
    kind: str  # "perigee" | "apogee"
    distance_km: float


class Ephemeris(Protocol):
    """Deterministic, synchronous astronomy engine."""

    def horizontal(
        self, body: str, observer: Observer, when: datetime
    ) -> tuple[float, float]:
        """Return (azimuth, altitude) in degrees, refraction-corrected."""
        ...

    def search_rise_set(
        self,
        body: str,
        observer: Observer,
        direction: int,
        start: datetime,
        limit_days: float,
    ) -> datetime | None:
        """Next rise (direction +1) or set (-1); negative limit_days searches backward."""
        ...

    def search_altitude(
        self,
        body: str,
        observer: Observer,
        direction: int,
        start: datetime,
        limit_days: float,
        altitude: float,
    ) -> datetime | None:
        """Next ascending (+1) or descending (-1) crossing of ``altitude`` degrees."""
        ...

    def search_hour_angle(
        self,
        body: str,
        observer: Observer,
        hour_angle: float,
        start: datetime,
        direction: int,
    ) -> datetime | None:
        """Next (+1) or previous (-1) instant the body reaches ``hour_angle`` hours."""
        ...

    def magnitude(self, body: str, when: datetime) -> float: ...

    def moon_phase(self, when: datetime) -> float:
        """Moon phase angle in degrees: 0 new, 90 first quarter, 180 full."""
        ...

    def seasons(self, year: int) -> Seasons: ...

    def search_transit(
        self, body: str, start: datetime, until: datetime | None = None
    ) -> TransitInfo | None: ...

    def search_lunar_eclipse(self, start: datetime) -> LunarEclipseInfo | None: ...

    def search_global_solar_eclipse(
        self, start: datetime
    ) -> GlobalSolarEclipseInfo | None: ...

    def search_lunar_apsis(self, start: datetime) -> ApsisInfo | None: ...


def ephemeris_path(data_dir: Path, ephemeris_file: str) -> Path:
    return Path(data_dir) / ephemeris_file


class SkyfieldEphemeris:
    """``Ephemeris`` implementation on top of a JPL kernel loaded by skyfield.

    The kernel is loaded (and downloaded into ``data_dir`` if missing) on the
    first query that needs it.
    """

    def __init__(
        self,
        data_dir: Path,
        ephemeris_file: str = "de421.bsp",
        transit_search_years: int = 20,
        eclipse_search_years: int = 2,
    ) -> None:
        self._loader = Loader(str(data_dir))
        self._ephemeris_file = ephemeris_file
        self._ts = self._loader.timescale()
        self._transit_search_years = transit_search_years
        self._eclipse_search_years = eclipse_search_years

    @cached_property
    def _eph(self):
        logger.info("Loading ephemeris %s", self._ephemeris_file)
        return self._loader(self._ephemeris_file)

    @cached_property
    def _earth(self):
        return self._eph["earth"]

    @cached_property
    def _sun(self):
        return self._eph["sun"]

    @cached_property
    def _moon(self):
        return self._eph["moon"]

    # --- conversions -----------------------------------------------------

    def _time(self, dt: datetime):
        return self._ts.from_datetime(ensure_utc(dt))

    def _shift(self, t, days: float):
        return self._ts.tt_jd(t.tt + days)

    @staticmethod
    def _datetime(t) -> datetime:
        return ensure_utc(t.utc_datetime())

    def _datetimes(self, times) -> list[datetime]:
        if len(times) == 0:
            return []
        return [ensure_utc(dt) for dt in times.utc_datetime()]

    def _target(self, body: str):
        if body in CONSTELLATION_CENTERS:
            ra, dec = CONSTELLATION_CENTERS[body]
            return Star(ra_hours=ra / 15.0, dec_degrees=dec)
        key = _SOLAR_SYSTEM_TARGETS.get(body)
        if key is None:
            raise UnknownBodyError(f"Unknown body: {body}")
        return self._eph[key]

    @staticmethod
    def _topos(observer: Observer):
        return wgs84.latlon(
            latitude_degrees=observer.latitude,
            longitude_degrees=observer.longitude,
            elevation_m=observer.height,
        )

    def _search(self, f, wanted, start: datetime, limit_days: float) -> datetime | None:
        """Run find_discrete over [start, start + limit_days] and pick the nearest hit.

        Forward searches return the first matching transition at or after
        ``start``; backward searches return the last one strictly before it.
        """
        start = ensure_utc(start)
        t0, t1 = sorted((start, start + timedelta(days=limit_days)))
        try:
            times, values = almanac.find_discrete(self._time(t0), self._time(t1), f)
        except EphemerisRangeError as e:
            raise EphemerisError(str(e)) from e
        hits = [
            dt for dt, v in zip(self._datetimes(times), values) if v == wanted
        ]
        if limit_days < 0:
            before = [dt for dt in hits if dt < start - _EPSILON]
            return before[-1] if before else None
        after = [dt for dt in hits if dt >= start]
        return after[0] if after else None

    # --- positions -------------------------------------------------------

    def horizontal(
        self, body: str, observer: Observer, when: datetime
    ) -> tuple[float, float]:
        site = self._earth + self._topos(observer)
        apparent = site.at(self._time(when)).observe(self._target(body)).apparent()
        alt, az, _ = apparent.altaz("standard")
        return float(az.degrees), float(alt.degrees)

    def search_rise_set(
        self,
        body: str,
        observer: Observer,
        direction: int,
        start: datetime,
        limit_days: float,
    ) -> datetime | None:
        f = almanac.risings_and_settings(
            self._eph,
            self._target(body),
            self._topos(observer),
            radius_degrees=_DISC_RADIUS_DEGREES.get(body, 0.0),
        )
        return self._search(f, 1 if direction > 0 else 0, start, limit_days)

    def search_altitude(
        self,
        body: str,
        observer: Observer,
        direction: int,
        start: datetime,
        limit_days: float,
        altitude: float,
    ) -> datetime | None:
        site = self._earth + self._topos(observer)
        target = self._target(body)

        def above(t):
            alt, _, _ = site.at(t).observe(target).apparent().altaz()
            return alt.degrees > altitude

        above.step_days = 0.04
        return self._search(above, direction > 0, start, limit_days)

    def search_hour_angle(
        self,
        body: str,
        observer: Observer,
        hour_angle: float,
        start: datetime,
        direction: int,
    ) -> datetime | None:
        # meridian_transits reports 1 at upper culmination, 0 at lower
        if hour_angle % 24 == 0:
            wanted = 1
        elif hour_angle % 24 == 12:
            wanted = 0
        else:
            raise EphemerisError(f"Unsupported hour angle: {hour_angle}")
        f = almanac.meridian_transits(self._eph, self._target(body), self._topos(observer))
        return self._search(f, wanted, start, 2.0 if direction > 0 else -2.0)

    # --- brightness and phase --------------------------------------------

    def magnitude(self, body: str, when: datetime) -> float:
        t = self._time(when)
        if body == "Sun":
            dist_au = self._earth.at(t).observe(self._sun).distance().au
            return _SUN_ABSOLUTE_MAGNITUDE + 5.0 * math.log10(dist_au)
        if body == "Moon":
            # Allen's approximation over the phase angle
            a = float(almanac.phase_angle(self._eph, "moon", t).degrees)
            return -12.73 + 0.026 * abs(a) + 4e-9 * a**4
        if body in CONSTELLATION_CENTERS:
            raise EphemerisError(f"No magnitude for constellation {body}")
        try:
            mag = float(planetary_magnitude(self._earth.at(t).observe(self._target(body))))
        except ValueError as e:
            raise EphemerisError(f"No magnitude model for {body}") from e
        if math.isnan(mag):
            raise EphemerisError(f"Magnitude of {body} undefined at {when}")
        return mag

    def moon_phase(self, when: datetime) -> float:
        return float(almanac.moon_phase(self._eph, self._time(when)).degrees)

    # --- calendar events -------------------------------------------------

    def seasons(self, year: int) -> Seasons:
        t0 = self._ts.utc(year, 1, 1)
        t1 = self._ts.utc(year + 1, 1, 1)
        times, values = almanac.find_discrete(t0, t1, almanac.seasons(self._eph))
        found = {int(v): dt for dt, v in zip(self._datetimes(times), values)}
        try:
            return Seasons(
                march_equinox=found[0],
                june_solstice=found[1],
                september_equinox=found[2],
                december_solstice=found[3],
            )
        except KeyError as e:
            raise EphemerisError(f"Incomplete season set for {year}") from e

    def search_lunar_apsis(self, start: datetime) -> ApsisInfo | None:
        moon = self._moon

        def distance(t):
            return self._earth.at(t).observe(moon).distance().km

        distance.step_days = 0.5
        t0 = self._time(start)
        t1 = self._shift(t0, 32.0)
        candidates: list[ApsisInfo] = []
        low_t, low_v = find_minima(t0, t1, distance)
        if len(low_v):
            candidates.append(ApsisInfo(self._datetime(low_t[0]), "perigee", float(low_v[0])))
        high_t, high_v = find_maxima(t0, t1, distance)
        if len(high_v):
            candidates.append(ApsisInfo(self._datetime(high_t[0]), "apogee", float(high_v[0])))
        return min(candidates, key=lambda a: a.time) if candidates else None

    # --- transits --------------------------------------------------------

    def search_transit(
        self, body: str, start: datetime, until: datetime | None = None
    ) -> TransitInfo | None:
        """Next transit of Mercury or Venus across the Sun, starting before ``until``."""
        if body not in ("Mercury", "Venus"):
            raise EphemerisError(f"{body} cannot transit the Sun")
        target = self._target(body)
        sun = self._sun

        def east_of_sun(t):
            e = self._earth.at(t)
            _, slon, _ = e.observe(sun).apparent().frame_latlon(ecliptic_frame)
            _, plon, _ = e.observe(target).apparent().frame_latlon(ecliptic_frame)
            return (plon.degrees - slon.degrees) % 360.0 < 180.0

        east_of_sun.step_days = 5.0

        start = ensure_utc(start)
        limit = start + timedelta(days=365.25 * self._transit_search_years)
        if until is not None:
            limit = min(limit, ensure_utc(until))

        window_start = start
        while window_start < limit:
            window_end = min(window_start + timedelta(days=365.25), limit)
            try:
                times, _ = almanac.find_discrete(
                    self._time(window_start), self._time(window_end), east_of_sun
                )
            except EphemerisRangeError:
                logger.debug("Transit search for %s ran past the ephemeris", body)
                return None
            for i in range(len(times)):
                info = self._transit_near(target, times[i])
                if info is not None and info.start >= start:
                    return info
            window_start = window_end
        return None

    def _transit_near(self, target, conjunction) -> TransitInfo | None:
        e = self._earth.at(conjunction)
        if e.observe(target).distance().km >= e.observe(self._sun).distance().km:
            return None  # Superior conjunction

        def separation(t):
            e = self._earth.at(t)
            sun = e.observe(self._sun).apparent()
            return sun.separation_from(e.observe(target).apparent()).degrees

        def solar_radius(t):
            km = self._earth.at(t).observe(self._sun).distance().km
            return np.degrees(np.arcsin(SUN_RADIUS_KM / km))

        separation.step_days = 0.05
        peaks, values = find_minima(
            self._shift(conjunction, -1.0), self._shift(conjunction, 1.0), separation
        )
        if not len(values):
            return None
        peak = peaks[0]
        if values[0] >= solar_radius(peak):
            return None

        def on_disc(t):
            return separation(t) < solar_radius(t)

        on_disc.step_days = 0.01
        times, inside = almanac.find_discrete(
            self._shift(peak, -0.5), self._shift(peak, 0.5), on_disc
        )
        contacts = list(zip(self._datetimes(times), inside))
        ingress = next((dt for dt, v in contacts if v), None)
        egress = next((dt for dt, v in contacts if not v and ingress and dt > ingress), None)
        if ingress is None or egress is None:
            return None
        return TransitInfo(start=ingress, peak=self._datetime(peak), finish=egress)

    # --- eclipses --------------------------------------------------------

    def search_lunar_eclipse(self, start: datetime) -> LunarEclipseInfo | None:
        t0 = self._time(start)
        for _ in range(self._eclipse_search_years):
            t1 = self._shift(t0, 366.0)
            times, kinds, _ = lunar_eclipses(t0, t1, self._eph)
            if len(times):
                peak = times[0]
                return LunarEclipseInfo(
                    peak=self._datetime(peak),
                    kind=LUNAR_ECLIPSES[int(kinds[0])].lower(),
                    **self._lunar_contacts(peak),
                )
            t0 = t1
        return None

    def _lunar_contacts(self, peak) -> dict[str, datetime]:
        """Umbral contact times around ``peak``; empty for penumbral eclipses."""

        def stage(t):
            e = self._earth.at(t)
            sun = e.observe(self._sun)
            moon = e.observe(self._moon)
            sun_km = sun.distance().km
            moon_km = moon.distance().km
            from_antisolar = 180.0 - sun.separation_from(moon).degrees
            parallax_moon = np.degrees(np.arcsin(EARTH_RADIUS_KM / moon_km))
            parallax_sun = np.degrees(np.arcsin(EARTH_RADIUS_KM / sun_km))
            sun_radius = np.degrees(np.arcsin(SUN_RADIUS_KM / sun_km))
            moon_radius = np.degrees(np.arcsin(MOON_RADIUS_KM / moon_km))
            # Danjon's 2% enlargement of the umbra for the atmosphere
            umbra = 1.02 * (parallax_moon + parallax_sun - sun_radius)
            return np.asarray(from_antisolar < umbra + moon_radius, dtype=int) + np.asarray(
                from_antisolar < umbra - moon_radius, dtype=int
            )

        stage.step_days = 0.01
        times, stages = almanac.find_discrete(
            self._shift(peak, -0.3), self._shift(peak, 0.3), stage
        )
        names = {
            (0, 1): "partial_begin",
            (1, 2): "total_begin",
            (2, 1): "total_end",
            (1, 0): "partial_end",
        }
        contacts: dict[str, datetime] = {}
        previous = 0
        for dt, value in zip(self._datetimes(times), stages):
            name = names.get((previous, int(value)))
            if name is not None:
                contacts.setdefault(name, dt)
            previous = int(value)
        return contacts

    def search_global_solar_eclipse(self, start: datetime) -> GlobalSolarEclipseInfo | None:
        start = ensure_utc(start)
        t0 = self._time(start)
        phases = almanac.moon_phases(self._eph)
        for _ in range(self._eclipse_search_years):
            t1 = self._shift(t0, 366.0)
            times, values = almanac.find_discrete(t0, t1, phases)
            for i in range(len(values)):
                if int(values[i]) != 0:
                    continue
                info = self._solar_eclipse_near(times[i])
                if info is not None and info.peak > start:
                    return info
            t0 = t1
        return None

    def _shadow_axis(self, t):
        """Geometry of the Sun→Moon shadow axis relative to Earth's center (km).

        Returns (distance, along, axis_length, unit, moon, sun) where
        ``distance`` is the closest approach of the axis to Earth's center and
        ``along`` is how far past the Moon that closest point lies.
        """
        e = self._earth.at(t)
        sun = e.observe(self._sun).position.km
        moon = e.observe(self._moon).position.km
        axis = moon - sun
        axis_length = np.sqrt((axis * axis).sum(axis=0))
        unit = axis / axis_length
        along = -(moon * unit).sum(axis=0)
        closest = moon + along * unit
        distance = np.sqrt((closest * closest).sum(axis=0))
        return distance, along, axis_length, unit, moon, sun

    def _solar_eclipse_near(self, new_moon) -> GlobalSolarEclipseInfo | None:
        def axis_distance(t):
            return self._shadow_axis(t)[0]

        axis_distance.step_days = 0.02
        peaks, _ = find_minima(
            self._shift(new_moon, -0.5), self._shift(new_moon, 0.5), axis_distance
        )
        if not len(peaks):
            return None
        peak = peaks[0]
        distance, along, axis_length, unit, moon, sun = self._shadow_axis(peak)
        penumbra = MOON_RADIUS_KM + along * (SUN_RADIUS_KM + MOON_RADIUS_KM) / axis_length
        if distance > EARTH_RADIUS_KM + penumbra:
            return None

        peak_dt = self._datetime(peak)
        if distance >= EARTH_RADIUS_KM:
            return GlobalSolarEclipseInfo(peak=peak_dt, kind="partial", distance_km=float(distance))

        # Central eclipse: the axis pierces the Earth
        k = along - math.sqrt(EARTH_RADIUS_KM**2 - distance**2)
        surface = moon + k * unit
        umbra = MOON_RADIUS_KM - k * (SUN_RADIUS_KM - MOON_RADIUS_KM) / axis_length
        lat, lon = wgs84.latlon_of(Geocentric(surface / AU_KM, t=peak))
        if umbra > 0:
            kind, obscuration = "total", 1.0
        else:
            moon_size = MOON_RADIUS_KM / np.linalg.norm(moon - surface)
            sun_size = SUN_RADIUS_KM / np.linalg.norm(sun - surface)
            kind, obscuration = "annular", float((moon_size / sun_size) ** 2)
        return GlobalSolarEclipseInfo(
            peak=peak_dt,
            kind=kind,
            distance_km=float(distance),
            latitude=float(lat.degrees),
            longitude=float(lon.degrees),
            obscuration=obscuration,
        )
