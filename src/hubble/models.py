"""Data model definitions: explicit boundaries between ephemeris, events, pins, and the wire."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar


@dataclass(frozen=True)
class Observer:
    """Snapshot of the observer location for a single computation."""

    latitude: float  # Decimal degrees, north positive
    longitude: float  # Decimal degrees, east positive
    height: float = 0.0  # Meters above the ellipsoid
    timezone: str | None = None  # IANA zone name; resolved from coordinates if None


class Category(str, Enum):
    """Event groups, in the order they are pushed to the timeline."""

    RISE_SET = "riseSet"
    TWILIGHT = "twilight"
    SOLAR_NOON_MIDNIGHT = "solarNoonMidnight"
    SEASONAL = "seasonal"
    TRANSIT = "transit"
    ECLIPSE = "eclipse"
    LUNAR_APSIS = "lunarApsis"

    @property
    def recurring(self) -> bool:
        return self in _RECURRING


_RECURRING = frozenset(
    {Category.RISE_SET, Category.TWILIGHT, Category.SOLAR_NOON_MIDNIGHT}
)


@dataclass(frozen=True)
class MoonPhase:
    """One of the eight 45° moon-phase buckets."""

    index: int  # 0 = New Moon ... 7 = Waning Crescent
    name: str


# --- Event variants -------------------------------------------------------


@dataclass(frozen=True)
class RiseSetEvent:
    body: str  # "Sun", "Moon", "Venus", ...
    direction: str  # "rise" | "set"
    time: datetime
    moon_phase: MoonPhase | None = None  # Only on Moon rises

    kind: ClassVar[Category] = Category.RISE_SET

    @property
    def when(self) -> datetime:
        return self.time


@dataclass(frozen=True)
class TwilightEvent:
    subtype: str  # "civil" | "nautical" | "astronomical"
    direction: str  # "dawn" | "dusk"
    time: datetime

    kind: ClassVar[Category] = Category.TWILIGHT

    @property
    def when(self) -> datetime:
        return self.time


@dataclass(frozen=True)
class SolarNoonMidnightEvent:
    direction: str  # "noon" | "midnight"
    time: datetime

    kind: ClassVar[Category] = Category.SOLAR_NOON_MIDNIGHT

    @property
    def when(self) -> datetime:
        return self.time


@dataclass(frozen=True)
class SeasonalEvent:
    season: str  # "marchEquinox" | "juneSolstice" | "septemberEquinox" | "decemberSolstice"
    time: datetime
    year: int

    kind: ClassVar[Category] = Category.SEASONAL

    @property
    def when(self) -> datetime:
        return self.time

    @property
    def is_equinox(self) -> bool:
        return self.season.endswith("Equinox")


@dataclass(frozen=True)
class TransitEvent:
    body: str  # "Mercury" | "Venus"
    start: datetime
    peak: datetime
    finish: datetime

    kind: ClassVar[Category] = Category.TRANSIT

    @property
    def when(self) -> datetime:
        return self.start


@dataclass(frozen=True)
class LunarEclipseEvent:
    peak: datetime
    eclipse_kind: str  # "penumbral" | "partial" | "total"
    partial_begin: datetime | None = None
    total_begin: datetime | None = None
    total_end: datetime | None = None
    partial_end: datetime | None = None

    kind: ClassVar[Category] = Category.ECLIPSE
    eclipse_type: ClassVar[str] = "lunar"

    @property
    def when(self) -> datetime:
        return self.peak


@dataclass(frozen=True)
class SolarEclipseEvent:
    peak: datetime
    eclipse_kind: str  # "partial" | "annular" | "total"
    distance_km: float  # Shadow axis to Earth's center
    latitude: float | None = None  # Centerline; total/annular only
    longitude: float | None = None
    obscuration: float | None = None  # Fraction of the solar disc, (0, 1]

    kind: ClassVar[Category] = Category.ECLIPSE
    eclipse_type: ClassVar[str] = "solar"

    @property
    def when(self) -> datetime:
        return self.peak


@dataclass(frozen=True)
class LunarApsisEvent:
    apsis: str  # "perigee" | "apogee"
    time: datetime
    distance_km: float

    kind: ClassVar[Category] = Category.LUNAR_APSIS

    @property
    def when(self) -> datetime:
        return self.time


Event = (
    RiseSetEvent
    | TwilightEvent
    | SolarNoonMidnightEvent
    | SeasonalEvent
    | TransitEvent
    | LunarEclipseEvent
    | SolarEclipseEvent
    | LunarApsisEvent
)


@dataclass(frozen=True)
class EventSet:
    """Normalized aggregation result. Every group is sorted ascending by ``when``."""

    rise_set: tuple[RiseSetEvent, ...] = ()
    twilight: tuple[TwilightEvent, ...] = ()
    solar_noon_midnight: tuple[SolarNoonMidnightEvent, ...] = ()
    seasonal: tuple[SeasonalEvent, ...] = ()
    transit: tuple[TransitEvent, ...] = ()
    eclipse: tuple[LunarEclipseEvent | SolarEclipseEvent, ...] = ()
    lunar_apsis: tuple[LunarApsisEvent, ...] = ()

    def group(self, category: Category) -> tuple[Event, ...]:
        return getattr(self, _GROUP_FIELDS[category])

    def groups(self) -> list[tuple[Category, tuple[Event, ...]]]:
        return [(c, self.group(c)) for c in Category]


_GROUP_FIELDS: dict[Category, str] = {
    Category.RISE_SET: "rise_set",
    Category.TWILIGHT: "twilight",
    Category.SOLAR_NOON_MIDNIGHT: "solar_noon_midnight",
    Category.SEASONAL: "seasonal",
    Category.TRANSIT: "transit",
    Category.ECLIPSE: "eclipse",
    Category.LUNAR_APSIS: "lunar_apsis",
}


# --- Timeline pins --------------------------------------------------------


@dataclass(frozen=True)
class PinLayout:
    title: str
    foreground_color: str  # "#RRGGBB"
    background_color: str
    tiny_icon: str  # "system://images/..."
    last_updated: str  # ISO-8601 UTC, no sub-second precision
    subtitle: str | None = None
    body: str | None = None
    type: str = "genericPin"


@dataclass(frozen=True)
class PinAction:
    title: str
    launch_code: int
    type: str = "openWatchApp"


@dataclass(frozen=True)
class PinDescriptor:
    """A single timeline entry. ``id`` is stable across recomputation."""

    id: str
    time: datetime
    layout: PinLayout
    actions: tuple[PinAction, ...] = field(default_factory=tuple)

    def to_json(self) -> dict:
        """Serialize to the timeline API pin schema."""
        layout: dict[str, str] = {
            "type": self.layout.type,
            "title": self.layout.title,
            "primaryColor": self.layout.foreground_color,
            "secondaryColor": self.layout.foreground_color,
            "backgroundColor": self.layout.background_color,
            "tinyIcon": self.layout.tiny_icon,
            "lastUpdated": self.layout.last_updated,
        }
        if self.layout.subtitle is not None:
            layout["subtitle"] = self.layout.subtitle
        if self.layout.body is not None:
            layout["body"] = self.layout.body
        return {
            "id": self.id,
            "time": _iso_seconds(self.time),
            "layout": layout,
            "actions": [
                {"title": a.title, "type": a.type, "launchCode": a.launch_code}
                for a in self.actions
            ],
        }


def _iso_seconds(dt: datetime) -> str:
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


# --- Transport commands ---------------------------------------------------


class PinOp(str, Enum):
    UPSERT = "upsert"
    DELETE = "delete"


@dataclass(frozen=True)
class PinCommand:
    """Outbound instruction to the timeline transport."""

    op: PinOp
    pin_id: str
    pin: PinDescriptor | None = None  # Required for UPSERT


@dataclass(frozen=True)
class CommandResult:
    """Completion report published by the dispatcher. The core never waits on it."""

    command: PinCommand
    ok: bool
    status: int | None = None  # HTTP status, None when the request never completed
    detail: str = ""


# --- Device protocol ------------------------------------------------------


@dataclass(frozen=True)
class BodyPackage:
    """Decoded field values of one device-protocol body package."""

    body_id: int
    azimuth: int  # Degrees, 0..360
    altitude: int  # Degrees, -90..90
    rise_hour: int  # 0..23, 31 = no rise
    rise_minute: int  # 0..59, 63 = no rise
    set_hour: int
    set_minute: int
    luminance_x10: int  # Magnitude * 10, -256..255
    phase: int  # 0..7, Moon only

    @property
    def has_rise(self) -> bool:
        return self.rise_hour < 24 and self.rise_minute < 60

    @property
    def has_set(self) -> bool:
        return self.set_hour < 24 and self.set_minute < 60
