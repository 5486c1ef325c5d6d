"""Timeline pin construction: identity scheme, style table, and per-event builders.

Every builder is a pure function of its event, sequence index and the
``now`` used for ``lastUpdated``.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from hubble.models import (
    Event,
    LunarApsisEvent,
    LunarEclipseEvent,
    PinAction,
    PinDescriptor,
    PinLayout,
    RiseSetEvent,
    SeasonalEvent,
    SolarEclipseEvent,
    SolarNoonMidnightEvent,
    TransitEvent,
    TwilightEvent,
)
from hubble.settings import PLANETS
from hubble.timeutil import ensure_utc, utc_now

SEQUENCE_OFFSETS: tuple[int, ...] = (-2, -1, 0, 1, 2)

RISE_SET_BODIES: tuple[str, ...] = ("Sun", "Moon", *PLANETS)

# Recurring bases take a sequence suffix; one-time ids stand alone
RECURRING_PIN_BASES: tuple[str, ...] = (
    *(f"{body.lower()}-{d}" for body in RISE_SET_BODIES for d in ("rise", "set")),
    "civil-dawn",
    "civil-dusk",
    "nautical-dawn",
    "nautical-dusk",
    "astronomical-dawn",
    "astronomical-dusk",
    "solar-noon",
    "solar-midnight",
)

EQUINOX_PIN_ID = "equinox"
SOLSTICE_PIN_ID = "solstice"
TRANSIT_PIN_ID = "planetary-transit"
ECLIPSE_PIN_ID = "eclipse"
MOON_APSIS_PIN_ID = "moon-apsis"
ONE_TIME_PIN_IDS: tuple[str, ...] = (
    EQUINOX_PIN_ID,
    SOLSTICE_PIN_ID,
    TRANSIT_PIN_ID,
    ECLIPSE_PIN_ID,
    MOON_APSIS_PIN_ID,
)

TEST_PIN_ID = "00-00-test"


@dataclass(frozen=True)
class PinStyle:
    foreground: str
    background: str
    icon: str  # Pebble system resource name


EVENT_STYLES: dict[str, PinStyle] = {
    "sunRise": PinStyle("#000000", "#FFFF00", "SUNRISE"),
    "sunSet": PinStyle("#000000", "#FFAA00", "SUNSET"),
    "bodyRise": PinStyle("#000000", "#AAAA55", "NOTIFICATION_FLAG"),
    "bodySet": PinStyle("#FFFFFF", "#555500", "NOTIFICATION_FLAG"),
    "moonRise": PinStyle("#FFFFFF", "#AA55FF", "NOTIFICATION_FLAG"),
    "moonSet": PinStyle("#FFFFFF", "#AA00FF", "NOTIFICATION_FLAG"),
    "astronomicalDawn": PinStyle("#FFFFFF", "#AA00AA", "GENERIC_CONFIRMATION"),
    "astronomicalDusk": PinStyle("#FFFFFF", "#AA00AA", "GENERIC_CONFIRMATION"),
    "nauticalDawn": PinStyle("#FFFFFF", "#AA00FF", "NOTIFICATION_LIGHTHOUSE"),
    "nauticalDusk": PinStyle("#FFFFFF", "#AA00FF", "NOTIFICATION_LIGHTHOUSE"),
    "civilDawn": PinStyle("#000000", "#AA55FF", "NOTIFICATION_GENERIC"),
    "civilDusk": PinStyle("#000000", "#AA55FF", "NOTIFICATION_GENERIC"),
    "solarNoon": PinStyle("#000000", "#FFFF55", "TIMELINE_SUN"),
    "solarMidnight": PinStyle("#000000", "#AAAA55", "TIMELINE_SUN"),
    "equinox": PinStyle("#000000", "#55FFAA", "TIMELINE_SUN"),
    "solstice": PinStyle("#000000", "#00FFFF", "TIMELINE_SUN"),
    "eclipse": PinStyle("#FFFFFF", "#5555FF", "TIMELINE_SUN"),
    "transit": PinStyle("#000000", "#FFFF00", "TIMELINE_SUN"),
    "lunarApsis": PinStyle("#000000", "#5555FF", "NOTIFICATION_FLAG"),
}

# Body index used by the watch's launch codes; separate from the protocol table
ACTION_BODY_IDS: dict[str, int] = {
    "Moon": 0,
    "Mercury": 1,
    "Venus": 2,
    "Mars": 3,
    "Jupiter": 4,
    "Saturn": 5,
    "Uranus": 6,
    "Neptune": 7,
    "Pluto": 8,
    "Sun": 9,
}

LAUNCH_BODY_DETAILS_BASE = 200
LAUNCH_OPEN_APP = 100
LAUNCH_REFRESH = 101
LAUNCH_TEST = 10

_SEASON_TITLES: dict[str, str] = {
    "marchEquinox": "March Equinox",
    "juneSolstice": "June Solstice",
    "septemberEquinox": "September Equinox",
    "decemberSolstice": "December Solstice",
}


def all_possible_pin_ids() -> list[str]:
    """Every id this package can ever push, recurring offsets included."""
    ids = [f"{base}{offset}" for base in RECURRING_PIN_BASES for offset in SEQUENCE_OFFSETS]
    ids.extend(ONE_TIME_PIN_IDS)
    return ids


def pin_id(base: str, sequence_index: int | None = None) -> str:
    """``sun-rise`` + ``-1`` -> ``sun-rise-1``; one-time ids pass through."""
    return base if sequence_index is None else f"{base}{sequence_index}"


def timestamp(now: datetime | None = None) -> str:
    """ISO-8601 UTC without fractional seconds."""
    now = ensure_utc(now) if now is not None else utc_now()
    return now.strftime("%Y-%m-%dT%H:%M:%SZ")


def _capitalize(s: str) -> str:
    return s[:1].upper() + s[1:]


def _actions(body: str) -> tuple[PinAction, ...]:
    return (
        PinAction(f"{body} Details", LAUNCH_BODY_DETAILS_BASE + ACTION_BODY_IDS.get(body, 0)),
        PinAction("Open Hubble", LAUNCH_OPEN_APP),
        PinAction("Refresh events", LAUNCH_REFRESH),
    )


def _pin(
    id_: str,
    time: datetime,
    style_key: str,
    title: str,
    action_body: str,
    now: datetime | None,
    subtitle: str | None = None,
) -> PinDescriptor:
    style = EVENT_STYLES[style_key]
    return PinDescriptor(
        id=id_,
        time=ensure_utc(time),
        layout=PinLayout(
            title=title,
            subtitle=subtitle,
            foreground_color=style.foreground,
            background_color=style.background,
            tiny_icon=f"system://images/{style.icon}",
            last_updated=timestamp(now),
        ),
        actions=_actions(action_body),
    )


def build_rise_set_pin(
    event: RiseSetEvent, sequence_index: int | None = None, now: datetime | None = None
) -> PinDescriptor:
    rising = event.direction == "rise"
    if event.body in ("Sun", "Moon"):
        style_key = f"{event.body.lower()}{'Rise' if rising else 'Set'}"
        title = f"{event.body}{event.direction}"
    else:
        style_key = "bodyRise" if rising else "bodySet"
        title = f"{_capitalize(event.body)} {'Rises' if rising else 'Sets'}"
    subtitle = event.moon_phase.name if event.moon_phase is not None else None
    return _pin(
        pin_id(f"{event.body.lower()}-{event.direction}", sequence_index),
        event.time,
        style_key,
        title,
        event.body,
        now,
        subtitle=subtitle,
    )


def build_twilight_pin(
    event: TwilightEvent, sequence_index: int | None = None, now: datetime | None = None
) -> PinDescriptor:
    return _pin(
        pin_id(f"{event.subtype}-{event.direction}", sequence_index),
        event.time,
        f"{event.subtype}{_capitalize(event.direction)}",
        f"{_capitalize(event.subtype)} {event.direction}",
        "Sun",
        now,
    )


def build_solar_noon_midnight_pin(
    event: SolarNoonMidnightEvent,
    sequence_index: int | None = None,
    now: datetime | None = None,
) -> PinDescriptor:
    noon = event.direction == "noon"
    return _pin(
        pin_id(f"solar-{event.direction}", sequence_index),
        event.time,
        "solarNoon" if noon else "solarMidnight",
        "Solar Noon" if noon else "Solar Midnight",
        "Sun",
        now,
    )


def build_seasonal_pin(event: SeasonalEvent, now: datetime | None = None) -> PinDescriptor:
    return _pin(
        EQUINOX_PIN_ID if event.is_equinox else SOLSTICE_PIN_ID,
        event.time,
        "equinox" if event.is_equinox else "solstice",
        _SEASON_TITLES.get(event.season, event.season),
        "Sun",
        now,
        subtitle=str(event.year),
    )


def build_transit_pin(event: TransitEvent, now: datetime | None = None) -> PinDescriptor:
    return _pin(
        TRANSIT_PIN_ID,
        event.start,
        "transit",
        f"{event.body} Transit",
        event.body,
        now,
        subtitle="Begins",
    )


def build_eclipse_pin(
    event: LunarEclipseEvent | SolarEclipseEvent, now: datetime | None = None
) -> PinDescriptor:
    return _pin(
        ECLIPSE_PIN_ID,
        event.peak,
        "eclipse",
        f"{_capitalize(event.eclipse_kind)} {event.eclipse_type} Eclipse",
        "Sun" if event.eclipse_type == "solar" else "Moon",
        now,
    )


def build_lunar_apsis_pin(event: LunarApsisEvent, now: datetime | None = None) -> PinDescriptor:
    return _pin(
        MOON_APSIS_PIN_ID,
        event.time,
        "lunarApsis",
        f"Lunar {_capitalize(event.apsis)}",
        "Moon",
        now,
        subtitle=f"{event.distance_km:,.0f} km",
    )


def build_pin(
    event: Event, sequence_index: int | None = None, now: datetime | None = None
) -> PinDescriptor:
    """Dispatch to the builder for the event's variant.

    Args:
        event: Any event variant.
        sequence_index: Offset in [-2, 2] for recurring events; ignored otherwise.
        now: Instant stamped into ``lastUpdated``. Defaults to the wall clock.

    Returns:
        Fully formed PinDescriptor.

    Raises:
        TypeError: If ``event`` is not a known event variant.
    """
    if isinstance(event, RiseSetEvent):
        return build_rise_set_pin(event, sequence_index, now)
    if isinstance(event, TwilightEvent):
        return build_twilight_pin(event, sequence_index, now)
    if isinstance(event, SolarNoonMidnightEvent):
        return build_solar_noon_midnight_pin(event, sequence_index, now)
    if isinstance(event, SeasonalEvent):
        return build_seasonal_pin(event, now)
    if isinstance(event, TransitEvent):
        return build_transit_pin(event, now)
    if isinstance(event, (LunarEclipseEvent, SolarEclipseEvent)):
        return build_eclipse_pin(event, now)
    if isinstance(event, LunarApsisEvent):
        return build_lunar_apsis_pin(event, now)
    raise TypeError(f"Unsupported event type: {type(event).__name__}")


def build_test_pin(now: datetime | None = None) -> PinDescriptor:
    """Development pin one hour ahead, for checking the timeline round trip."""
    now = ensure_utc(now) if now is not None else utc_now()
    stamp = timestamp(now)
    return PinDescriptor(
        id=TEST_PIN_ID,
        time=now + timedelta(hours=1),
        layout=PinLayout(
            title="Test Pin",
            subtitle="For Testing",
            body=f"Test pin generated at {stamp}",
            foreground_color="#FFFFFF",
            background_color="#000000",
            tiny_icon="system://images/NOTIFICATION_FLAG",
            last_updated=stamp,
        ),
        actions=(PinAction("Open App", LAUNCH_TEST),),
    )
