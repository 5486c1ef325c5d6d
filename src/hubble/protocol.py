"""Device protocol: bit-packed body packages exchanged with the watch.

Layout, fields written LSB first into a little-endian bit stream:

    V2 (8 bytes): body 8 | azimuth 9 | altitude 8 | rise hour 5 | rise minute 6
                  | set hour 5 | set minute 6 | luminance*10 9 | phase 3 | pad 5
    V1 (7 bytes): body 5 | phase 3 | azimuth 9 | altitude 8 | rise hour 5
                  | rise minute 6 | set hour 5 | set minute 6 | luminance*10 9

Altitude and luminance are two's complement. A missing rise or set is sent
as hour 31, minute 63.
"""

import logging
import math
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from hubble.ephemeris import Ephemeris
from hubble.errors import MissingObserverError, UnknownBodyError
from hubble.events import moon_phase_index
from hubble.models import BodyPackage, Observer
from hubble.timeutil import ensure_utc, observer_zone, utc_now

logger = logging.getLogger(__name__)

PROTOCOL_V1 = 1
PROTOCOL_V2 = 2
PACKAGE_SIZES: dict[int, int] = {PROTOCOL_V1: 7, PROTOCOL_V2: 8}

REQUEST_BODY_KEY = "REQUEST_BODY"
BODY_PACKAGE_KEY = "BODY_PACKAGE"

SENTINEL_HOUR = 31
SENTINEL_MINUTE = 63

RISE_SET_LIMIT_DAYS = 99.0
MAX_RISE_SET_BODY_ID = 9  # Moon, planets, Sun

# Body ids shared with the watch firmware; order is part of the protocol
BODY_NAMES: tuple[str, ...] = (
    "Moon",
    "Mercury",
    "Venus",
    "Mars",
    "Jupiter",
    "Saturn",
    "Uranus",
    "Neptune",
    "Pluto",
    "Sun",
    # Zodiac
    "Aries",
    "Taurus",
    "Gemini",
    "Cancer",
    "Leo",
    "Virgo",
    "Libra",
    "Scorpius",
    "Sagittarius",
    "Capricornus",
    "Aquarius",
    "Pisces",
    # Other notable constellations
    "Orion",
    "Ursa Major",
    "Ursa Minor",
    "Cassiopeia",
    "Cygnus",
    "Crux",
    "Lyra",
)


def body_name(body_id: int) -> str:
    if not isinstance(body_id, int) or not 0 <= body_id < len(BODY_NAMES):
        raise UnknownBodyError(f"Unknown body id: {body_id}")
    return BODY_NAMES[body_id]


# --- Bit packing ----------------------------------------------------------


def _clamp(value: int, low: int, high: int) -> int:
    return min(high, max(low, value))


def _round(value: float) -> int:
    """Round half up, so -0.5 -> 0 and 2.5 -> 3."""
    return math.floor(value + 0.5)


def encode_unsigned(value: float, low: int, high: int) -> int:
    return _clamp(_round(value), low, high)


def encode_signed(value: float, bits: int, low: int, high: int) -> int:
    """Round, clamp, and fold negatives into ``bits``-wide two's complement."""
    clamped = _clamp(_round(value), low, high)
    return clamped + (1 << bits) if clamped < 0 else clamped


def decode_signed(raw: int, bits: int) -> int:
    return raw - (1 << bits) if raw & (1 << (bits - 1)) else raw


class BitWriter:
    """Appends fixed-width unsigned fields LSB first into a byte buffer."""

    def __init__(self, size: int) -> None:
        self._buffer = bytearray(size)
        self._pos = 0

    def write(self, value: int, width: int) -> None:
        if self._pos + width > len(self._buffer) * 8:
            raise ValueError(f"Field of {width} bits overflows {len(self._buffer)}-byte buffer")
        for _ in range(width):
            if value & 1:
                self._buffer[self._pos >> 3] |= 1 << (self._pos & 7)
            value >>= 1
            self._pos += 1

    def getvalue(self) -> bytes:
        return bytes(self._buffer)


class BitReader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def read(self, width: int) -> int:
        if self._pos + width > len(self._data) * 8:
            raise ValueError("Read past end of body package")
        value = 0
        for i in range(width):
            if self._data[self._pos >> 3] & (1 << (self._pos & 7)):
                value |= 1 << i
            self._pos += 1
        return value


# --- Body package ---------------------------------------------------------


def _local_hm(dt: datetime | None, zone) -> tuple[int, int]:
    if dt is None:
        return SENTINEL_HOUR, SENTINEL_MINUTE
    local = ensure_utc(dt).astimezone(zone)
    return local.hour, local.minute


def compute_body_package(
    ephemeris: Ephemeris, body_id: int, observer: Observer | None, when: datetime | None = None
) -> BodyPackage:
    """Evaluate the live values for one body.

    Each computation is guarded on its own; a failure is logged and that
    field falls back to its default (0, or "no event" for rise/set).

    Raises:
        UnknownBodyError: If ``body_id`` is not in BODY_NAMES.
        MissingObserverError: If ``observer`` is None.
    """
    name = body_name(body_id)
    if observer is None:
        raise MissingObserverError("Observer required to compute body package")
    when = ensure_utc(when) if when is not None else utc_now()

    try:
        azimuth, altitude = ephemeris.horizontal(name, observer, when)
    except Exception as e:
        logger.warning("Could not calculate horizontal position for %s: %s", name, e)
        azimuth, altitude = 0.0, 0.0

    rise = set_ = None
    if body_id <= MAX_RISE_SET_BODY_ID:
        try:
            rise = ephemeris.search_rise_set(name, observer, +1, when, RISE_SET_LIMIT_DAYS)
            set_ = ephemeris.search_rise_set(name, observer, -1, when, RISE_SET_LIMIT_DAYS)
        except Exception as e:
            logger.warning("Could not calculate rise/set for %s: %s", name, e)
            rise = set_ = None

    try:
        magnitude = ephemeris.magnitude(name, when)
    except Exception as e:
        logger.warning("Could not calculate magnitude for %s: %s", name, e)
        magnitude = 0.0

    phase = 0
    if name == "Moon":
        try:
            phase = moon_phase_index(ephemeris.moon_phase(when))
        except Exception as e:
            logger.warning("Could not calculate moon phase: %s", e)

    zone = observer_zone(observer)
    rise_hour, rise_minute = _local_hm(rise, zone)
    set_hour, set_minute = _local_hm(set_, zone)
    return BodyPackage(
        body_id=body_id,
        azimuth=encode_unsigned(azimuth, 0, 360),
        altitude=_clamp(_round(altitude), -90, 90),
        rise_hour=rise_hour,
        rise_minute=rise_minute,
        set_hour=set_hour,
        set_minute=set_minute,
        luminance_x10=_clamp(_round(magnitude * 10), -256, 255),
        phase=encode_unsigned(phase, 0, 7),
    )


def pack_body_package(package: BodyPackage, version: int = PROTOCOL_V2) -> bytes:
    """Serialize decoded field values into the wire layout for ``version``."""
    if version not in PACKAGE_SIZES:
        raise ValueError(f"Unsupported protocol version: {version}")
    writer = BitWriter(PACKAGE_SIZES[version])
    phase = encode_unsigned(package.phase, 0, 7)
    if version == PROTOCOL_V2:
        writer.write(encode_unsigned(package.body_id, 0, 255), 8)
    else:
        writer.write(encode_unsigned(package.body_id, 0, 31), 5)
        writer.write(phase, 3)
    writer.write(encode_unsigned(package.azimuth, 0, 360), 9)
    writer.write(encode_signed(package.altitude, 8, -90, 90), 8)
    writer.write(encode_unsigned(package.rise_hour, 0, 31), 5)
    writer.write(encode_unsigned(package.rise_minute, 0, 63), 6)
    writer.write(encode_unsigned(package.set_hour, 0, 31), 5)
    writer.write(encode_unsigned(package.set_minute, 0, 63), 6)
    writer.write(encode_signed(package.luminance_x10, 9, -256, 255), 9)
    if version == PROTOCOL_V2:
        writer.write(phase, 3)
    return writer.getvalue()


def encode_body_package(
    ephemeris: Ephemeris,
    body_id: int,
    observer: Observer | None,
    when: datetime | None = None,
    version: int = PROTOCOL_V2,
) -> bytes:
    """Compute and pack the body package the watch asked for.

    Args:
        ephemeris: Astronomy engine.
        body_id: Index into BODY_NAMES.
        observer: Current location; required.
        when: Evaluation instant. Defaults to now.
        version: PROTOCOL_V2 (8 bytes) or legacy PROTOCOL_V1 (7 bytes).

    Returns:
        Packed bytes.

    Raises:
        UnknownBodyError: If ``body_id`` is not in BODY_NAMES.
        MissingObserverError: If ``observer`` is None.
    """
    package = compute_body_package(ephemeris, body_id, observer, when)
    return pack_body_package(package, version)


def decode_body_package(data: bytes) -> BodyPackage:
    """Watch-side inverse of ``pack_body_package``; the version is chosen by length."""
    if len(data) == PACKAGE_SIZES[PROTOCOL_V2]:
        version = PROTOCOL_V2
    elif len(data) == PACKAGE_SIZES[PROTOCOL_V1]:
        version = PROTOCOL_V1
    else:
        raise ValueError(f"Body package must be 7 or 8 bytes, got {len(data)}")
    reader = BitReader(bytes(data))
    phase = 0
    if version == PROTOCOL_V2:
        body_id = reader.read(8)
    else:
        body_id = reader.read(5)
        phase = reader.read(3)
    azimuth = reader.read(9)
    altitude = decode_signed(reader.read(8), 8)
    rise_hour = reader.read(5)
    rise_minute = reader.read(6)
    set_hour = reader.read(5)
    set_minute = reader.read(6)
    luminance = decode_signed(reader.read(9), 9)
    if version == PROTOCOL_V2:
        phase = reader.read(3)
    return BodyPackage(
        body_id=body_id,
        azimuth=azimuth,
        altitude=altitude,
        rise_hour=rise_hour,
        rise_minute=rise_minute,
        set_hour=set_hour,
        set_minute=set_minute,
        luminance_x10=luminance,
        phase=phase,
    )


# --- Requests -------------------------------------------------------------


def decode_request(payload: Mapping[str, Any] | None) -> int | None:
    """Body id from an inbound app message, or None if it carries no request."""
    if not payload or REQUEST_BODY_KEY not in payload:
        return None
    value = payload[REQUEST_BODY_KEY]
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        logger.warning("Ignoring non-integer %s: %r", REQUEST_BODY_KEY, value)
        return None
    return value


def encode_request(body_id: int) -> dict[str, int]:
    return {REQUEST_BODY_KEY: body_id}


def encode_response(package: bytes) -> dict[str, list[int]]:
    """App-message dictionary carrying a packed body package."""
    return {BODY_PACKAGE_KEY: list(package)}

