"""User settings: keys, defaults, structural comparison, and the enabled→disabled diff."""

import copy
from collections.abc import Mapping
from typing import Any

Settings = Mapping[str, Any]

CFG_SUN_RISE_SET = "CFG_SUN_RISE_SET"
CFG_SUN_CIVIL_DAWN_DUSK = "CFG_SUN_CIVIL_DAWN_DUSK"
CFG_SUN_NAUTICAL_DAWN_DUSK = "CFG_SUN_NAUTICAL_DAWN_DUSK"
CFG_SUN_ASTRONOMICAL_DAWN_DUSK = "CFG_SUN_ASTRONOMICAL_DAWN_DUSK"
CFG_SUN_SOLAR_NOON_MIDNIGHT = "CFG_SUN_SOLAR_NOON_MIDNIGHT"
CFG_SUN_SOLSTICES = "CFG_SUN_SOLSTICES"
CFG_SUN_EQUINOXES = "CFG_SUN_EQUINOXES"
CFG_SUN_ECLIPSES = "CFG_SUN_ECLIPSES"
CFG_SUN_SOLAR_TRANSITS = "CFG_SUN_SOLAR_TRANSITS"
CFG_MOON_RISE_SET = "CFG_MOON_RISE_SET"
CFG_MOON_APOGEE_PERIGEE = "CFG_MOON_APOGEE_PERIGEE"
CFG_PLANET_EVENTS = "CFG_PLANET_EVENTS"

# Order of the CFG_PLANET_EVENTS array
PLANETS: tuple[str, ...] = (
    "Mercury",
    "Venus",
    "Mars",
    "Jupiter",
    "Saturn",
    "Uranus",
    "Neptune",
    "Pluto",
)

TWILIGHT_KEYS: dict[str, str] = {
    "civil": CFG_SUN_CIVIL_DAWN_DUSK,
    "nautical": CFG_SUN_NAUTICAL_DAWN_DUSK,
    "astronomical": CFG_SUN_ASTRONOMICAL_DAWN_DUSK,
}

# Setting key -> pin id prefixes it controls
_CATEGORY_PIN_BASES: dict[str, tuple[str, ...]] = {
    CFG_SUN_RISE_SET: ("sun-rise", "sun-set"),
    CFG_SUN_CIVIL_DAWN_DUSK: ("civil-dawn", "civil-dusk"),
    CFG_SUN_NAUTICAL_DAWN_DUSK: ("nautical-dawn", "nautical-dusk"),
    CFG_SUN_ASTRONOMICAL_DAWN_DUSK: ("astronomical-dawn", "astronomical-dusk"),
    CFG_SUN_SOLAR_NOON_MIDNIGHT: ("solar-noon", "solar-midnight"),
    CFG_SUN_SOLSTICES: ("solstice",),
    CFG_SUN_EQUINOXES: ("equinox",),
    CFG_SUN_ECLIPSES: ("eclipse",),
    CFG_SUN_SOLAR_TRANSITS: ("planetary-transit",),
    CFG_MOON_RISE_SET: ("moon-rise", "moon-set"),
    CFG_MOON_APOGEE_PERIGEE: ("moon-apsis",),
}


def is_enabled(settings: Settings | None, key: str) -> bool:
    """Boolean toggles default to enabled; only an explicit False disables."""
    if not settings:
        return True
    return settings.get(key) is not False


def planet_flags(settings: Settings | None) -> tuple[bool, ...]:
    """Per-planet rise/set toggles. Missing or malformed arrays mean all disabled."""
    raw = settings.get(CFG_PLANET_EVENTS) if settings else None
    if not isinstance(raw, (list, tuple)):
        return (False,) * len(PLANETS)
    flags = [v is True for v in raw[: len(PLANETS)]]
    flags += [False] * (len(PLANETS) - len(flags))
    return tuple(flags)


def settings_equal(a: Settings | None, b: Settings | None) -> bool:
    """Structural equality: same keys, equal scalars, element-wise equal arrays."""
    if a is None and b is None:
        return True
    if a is None or b is None:
        return False
    if sorted(a) != sorted(b):
        return False
    for key in a:
        va, vb = a[key], b[key]
        if isinstance(va, (list, tuple)) and isinstance(vb, (list, tuple)):
            if len(va) != len(vb) or any(x != y for x, y in zip(va, vb)):
                return False
        elif va != vb:
            return False
    return True


def settings_fingerprint(settings: Settings | None) -> str:
    """Deterministic cache key fragment: sorted keys, arrays comma-joined, entries pipe-joined."""
    if not settings:
        return ""
    parts = []
    for key in sorted(settings):
        value = settings[key]
        if isinstance(value, (list, tuple)):
            parts.append(",".join(_js_str(v) for v in value))
        else:
            parts.append(_js_str(value))
    return "|".join(parts)


def _js_str(value: Any) -> str:
    if value is True:
        return "true"
    if value is False:
        return "false"
    return str(value)


def snapshot(settings: Settings | None) -> dict[str, Any] | None:
    """Deep copy so later caller mutations do not leak into caches."""
    return copy.deepcopy(dict(settings)) if settings is not None else None


def disabled_pin_bases(old: Settings | None, new: Settings | None) -> list[str]:
    """Pin id prefixes for every category that went from enabled to disabled.

    A boolean key counts as disabled only when the old value is exactly True
    and the new value is exactly False; a missing key is treated as True.
    Planets compare element-wise over the 8-element array.
    """

    def was_disabled(key: str) -> bool:
        old_value = old.get(key, True) if old else True
        new_value = new.get(key, True) if new else True
        return old_value is True and new_value is False

    bases: list[str] = []
    for key, prefixes in _CATEGORY_PIN_BASES.items():
        if was_disabled(key):
            bases.extend(prefixes)

    old_planets = planet_flags(old)
    new_planets = planet_flags(new)
    for name, was_on, is_on in zip(PLANETS, old_planets, new_planets):
        if was_on and not is_on:
            lower = name.lower()
            bases.extend((f"{lower}-rise", f"{lower}-set"))
    return bases
