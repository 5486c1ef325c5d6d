"""Push cache: when the last timeline push happened and with which settings."""

import json
import logging
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Protocol

from hubble.settings import Settings, settings_equal, snapshot
from hubble.timeutil import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)


class PushStore(Protocol):
    """Persistence for the single push-cache slot."""

    def load(self) -> dict[str, Any] | None: ...

    def save(self, state: dict[str, Any]) -> None: ...

    def clear(self) -> None: ...


class MemoryStore:
    def __init__(self) -> None:
        self._state: dict[str, Any] | None = None

    def load(self) -> dict[str, Any] | None:
        return self._state

    def save(self, state: dict[str, Any]) -> None:
        self._state = state

    def clear(self) -> None:
        self._state = None


class JsonFileStore:
    """Keeps ``{"last_push": iso, "settings": {...}}`` in a JSON file.

    A missing file is an empty cache. An unreadable or malformed file is
    logged and also treated as empty; the next save overwrites it.
    """

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, Any] | None:
        try:
            with self.path.open(encoding="utf-8") as f:
                state = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable push cache %s: %s", self.path, e)
            return None
        if not isinstance(state, dict):
            logger.warning("Ignoring malformed push cache %s", self.path)
            return None
        return state

    def save(self, state: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(state, f, indent=2, sort_keys=True)
        tmp.replace(self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class PushCache:
    """Decides whether a push cycle can be skipped.

    A cycle is skippable only when the settings are structurally equal to the
    last pushed snapshot and that push is younger than ``duration``.
    """

    def __init__(
        self,
        clock: Clock = utc_now,
        store: PushStore | None = None,
        duration: timedelta = timedelta(minutes=30),
    ) -> None:
        self._clock = clock
        self._store = store if store is not None else MemoryStore()
        self._duration = duration
        self._last_push_at: datetime | None = None
        self._last_settings: dict[str, Any] | None = None
        self._load()

    def _load(self) -> None:
        state = self._store.load()
        if not state:
            return
        try:
            last_push = datetime.fromisoformat(state["last_push"])
            settings = state.get("settings")
            if settings is not None and not isinstance(settings, dict):
                raise TypeError(f"settings is {type(settings).__name__}")
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding corrupt push cache state: %s", e)
            return
        self._last_push_at = ensure_utc(last_push)
        self._last_settings = settings

    @property
    def last_push_at(self) -> datetime | None:
        return self._last_push_at

    @property
    def last_settings(self) -> dict[str, Any] | None:
        return self._last_settings

    def should_skip(self, settings: Settings | None) -> bool:
        if self._last_push_at is None:
            logger.debug("Push cache empty; proceeding")
            return False
        unchanged = settings_equal(self._last_settings, settings)
        age = self._clock() - self._last_push_at
        logger.debug("Push cache check: settings unchanged=%s, age=%s", unchanged, age)
        if unchanged and age < self._duration:
            logger.info("Skipping pin push; cache still valid")
            return True
        return False

    def update(self, settings: Settings | None) -> None:
        self._last_push_at = self._clock()
        self._last_settings = snapshot(settings)
        try:
            self._store.save(
                {"last_push": self._last_push_at.isoformat(), "settings": self._last_settings}
            )
        except OSError as e:
            logger.warning("Could not persist push cache: %s", e)
            return
        logger.debug("Updated push cache at %s", self._last_push_at.isoformat())

    def reset(self) -> None:
        self._last_push_at = None
        self._last_settings = None
        self._store.clear()
        logger.info("Push cache reset")
