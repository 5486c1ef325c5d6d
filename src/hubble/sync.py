"""Push cycle: retract disabled categories, then upsert the visible event pins."""

import logging
from datetime import datetime, tzinfo
from typing import Protocol

from hubble.cache import PushCache
from hubble.events import EventAggregator
from hubble.models import Category, Event, Observer, PinCommand, PinOp
from hubble.pins import all_possible_pin_ids, build_pin
from hubble.settings import Settings, disabled_pin_bases
from hubble.timeutil import (
    Clock,
    ensure_utc,
    in_timeline_range,
    is_visible,
    observer_zone,
    sequence_index,
    utc_now,
)

logger = logging.getLogger(__name__)


class CommandSink(Protocol):
    def submit(self, command: PinCommand) -> None: ...


def expand_pin_bases(bases: list[str]) -> list[str]:
    """Every known pin id starting with one of ``bases``, first-seen order, no repeats."""
    universe = all_possible_pin_ids()
    matched: dict[str, None] = {}
    for base in bases:
        for pin_id in universe:
            if pin_id.startswith(base):
                matched.setdefault(pin_id, None)
    return list(matched)


class PinSynchronizer:
    """Runs one push cycle per ``push_events`` call.

    Transport is fire-and-forget: commands go to ``sink`` and the outcome of
    each request is never observed here.
    """

    def __init__(
        self,
        aggregator: EventAggregator,
        sink: CommandSink,
        push_cache: PushCache,
        clock: Clock = utc_now,
    ) -> None:
        self._aggregator = aggregator
        self._sink = sink
        self._push_cache = push_cache
        self._clock = clock

    def push_events(
        self,
        observer: Observer,
        when: datetime | None = None,
        settings: Settings | None = None,
    ) -> int:
        """Push every visible event as a timeline pin.

        Args:
            observer: Location the events are computed for.
            when: Reference instant. Defaults to the clock.
            settings: User settings; None means all defaults.

        Returns:
            Number of upsert commands submitted (0 when the cycle was skipped).
        """
        if self._push_cache.should_skip(settings):
            return 0

        # A prior push with default settings is stored as None
        if self._push_cache.last_push_at is not None:
            self.retract_disabled(self._push_cache.last_settings, settings)

        now = ensure_utc(when) if when is not None else self._clock()
        events = self._aggregator.get_all_events(observer, now, settings)
        zone = observer_zone(observer)

        count = 0
        for category, group in events.groups():
            seen: set[str] = set()
            for event in group:
                in_window, index = self._placement(category, event, now, zone)
                if not in_window:
                    continue
                try:
                    pin = build_pin(event, index, now=self._clock())
                except Exception as e:
                    logger.warning("Skipping %s pin: %s", category.value, e)
                    continue
                if pin.id in seen:
                    continue
                seen.add(pin.id)
                self._sink.submit(PinCommand(PinOp.UPSERT, pin.id, pin))
                count += 1

        self._push_cache.update(settings)
        logger.info("Total pins pushed: %d", count)
        return count

    @staticmethod
    def _placement(
        category: Category, event: Event, now: datetime, zone: tzinfo
    ) -> tuple[bool, int | None]:
        """(in window, sequence index). One-time events never carry an index."""
        if category.recurring:
            if not is_visible(event.when, now, zone):
                return False, None
            return True, sequence_index(event.when, now, zone)
        return in_timeline_range(event.when, now), None

    def retract_disabled(self, old: Settings | None, new: Settings | None) -> list[str]:
        """Delete every pin of a category that went from enabled to disabled."""
        bases = disabled_pin_bases(old, new)
        if not bases:
            return []
        logger.info("Disabled pin patterns: %s", bases)
        pin_ids = expand_pin_bases(bases)
        for pin_id in pin_ids:
            self._sink.submit(PinCommand(PinOp.DELETE, pin_id))
        logger.info("Initiated deletion of %d pins for disabled features", len(pin_ids))
        return pin_ids
