"""Service facade: wires config, ephemeris, caches, sync and transport together."""

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from hubble.cache import JsonFileStore, MemoryStore, PushCache
from hubble.config import Config
from hubble.ephemeris import Ephemeris, SkyfieldEphemeris
from hubble.events import EventAggregator, EventCache
from hubble.models import Observer
from hubble.protocol import PROTOCOL_V2, decode_request, encode_body_package
from hubble.settings import Settings
from hubble.sync import CommandSink, PinSynchronizer
from hubble.timeline import CommandQueue, TimelineClient, TimelineDispatcher
from hubble.timeutil import Clock, utc_now

logger = logging.getLogger(__name__)


class HubbleService:
    """Entry points the companion runtime calls: refresh and per-body requests."""

    def __init__(
        self,
        ephemeris: Ephemeris,
        sink: CommandSink,
        push_cache: PushCache | None = None,
        clock: Clock = utc_now,
        protocol_version: int = PROTOCOL_V2,
        cache_duration: timedelta = timedelta(minutes=30),
    ) -> None:
        self.ephemeris = ephemeris
        self.sink = sink
        self.clock = clock
        self.protocol_version = protocol_version
        self.aggregator = EventAggregator(
            ephemeris, EventCache(clock=clock, duration=cache_duration), clock=clock
        )
        self.push_cache = push_cache if push_cache is not None else PushCache(clock=clock)
        self.synchronizer = PinSynchronizer(self.aggregator, sink, self.push_cache, clock=clock)
        self.dispatcher: TimelineDispatcher | None = None

    @classmethod
    def from_config(
        cls, config: Config, clock: Clock = utc_now, sink: CommandSink | None = None
    ) -> "HubbleService":
        """Build the production graph: skyfield ephemeris, httpx dispatcher, configured cache.

        Passing ``sink`` replaces the timeline transport (no dispatcher is built).
        """
        ephemeris = SkyfieldEphemeris(config.data_dir, config.ephemeris_file)
        store = JsonFileStore(config.push_cache_file) if config.push_cache_file else MemoryStore()
        duration = timedelta(minutes=config.cache_minutes)
        push_cache = PushCache(clock=clock, store=store, duration=duration)
        if sink is not None:
            return cls(
                ephemeris, sink, push_cache=push_cache, clock=clock, cache_duration=duration
            )
        commands = CommandQueue()
        service = cls(
            ephemeris, commands, push_cache=push_cache, clock=clock, cache_duration=duration
        )
        if config.timeline_token:
            client = TimelineClient(
                config.timeline_url, config.timeline_token, timeout=config.http_timeout
            )
            service.dispatcher = TimelineDispatcher(commands, client)
        else:
            logger.warning("HUBBLE_TIMELINE_TOKEN not set; pin commands will not be sent")
        return service

    def refresh(
        self,
        observer: Observer | None,
        when: datetime | None = None,
        settings: Settings | None = None,
    ) -> int:
        """Run a push cycle. Returns the upsert count, or -1 without an observer."""
        if observer is None:
            logger.warning("Cannot refresh events: missing observer")
            return -1
        return self.synchronizer.push_events(observer, when, settings)

    def handle_body_request(
        self,
        payload: Mapping[str, Any] | None,
        observer: Observer | None,
        when: datetime | None = None,
    ) -> bytes | None:
        """Answer an inbound body request with a packed body package.

        Returns None when the payload carries no request or no observer is
        known. Unknown body ids raise UnknownBodyError.
        """
        body_id = decode_request(payload)
        if body_id is None:
            return None
        if observer is None:
            logger.warning("Cannot process body request for %d: missing observer", body_id)
            return None
        logger.debug("Received body request for body %d", body_id)
        return encode_body_package(
            self.ephemeris, body_id, observer, when or self.clock(), self.protocol_version
        )
