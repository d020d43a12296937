"""
Video Analytics SDK
Session object wiring collector, batch queue, retry coordinator and transport together.
"""

import asyncio
import random
import string
from typing import Any, Awaitable, Callable, Hashable, Iterable, List, Optional, Protocol, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from batch_queue import BatchQueue
from errors import ConfigError
from event_collector import EventCollector
from identity import IdentityStore, JsonFileStorage, MemoryStorage
from models import Event, EventBatch, PageEnvironment
from retry_coordinator import RetryCoordinator
from transport import Transport
from utils import sdk_logger

DEFAULT_ENDPOINT = "http://localhost:8080/api/v1/events"


class SampleRate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    timeupdate: float = Field(default=0.2, ge=0.0, le=1.0)


class SDKConfig(BaseModel):
    """SDK configuration. Accepts both snake_case and camelCase keys; intervals are in ms."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    api_endpoint: str = DEFAULT_ENDPOINT
    batch_size: int = Field(default=15, ge=1)
    batch_interval: int = Field(default=5000, gt=0)
    debug: bool = False
    client_id: Optional[str] = None
    api_key: Optional[str] = None
    auto_detect: bool = True
    sample_rate: SampleRate = Field(default_factory=SampleRate)

    max_retry_attempts: int = Field(default=5, ge=1)
    retry_base_delay: int = Field(default=1000, gt=0)
    retry_max_delay: int = Field(default=30000, gt=0)
    timeupdate_min_interval: int = Field(default=500, ge=0)
    request_timeout: float = Field(default=10.0, gt=0)
    identity_path: Optional[str] = None


def load_config(client_id: Optional[str] = None, **options) -> SDKConfig:
    """
    Merge options over the defaults and validate.

    Raises:
        ConfigError: clientId is missing or an option is invalid.
    """
    try:
        data = dict(options)
        if client_id is not None:
            data.pop("clientId", None)
            data["client_id"] = client_id
        config = SDKConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    if not config.client_id:
        raise ConfigError("clientId is required")
    return config


class PlayerDiscovery(Protocol):
    """Host capability listing the players currently present."""

    def discover(self) -> Iterable[Tuple[Any, Optional[str]]]: ...


def _random_video_id(rng: random.Random) -> str:
    alphabet = string.digits + string.ascii_lowercase
    return "video-" + "".join(rng.choice(alphabet) for _ in range(7))


class VideoAnalytics:
    """One SDK session: queues, timers and tracked players for a single page/app."""

    def __init__(
        self,
        config: SDKConfig,
        transport: Optional[Transport] = None,
        identity: Optional[IdentityStore] = None,
        environment: Optional[Callable[[], PageEnvironment]] = None,
        discovery: Optional[PlayerDiscovery] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep
    ):
        self.config = config
        self.logger = sdk_logger(config.debug, component="session", client_id=config.client_id)
        self.rng = rng or random.Random()
        self.discovery = discovery
        self.closed = False

        self.transport = transport or Transport(
            config.api_endpoint,
            timeout=config.request_timeout,
            debug=config.debug
        )
        self.identity = identity or IdentityStore(
            session_storage=MemoryStorage(),
            durable_storage=JsonFileStorage(config.identity_path, debug=config.debug) if config.identity_path else MemoryStorage()
        )
        self.retry = RetryCoordinator(
            self.transport.send,
            self.build_batch,
            max_attempts=config.max_retry_attempts,
            base_delay_ms=config.retry_base_delay,
            max_delay_ms=config.retry_max_delay,
            sleep=sleep,
            debug=config.debug
        )
        self.queue = BatchQueue(
            self.transport,
            self.retry,
            self.build_batch,
            batch_size=config.batch_size,
            interval_ms=config.batch_interval,
            sleep=sleep,
            debug=config.debug
        )
        self.collector = EventCollector(
            self.queue,
            self.identity,
            environment=environment,
            timeupdate_sample_rate=config.sample_rate.timeupdate,
            timeupdate_min_interval_ms=config.timeupdate_min_interval,
            rng=self.rng,
            clock=clock,
            debug=config.debug
        )

    def build_batch(self, events: List[Event], is_retry: bool = False, retry_attempt: Optional[int] = None) -> EventBatch:
        return EventBatch.assemble(
            client_id=self.config.client_id,
            api_key=self.config.api_key,
            session_id=self.identity.session_id,
            events=events,
            is_retry=is_retry,
            retry_attempt=retry_attempt,
        )

    def start(self):
        """Start the flush timer and, when enabled, pick up players already present."""
        self.queue.start()
        if self.config.auto_detect:
            self.detect_players()
        self.logger.debug("sdk_initialized", endpoint=self.config.api_endpoint)

    def track_player(self, player, video_id: str, player_key: Optional[Hashable] = None) -> bool:
        if self.closed:
            self.logger.debug("track_after_close", video_id=video_id)
            return False
        return self.collector.attach(player, video_id, player_key)

    def detect_players(self) -> int:
        """Track every newly discovered player. Returns how many were added."""
        if self.discovery is None or self.closed:
            return 0

        added = 0
        for player, video_id in self.discovery.discover():
            if self.collector.is_tracked_player(player):
                continue
            if self.track_player(player, video_id or _random_video_id(self.rng)):
                added += 1
        return added

    def flush(self):
        return self.queue.flush()

    def teardown(self):
        """
        Page-teardown path.

        Stops timers, then sends everything still queued (pending and retry)
        plus a pageUnload event through the beacon transport without waiting.
        """
        if self.closed:
            return
        self.closed = True

        self.queue.close()
        events = self.queue.drain() + self.retry.drain()
        if not events:
            return

        events.append(self.collector.page_unload_event())
        self.transport.send_final(self.build_batch(events))
        self.logger.debug("teardown_beacon_sent", event_count=len(events))

    async def aclose(self):
        """Teardown, then release network resources."""
        self.teardown()
        await self.queue.join()
        await self.retry.join()
        await self.transport.aclose()


def init_sdk(client_id: Optional[str] = None, **options) -> Optional[VideoAnalytics]:
    """
    Create and start a session. Must be called with a running event loop.

    Configuration errors are logged and None is returned; nothing is raised
    to the host application.
    """
    components = {
        name: options.pop(name)
        for name in ("transport", "identity", "environment", "discovery", "rng", "clock", "sleep")
        if name in options
    }

    try:
        config = load_config(client_id, **options)
    except ConfigError as e:
        sdk_logger(False, component="session").error("sdk_init_failed", error=str(e))
        return None

    session = VideoAnalytics(config, **components)
    session.start()
    return session
