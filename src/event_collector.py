"""
Video Analytics Event Collector
Observes playback objects and turns their lifecycle events into Event records.
"""

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional, Protocol

from batch_queue import BatchQueue
from identity import IdentityStore
from models import Event, PageContext, PageEnvironment, PlaybackState, TechnicalInfo
from utils import sdk_logger

TRACKED_EVENTS = (
    "play",
    "pause",
    "playing",
    "waiting",
    "seeking",
    "seeked",
    "ended",
    "loadstart",
    "loadedmetadata",
    "loadeddata",
    "canplay",
    "canplaythrough",
    "volumechange",
    "fullscreenchange",
    "error",
    "abort",
    "stalled",
    "suspend",
    "emptied",
    "ratechange",
    "durationchange",
    "progress",
)

TIMEUPDATE = "timeupdate"
PLAYER_INIT = "playerInit"
PAGE_UNLOAD = "pageUnload"


class PlaybackObject(Protocol):
    """
    What the collector needs from a video player.

    Players may also provide ``is_fullscreen() -> bool``. It is looked up
    per snapshot and fullscreen is reported as False when it is missing.
    """

    def on(self, event_name: str, handler: Callable[..., Any]) -> Any: ...
    def current_time(self) -> float: ...
    def duration(self) -> float: ...
    def paused(self) -> bool: ...
    def ended(self) -> bool: ...
    def playback_rate(self) -> float: ...
    def volume(self) -> float: ...
    def muted(self) -> bool: ...
    def network_state(self) -> int: ...
    def ready_state(self) -> int: ...
    def current_width(self) -> int: ...
    def current_height(self) -> int: ...


@dataclass
class TrackedPlayer:
    player: PlaybackObject
    video_id: str
    last_timeupdate_tracked: Optional[float] = None


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class EventCollector:
    """Registry of tracked players and the enrichment of their events."""

    def __init__(
        self,
        queue: BatchQueue,
        identity: IdentityStore,
        environment: Optional[Callable[[], PageEnvironment]] = None,
        timeupdate_sample_rate: float = 0.2,
        timeupdate_min_interval_ms: float = 500,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
        debug: bool = False
    ):
        self.queue = queue
        self.identity = identity
        self.environment = environment or PageEnvironment
        self.timeupdate_sample_rate = timeupdate_sample_rate
        self.timeupdate_min_interval_ms = timeupdate_min_interval_ms
        self.rng = rng or random.Random()
        self.clock = clock or _monotonic_ms
        self.logger = sdk_logger(debug, component="collector")
        self.players: Dict[Hashable, TrackedPlayer] = {}
        # id(player) -> registry key; players are held in self.players so ids stay unique
        self._keys_by_player: Dict[int, Hashable] = {}

    def is_tracked(self, player_key: Hashable) -> bool:
        return player_key in self.players

    def is_tracked_player(self, player: Any) -> bool:
        """True when this exact object is tracked, under any key."""
        return id(player) in self._keys_by_player

    def attach(self, player: PlaybackObject, video_id: str, player_key: Optional[Hashable] = None) -> bool:
        """
        Start tracking a player.

        Returns False when the player is invalid or already tracked.
        """
        if player is None or not callable(getattr(player, "on", None)):
            self.logger.error("invalid_player", video_id=video_id)
            return False

        key = player_key if player_key is not None else id(player)
        if key in self.players or self.is_tracked_player(player):
            self.logger.debug("player_already_tracked", video_id=video_id)
            return False

        self.logger.debug("tracking_player", video_id=video_id)
        self.players[key] = TrackedPlayer(player=player, video_id=video_id)
        self._keys_by_player[id(player)] = key

        for event_name in TRACKED_EVENTS:
            player.on(event_name, self._handler(key, event_name))
        player.on(TIMEUPDATE, self._timeupdate_handler(key))

        self.track_event(key, PLAYER_INIT)
        return True

    def _handler(self, key: Hashable, event_name: str):
        def handle(*_args, **_kwargs):
            self.track_event(key, event_name)
        return handle

    def _timeupdate_handler(self, key: Hashable):
        def handle(*_args, **_kwargs):
            if self.accept_timeupdate(key):
                self.track_event(key, TIMEUPDATE)
        return handle

    def accept_timeupdate(self, key: Hashable) -> bool:
        """Sample a timeupdate: random draw and per-player minimum spacing must both pass."""
        tracked = self.players.get(key)
        if tracked is None:
            return False

        now = self.clock()
        sampled = self.rng.random() < self.timeupdate_sample_rate
        spaced = (
            tracked.last_timeupdate_tracked is None
            or now - tracked.last_timeupdate_tracked >= self.timeupdate_min_interval_ms
        )
        if sampled and spaced:
            tracked.last_timeupdate_tracked = now
            return True
        return False

    def track_event(self, key: Hashable, event_name: str) -> Optional[Event]:
        """Snapshot the player and enqueue the event. Never raises."""
        tracked = self.players.get(key)
        if tracked is None:
            return None

        try:
            event = self.build_event(tracked, event_name)
        except Exception as e:
            self.logger.error("event_snapshot_failed", event_name=event_name, video_id=tracked.video_id, error=str(e))
            return None

        self.logger.debug("event_tracked", event_name=event_name, video_id=tracked.video_id)
        self.queue.enqueue(event)
        return event

    def build_event(self, tracked: TrackedPlayer, event_name: str) -> Event:
        player = tracked.player
        env = self.environment()

        fullscreen = player.is_fullscreen() if hasattr(player, "is_fullscreen") else False

        return Event(
            event_name=event_name,
            video_id=tracked.video_id,
            session_id=self.identity.session_id,
            user_id=self.identity.user_id,
            anonymous_id=self.identity.anonymous_id,
            playback_state=PlaybackState(
                current_time=player.current_time(),
                duration=player.duration(),
                paused=player.paused(),
                ended=player.ended(),
                playback_rate=player.playback_rate(),
                volume=player.volume(),
                muted=player.muted(),
                fullscreen=bool(fullscreen),
                network_state=player.network_state(),
                ready_state=player.ready_state(),
            ),
            technical=TechnicalInfo(
                user_agent=env.user_agent,
                screen_resolution=env.screen_resolution,
                viewport_size=env.viewport_size,
                player_size=f"{player.current_width()}x{player.current_height()}",
                connection_type=env.connection_type,
            ),
            context=PageContext(
                page_url=env.page_url,
                referrer=env.referrer,
                page_title=env.page_title,
            ),
        )

    def page_unload_event(self) -> Event:
        """Synthetic event appended to the teardown batch."""
        env = self.environment()
        return Event(
            event_name=PAGE_UNLOAD,
            session_id=self.identity.session_id,
            user_id=self.identity.user_id,
            anonymous_id=self.identity.anonymous_id,
            context=PageContext(page_url=env.page_url, referrer=env.referrer),
        )
