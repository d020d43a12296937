"""
Video Analytics Retry
Exponential-backoff resend of failed events with a bounded attempt count.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Set

from errors import RetryExhausted, TransportFailure
from models import Event, EventBatch
from utils import sdk_logger


class RetryState(Enum):
    """Retry cycle states."""
    IDLE = "idle"            # Nothing pending
    SCHEDULED = "scheduled"  # Backoff timer armed
    IN_FLIGHT = "in_flight"  # Retry send outstanding


class RetryCoordinator:
    """
    Holds the retry queue and drives resend cycles.

    The attempt counter is shared by every batch that fails, so unrelated
    failures in quick succession back off together.
    """

    def __init__(
        self,
        send: Callable[[EventBatch], Awaitable],
        build_batch: Callable[..., EventBatch],
        max_attempts: int = 5,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 30000,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
        debug: bool = False
    ):
        self.send = send
        self.build_batch = build_batch
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.sleep = sleep
        self.logger = sdk_logger(debug, component="retry")

        self.attempt = 0
        self.queue: List[Event] = []
        self.last_exhausted: Optional[RetryExhausted] = None
        self._timer: Optional[asyncio.Task] = None
        self._in_flight = 0
        self._closed = False
        self._tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> RetryState:
        if self._timer is not None:
            return RetryState.SCHEDULED
        if self._in_flight:
            return RetryState.IN_FLIGHT
        return RetryState.IDLE

    def backoff_delay_ms(self, attempt: int) -> int:
        return min(self.base_delay_ms * 2 ** attempt, self.max_delay_ms)

    def record_success(self):
        """A normal send went through; clear accumulated backpressure."""
        self.attempt = 0

    def schedule(self, events: List[Event]):
        """Queue failed events for resend and arm the backoff timer if idle."""
        if self._closed:
            self.logger.debug("retry_refused_after_close", event_count=len(events))
            return

        self.queue.extend(events)
        self._arm()

    def _arm(self):
        if self._timer is not None:
            return

        self.attempt += 1
        delay_ms = self.backoff_delay_ms(self.attempt)
        self.logger.debug("retry_scheduled", attempt=self.attempt, delay_ms=delay_ms, queued=len(self.queue))

        self._timer = asyncio.get_running_loop().create_task(self._wait_and_retry(delay_ms))
        self._tasks.add(self._timer)
        self._timer.add_done_callback(self._tasks.discard)

    async def _wait_and_retry(self, delay_ms: int):
        await self.sleep(delay_ms / 1000)
        self._timer = None
        await self.attempt_retry()

    async def attempt_retry(self):
        """Resend everything in the retry queue as one new batch."""
        if not self.queue:
            return

        events, self.queue = self.queue, []
        batch = self.build_batch(events, is_retry=True, retry_attempt=self.attempt)
        self.logger.debug("retry_sending", attempt=self.attempt, event_count=len(events), batch_id=batch.batch_id)

        self._in_flight += 1
        try:
            await self.send(batch)
        except TransportFailure as e:
            self.logger.warning("retry_failed", attempt=self.attempt, reason=e.reason, error=str(e))

            if self.attempt >= self.max_attempts:
                self.last_exhausted = RetryExhausted(self.attempt, len(events))
                self.logger.warning("retry_exhausted", attempts=self.attempt, dropped=len(events))
                self.attempt = 0
                return

            if self._closed:
                self.logger.debug("retry_dropped_after_close", event_count=len(events))
                return

            self.queue.extend(events)
            self._arm()
        else:
            self.logger.debug("retry_succeeded", event_count=len(events))
            self.attempt = 0
        finally:
            self._in_flight -= 1

    def drain(self) -> List[Event]:
        """Stop retrying and hand back whatever is still queued."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        events, self.queue = self.queue, []
        return events

    async def join(self):
        """Wait until no timer or retry send is outstanding."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
