"""
Video Analytics Batch Queue
In-memory event queue flushed on size, interval or priority events.
"""

import asyncio
from typing import Awaitable, Callable, FrozenSet, List, Optional, Set

from errors import TransportFailure
from models import Event, EventBatch
from retry_coordinator import RetryCoordinator
from utils import sdk_logger

PRIORITY_EVENTS: FrozenSet[str] = frozenset({"play", "pause", "ended", "error"})


class BatchQueue:
    """
    Pending events waiting for their first send.

    All mutation happens on the event loop thread, so replacing the list in a
    single assignment is enough to keep enqueue and flush from losing or
    duplicating events.
    """

    def __init__(
        self,
        transport,
        retry: RetryCoordinator,
        build_batch: Callable[..., EventBatch],
        batch_size: int = 15,
        interval_ms: int = 5000,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
        debug: bool = False
    ):
        self.transport = transport
        self.retry = retry
        self.build_batch = build_batch
        self.batch_size = batch_size
        self.interval_ms = interval_ms
        self.sleep = sleep
        self.logger = sdk_logger(debug, component="batch_queue")

        self.pending: List[Event] = []
        self._ticker: Optional[asyncio.Task] = None
        self._deliveries: Set[asyncio.Task] = set()
        self._closed = False

    def __len__(self) -> int:
        return len(self.pending)

    def start(self):
        """Start the periodic flush timer on the running loop."""
        if self._ticker is None:
            self._ticker = asyncio.get_running_loop().create_task(self._tick())

    def stop(self):
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    async def _tick(self):
        while True:
            await self.sleep(self.interval_ms / 1000)
            self.flush()

    def enqueue(self, event: Event):
        """Append an event; flush when the batch is full or the event is urgent."""
        if self._closed:
            self.logger.debug("enqueue_after_close", event_name=event.event_name)
            return

        self.pending.append(event)

        if event.event_name in PRIORITY_EVENTS or len(self.pending) >= self.batch_size:
            self.flush()

    def flush(self) -> Optional[asyncio.Task]:
        """Hand every pending event to the transport. No-op when empty."""
        if not self.pending:
            return None

        events, self.pending = self.pending, []
        self.logger.debug("batch_flushing", event_count=len(events))

        task = asyncio.get_running_loop().create_task(self._deliver(events))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)
        return task

    async def _deliver(self, events: List[Event]):
        batch = self.build_batch(events)
        try:
            await self.transport.send(batch)
        except TransportFailure as e:
            self.logger.warning(
                "batch_send_failed",
                batch_id=batch.batch_id,
                event_count=len(events),
                reason=e.reason,
                error=str(e)
            )
            self.retry.schedule(events)
        else:
            self.retry.record_success()

    def drain(self) -> List[Event]:
        """Take every pending event for the teardown path."""
        events, self.pending = self.pending, []
        return events

    def close(self):
        """Stop the timer and ignore further enqueues."""
        self.stop()
        self._closed = True

    async def join(self):
        """Wait for outstanding deliveries."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)
