import asyncio

import pytest

from errors import TransportFailure
from models import Event, EventBatch


class FakePlayer:
    def __init__(self, **state):
        self.handlers = {}
        self.state = {
            "current_time": 0.0,
            "duration": 120.0,
            "paused": True,
            "ended": False,
            "playback_rate": 1.0,
            "volume": 1.0,
            "muted": False,
            "network_state": 1,
            "ready_state": 4,
            "width": 640,
            "height": 360,
        }
        self.state.update(state)

    def on(self, event_name, handler):
        self.handlers.setdefault(event_name, []).append(handler)

    def emit(self, event_name):
        for handler in self.handlers.get(event_name, []):
            handler({"type": event_name})

    def current_time(self):
        return self.state["current_time"]

    def duration(self):
        return self.state["duration"]

    def paused(self):
        return self.state["paused"]

    def ended(self):
        return self.state["ended"]

    def playback_rate(self):
        return self.state["playback_rate"]

    def volume(self):
        return self.state["volume"]

    def muted(self):
        return self.state["muted"]

    def network_state(self):
        return self.state["network_state"]

    def ready_state(self):
        return self.state["ready_state"]

    def current_width(self):
        return self.state["width"]

    def current_height(self):
        return self.state["height"]


class FakeTransport:
    """Records batches; outcomes is a list of booleans consumed per send (default success)."""

    def __init__(self, outcomes=None, gate=None):
        self.outcomes = list(outcomes or [])
        self.gate = gate
        self.sent = []
        self.finals = []
        self.closed = False

    async def send(self, batch):
        self.sent.append(batch)
        if self.gate is not None:
            await self.gate.wait()
        if self.outcomes and self.outcomes.pop(0) is False:
            raise TransportFailure("Server responded with 503", reason="http_error_503", status_code=503)
        return {"status": "success", "message": f"Processed {len(batch.events)} events"}

    def send_final(self, batch):
        self.finals.append(batch)

    async def aclose(self):
        self.closed = True


class ManualSleep:
    """Sleep replacement that only wakes up when the test calls release()."""

    def __init__(self):
        self.delays = []
        self._waiters = []

    async def __call__(self, delay):
        waiter = asyncio.get_running_loop().create_future()
        self.delays.append(delay)
        self._waiters.append(waiter)
        await waiter

    @property
    def pending(self):
        return sum(1 for waiter in self._waiters if not waiter.done())

    def release(self):
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)


class RecordingSleep:
    """Sleep replacement that records the delay and returns straight away."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


async def settle(rounds=10):
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_event(event_name="progress", video_id="v1"):
    return Event(
        event_name=event_name,
        video_id=video_id,
        session_id="s1",
        anonymous_id="a1",
    )


def build_batch(events, is_retry=False, retry_attempt=None):
    return EventBatch.assemble("c1", "key-1", "s1", events, is_retry=is_retry, retry_attempt=retry_attempt)


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def manual_sleep():
    return ManualSleep()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
