"""
Pytest Configuration for Proctoring Console Tests
"""
import os
import sys
import asyncio
from datetime import datetime, timedelta
import httpx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.gateway import BackendGateway


class FakeStream:
    """In-memory capture stream"""

    def __init__(self, never_plays: bool = False, play_error: Exception = None):
        self.never_plays = never_plays
        self.play_error = play_error
        self.stopped = False
        self.unplugged = False
        self.stop_calls = 0

    @property
    def active(self):
        return not (self.stopped or self.unplugged)

    def unplug(self):
        self.unplugged = True

    def stop(self):
        self.stop_calls += 1
        self.stopped = True

    async def wait_until_playing(self):
        if self.play_error is not None:
            raise self.play_error
        if self.never_plays:
            await asyncio.Event().wait()


class FakeMediaDevices:
    """Hands out FakeStreams; `failures` queues one outcome per open() call

    `play_errors` queues, per opened stream, an error raised once the stream
    is bound and asked to play.
    """

    def __init__(self, failures=None, never_plays: bool = False, play_errors=None):
        self.failures = list(failures or [])
        self.play_errors = list(play_errors or [])
        self.never_plays = never_plays
        self.requests = []
        self.opened = []
        self.live_at_open = []

    async def open(self, constraints):
        self.requests.append(constraints)
        self.live_at_open.append(len(self.live_streams))
        if self.failures:
            failure = self.failures.pop(0)
            if failure is not None:
                raise failure
        play_error = self.play_errors.pop(0) if self.play_errors else None
        stream = FakeStream(never_plays=self.never_plays, play_error=play_error)
        self.opened.append(stream)
        return stream

    @property
    def live_streams(self):
        return [stream for stream in self.opened if not stream.stopped]


class FakeClock:
    """Controllable replacement for datetime.now"""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 10, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("Connection refused", request=request)


@pytest.fixture
def devices():
    return FakeMediaDevices()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def offline_gateway():
    """Gateway whose session store is never reachable"""
    return BackendGateway("http://store.invalid/api/proctoring", transport=httpx.MockTransport(_unreachable))
