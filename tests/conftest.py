"""
Pytest configuration file.

Ensures the repo root is on sys.path so that 'import src...' works, and
provides the fake WebSocket plumbing the streaming tests share:

  - FakeSocket: send()/close() plus async iteration over preset frames,
    optionally staying open until closed.
  - connector: stand-in for websockets.connect that hands out queued sockets
    (or raises queued errors) and records every call.
  - fake_sleep: records backoff delays without waiting.
"""
import asyncio
import sys
from pathlib import Path

import pytest

# Add the repo root to sys.path
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))


class FakeSocket:
    """
    Scripted WebSocket.

    Args:
        frames: Frames yielded by async iteration, in order.
        hold_open: After the last frame, keep the iteration pending until
                   close() is called (a live session). Otherwise iteration
                   ends, which the manager sees as the server closing.
    """

    def __init__(self, frames=(), hold_open=False):
        self.frames = list(frames)
        self.hold_open = hold_open
        self.sent = []
        self.closed = False
        self._closed_event = None

    async def send(self, message):
        if self.closed:
            raise ConnectionError("socket is closed")
        self.sent.append(message)

    async def close(self):
        self.closed = True
        if self._closed_event is not None:
            self._closed_event.set()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame
        if self.hold_open and not self.closed:
            self._closed_event = asyncio.Event()
            await self._closed_event.wait()


class FakeConnector:
    """Replacement for websockets.connect. Unscripted calls are refused."""

    def __init__(self):
        self.calls = []
        self.outcomes = []

    def queue(self, *outcomes):
        self.outcomes.extend(outcomes)
        return self

    async def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if not self.outcomes:
            raise OSError("connection refused")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


async def settle(rounds=10):
    """Let background session tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def make_socket():
    return FakeSocket


@pytest.fixture
def settle_tasks():
    return settle
