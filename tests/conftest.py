"""Pytest configuration to make the project root importable as a package.

This ensures that ``import pollex`` and ``import api`` work when tests are run
from the repository root or other locations. Shared fakes for the remote call
and the timers live here too.
"""

import os
import sys
import threading

import pytest

# Project root = parent directory of this tests/ folder
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from pollex.config import JobConfig  # noqa: E402
from pollex.jobs.store import SharedStore  # noqa: E402

# Short intervals so supervising loops react quickly in tests.
FAST_JOBS = JobConfig(tick_interval_s=0.05, request_timeout_s=5.0, stale_timeout_ms=150_000)


class FakeRewrite:
    """Stand-in for the remote rewrite call.

    Blocks until ``release`` is set, then returns ``result`` or raises ``error``.
    """

    def __init__(self, result=None, error=None, *, released=False):  # noqa: ANN001
        self.result = result
        self.error = error
        self.calls = []
        self.entered = threading.Event()
        self.release = threading.Event()
        self.returned = threading.Event()
        if released:
            self.release.set()

    def __call__(self, text, model_id):  # noqa: ANN001
        self.calls.append((text, model_id))
        self.entered.set()
        self.release.wait(10)
        try:
            if self.error is not None:
                raise self.error
            return self.result
        finally:
            self.returned.set()


class FakeTicker:
    """Manual replacement for pollex.view.progress.Ticker."""

    def __init__(self, fn, *, interval_s=1.0, start_at=0):  # noqa: ANN001
        self.fn = fn
        self.interval_s = interval_s
        self.seconds = start_at
        self.start_at = start_at
        self.started = False
        self.cancelled = False

    def start(self):  # noqa: ANN201
        self.started = True
        return self

    def cancel(self) -> None:
        self.cancelled = True

    def tick(self) -> None:
        self.seconds += 1
        self.fn(self.seconds)


class FakeTimer:
    """Manual replacement for threading.Timer."""

    def __init__(self, interval, fn):  # noqa: ANN001
        self.interval = interval
        self.fn = fn
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.fn()


@pytest.fixture
def store(tmp_path) -> SharedStore:  # noqa: ANN001
    return SharedStore(tmp_path / "state")


@pytest.fixture
def tickers():  # noqa: ANN201
    created: list[FakeTicker] = []

    def _factory(fn, **kwargs):  # noqa: ANN001,ANN003
        t = FakeTicker(fn, **kwargs)
        created.append(t)
        return t

    _factory.created = created
    return _factory


@pytest.fixture
def timers():  # noqa: ANN201
    created: list[FakeTimer] = []

    def _factory(interval, fn):  # noqa: ANN001
        t = FakeTimer(interval, fn)
        created.append(t)
        return t

    _factory.created = created
    return _factory
