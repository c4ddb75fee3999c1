from __future__ import annotations

import pytest

from tests.callgate.support.fakes import FakeClock, FakeLogger, RecordingListener


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def fake_clock() -> FakeClock:
    """Provide a manually advanced clock per test."""
    return FakeClock()


@pytest.fixture
def recording_listener() -> RecordingListener:
    """Provide a listener that records every breaker event."""
    return RecordingListener()
