"""Shared fakes and pytest configuration for Beat Coach."""

from __future__ import annotations

import os

import pytest

from fakes import FakeClock, FakeDevice, FakeTimerHost


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    del config
    if os.environ.get("BEAT_COACH_CI") != "1":
        return
    skip_vlc = pytest.mark.skip(reason="Skipping VLC-dependent tests in CI.")
    for item in items:
        if "vlc" in item.keywords:
            item.add_marker(skip_vlc)


@pytest.fixture
def timers() -> FakeTimerHost:
    return FakeTimerHost()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1_000.0)


@pytest.fixture
def device() -> FakeDevice:
    return FakeDevice()


@pytest.fixture(autouse=True)
def _release_active_session():
    from beat_coach.session import RemotePlayerSession

    RemotePlayerSession._active = None
    yield
    RemotePlayerSession._active = None
