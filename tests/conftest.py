"""
Shared fixtures for Stream Explorer tests.
"""

import asyncio
import datetime
import json
from collections import deque
from dataclasses import dataclass, field
from typing import List, Optional

import pytest

from stream_explorer.chart import ChartModel
from stream_explorer.models import DirectSeries, ViewContext, VisibleWindow
from stream_explorer.profile import AttributeRef, Profile
from stream_explorer.stream_session import StreamEvent
from stream_explorer.timekeys import Granularity

NOW = datetime.datetime(2024, 5, 1, 12, 0, 0)


def sse(record_id, payload):
    """Build a stream event carrying ``payload`` as JSON."""
    return StreamEvent(record_id, json.dumps(payload))


@dataclass
class Script:
    events: List[StreamEvent] = field(default_factory=list)
    error: Optional[BaseException] = None
    hang: bool = False


class FakeTransport:
    """Transport replaying one script per events() call; unscripted calls end immediately."""

    def __init__(self):
        self.scripts = deque()
        self.calls = []

    def add(self, events=(), error=None, hang=False):
        self.scripts.append(Script(list(events), error, hang))
        return self

    async def events(self, params):
        self.calls.append(dict(params))
        script = self.scripts.popleft() if self.scripts else Script()
        for event in script.events:
            await asyncio.sleep(0)
            yield event
        if script.error is not None:
            raise script.error
        if script.hang:
            await asyncio.Event().wait()


async def _wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def context():
    """Second-granularity view of host h1, attribute x, ending at NOW."""
    return ViewContext(
        topic="nginx",
        series_id="web",
        granularity=Granularity.SECOND,
        window=VisibleWindow("2024-05-01T11:30:00", "2024-05-01T12:00:00"),
        hosts=["h1"],
        selector=[DirectSeries("h1", "x")],
    )


@pytest.fixture
def profile():
    return Profile(
        topic="nginx",
        series_id="web",
        attributes=[AttributeRef("x")],
        hosts=["h1"],
        unit=Granularity.SECOND,
    )


@pytest.fixture
def chart():
    return ChartModel()
