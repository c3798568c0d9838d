from datetime import datetime
from typing import List, Optional, Tuple

import pytest

from pitchup import (
    Channel, DedupGuard, EngineConfig, EventBus, InMemoryStore, ManualClock, PitchEngine,
    PushPermission, RandomSource, SimulatedCaptureDevice, StaticPermissionProbe, Transport
)
from pitchup.delivery import NotificationPayload
from pitchup.errors import ErrorKind


class FixedRandom(RandomSource):
    """Always draws the same fraction of [low, high]."""

    def __init__(self, fraction: float = 0.5):
        self.fraction = fraction

    def uniform(self, low: float, high: float) -> float:
        return low + self.fraction * (high - low)


class FakeTransport(Transport):
    def __init__(self, error: Optional[ErrorKind] = None, raises: Optional[Exception] = None):
        self.error = error
        self.raises = raises
        self.sent: List[Tuple[Channel, str, NotificationPayload]] = []

    def send(self, channel, user_id, payload):
        self.sent.append((channel, user_id, payload))
        if self.raises:
            raise self.raises
        return self.error


def local_ts(year=2025, month=1, day=6, hour=10, minute=0, second=0) -> float:
    """Unix time of a local wall-clock instant (January, no DST change)."""
    return datetime(year, month, day, hour, minute, second).timestamp()


@pytest.fixture
def t0() -> float:
    return local_ts(hour=10)


@pytest.fixture
def clock(t0) -> ManualClock:
    return ManualClock(start=t0)


@pytest.fixture
def make_engine(clock):
    """Engine factory on the manual clock with fake in-app delivery."""

    def factory(user_id="u1", transports=None, store=None, dedup_guard=None, event_bus=None,
                capture_device=None, probe=None, event_logger=None, fraction=0.5):
        if transports is None:
            transports = {Channel.IN_APP: FakeTransport()}
        return PitchEngine(
            user_id=user_id,
            clock=clock,
            store=store or InMemoryStore(),
            transports=transports,
            probe=probe or StaticPermissionProbe(capable=False, permission=PushPermission.DENIED),
            config=EngineConfig(),
            random_source=FixedRandom(fraction),
            dedup_guard=dedup_guard or DedupGuard(),
            event_bus=event_bus or EventBus(),
            event_logger=event_logger,
            capture_device=capture_device or SimulatedCaptureDevice(user_id)
        )

    return factory
