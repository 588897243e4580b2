"""
Pytest configuration and fixtures for Hub Relay tests.
"""

import asyncio
import json
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from app.core.database import create_engine, create_session_maker, create_tables  # noqa: E402
from app.relay.broadcast import BroadcastHub  # noqa: E402
from app.relay.pipeline import IngestPipeline  # noqa: E402
from app.relay.queries import QueryService  # noqa: E402
from app.relay.registry import PresenceRegistry  # noqa: E402
from app.relay.store import ReadingStore  # noqa: E402

FRESHNESS_WINDOW = timedelta(minutes=5)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeSocket:
    """Viewer socket that records decoded messages."""

    def __init__(self, gate: asyncio.Event | None = None):
        self.messages: list[dict] = []
        self.closed = False
        self.gate = gate

    async def send(self, text: str) -> None:
        if self.closed:
            raise RuntimeError("socket is closed")
        if self.gate is not None:
            await self.gate.wait()
        self.messages.append(json.loads(text))


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 12, 0, 0))


@pytest.fixture
def registry(clock):
    return PresenceRegistry(clock=clock)


@pytest.fixture
async def hub(registry):
    hub = BroadcastHub(registry, FRESHNESS_WINDOW, max_pending=8)
    yield hub
    await hub.close()


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'relay.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine, clock):
    return ReadingStore(create_session_maker(engine), timeout=5.0, clock=clock)


@pytest.fixture
async def pipeline(registry, hub, store):
    pipeline = IngestPipeline(registry, hub, store)
    yield pipeline
    await pipeline.drain()


@pytest.fixture
def queries(store, registry, hub, clock):
    return QueryService(store, registry, hub, FRESHNESS_WINDOW, clock=clock)


@pytest.fixture
def sample_hub_connect():
    """hub_connect envelope as sent by the mobile hub client."""
    return {
        "type": "hub_connect",
        "hubId": "hub-1",
        "deviceId": "d1",
        "deviceType": "heart_rate_strap",
        "name": "Chest strap",
    }
