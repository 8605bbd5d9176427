"""Shared test fixtures and configuration."""
import os
from datetime import datetime
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set test environment variables before importing the package
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("QUALITY_POLL_INTERVAL", "0.01")

from callsignal.db.models import Base
from callsignal.main import create_app
from callsignal.core.errors import ProfileNotFoundError
from callsignal.services.calls.models import CallerProfile
from callsignal.services.quality.models import ConnectionState
from callsignal.services.quality.transport import Transport
from callsignal.services.ringback.audio import InMemoryAudioBackend
from callsignal.services.store.calls import CallRecordStore
from callsignal.services.store.events import ChangeEvent, ChangeKind
from callsignal.services.store.feed import ChangeFeed
from callsignal.services.store.messages import MessageStore
from callsignal.services.store.profiles import ProfileRepository


@pytest.fixture
def test_database_url(tmp_path):
    """SQLite file per test; a file gives each session its own connection."""
    return f"sqlite+aiosqlite:///{tmp_path / 'callsignal_test.db'}"


@pytest.fixture
async def test_db_engine(test_database_url):
    """Create test database engine."""
    engine = create_async_engine(test_database_url)

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_db_engine):
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def call_store(session_factory, feed):
    return CallRecordStore(session_factory, feed)


@pytest.fixture
def message_store(session_factory, feed):
    return MessageStore(session_factory, feed)


@pytest.fixture
def profile_repository(session_factory):
    return ProfileRepository(session_factory)


@pytest.fixture
def audio_backend():
    return InMemoryAudioBackend(sample_rate=8000)


@pytest.fixture
def call_event():
    """Factory for call change events, independent of any store."""

    def _make(
        kind: ChangeKind = ChangeKind.INSERT,
        call_id: str = "call-1",
        caller_id: str = "alice",
        receiver_id: str = "bob",
        status: str = "pending",
        **fields: Any,
    ) -> ChangeEvent:
        record: Dict[str, Any] = {
            "id": call_id,
            "caller_id": caller_id,
            "receiver_id": receiver_id,
            "status": status,
            "call_type": "voice",
            "started_at": None,
            "ended_at": None,
            "created_at": datetime(2024, 1, 1, 12, 0, 0),
        }
        record.update(fields)
        return ChangeEvent(kind=kind, table="calls", record=record)

    return _make


@pytest.fixture
def mock_profiles():
    """Profile lookup that knows alice and carol only."""
    known = {
        "alice": CallerProfile(user_id="alice", full_name="Alice Martin", is_online=True),
        "carol": CallerProfile(user_id="carol", full_name="Carol Diallo"),
    }

    async def _get_profile(user_id: str) -> CallerProfile:
        if user_id not in known:
            raise ProfileNotFoundError(f"No profile for user {user_id}")
        return known[user_id]

    profiles = Mock()
    profiles.get_profile = AsyncMock(side_effect=_get_profile)
    return profiles


class FakeTransport(Transport):
    """Transport returning scripted stats."""

    def __init__(self, reports: Optional[List[Dict[str, Any]]] = None, state: ConnectionState = ConnectionState.CONNECTED):
        self.reports = reports or []
        self.state = state
        self.error: Optional[Exception] = None
        self.calls = 0

    @property
    def connection_state(self) -> ConnectionState:
        return self.state

    async def get_stats(self) -> List[Dict[str, Any]]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.reports)


def stats_reports(
    rtt_s: float = 0.05,
    jitter_s: float = 0.005,
    received: int = 1000,
    lost: int = 0,
    bytes_received: int = 0,
) -> List[Dict[str, Any]]:
    """Stat reports in the shape a WebRTC-style transport produces."""
    return [
        {"type": "candidate-pair", "state": "in-progress", "currentRoundTripTime": 9.9},
        {"type": "candidate-pair", "state": "succeeded", "currentRoundTripTime": rtt_s},
        {"type": "inbound-rtp", "kind": "video", "jitter": 9.9, "packetsReceived": 1, "packetsLost": 1},
        {
            "type": "inbound-rtp",
            "kind": "audio",
            "jitter": jitter_s,
            "packetsReceived": received,
            "packetsLost": lost,
            "bytesReceived": bytes_received,
        },
    ]


@pytest.fixture
def fake_transport():
    return FakeTransport(stats_reports())


@pytest.fixture
def make_stats():
    return stats_reports


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def client(test_database_url):
    """Test client running the app against its own database file."""
    with TestClient(create_app(database_url=test_database_url)) as test_client:
        yield test_client
