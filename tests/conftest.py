from datetime import datetime, timezone

import pytest
from mongomock_motor import AsyncMongoMockClient

from marketchat.config import Settings
from marketchat.repositories.engagement_repository import EngagementRepository
from marketchat.repositories.message_repository import MessageRepository
from marketchat.services.message_store import MessageStore
from marketchat.services.read_tracker import ReadTracker
from marketchat.utils.realtime_bus import LocalBus
from tests.fixtures.engagement_fixtures import engagement, engagements  # noqa: F401
from tests.helpers import FakeClock


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        badge_debounce_seconds=0.0,
        resubscribe_backoff_initial=0.01,
        resubscribe_backoff_max=0.05,
    )


@pytest.fixture
def db():
    client = AsyncMongoMockClient()
    return client["marketchat_test"]


@pytest.fixture
def bus():
    return LocalBus()


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def message_repo(db):
    return MessageRepository(db)


@pytest.fixture
def engagement_repo(db):
    return EngagementRepository(db)


@pytest.fixture
def store(message_repo, engagement_repo, bus, clock):
    return MessageStore(message_repo, engagement_repo, bus, clock=clock)


@pytest.fixture
def read_tracker(message_repo, bus):
    return ReadTracker(message_repo, bus)
