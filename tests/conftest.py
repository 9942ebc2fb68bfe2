"""Shared fixtures for purchase intent engine tests."""

import os
from datetime import datetime
from typing import List

import pytest
from fastapi.testclient import TestClient

# Keep tests on the in-memory repository and default taxonomy
os.environ.pop("DATABASE_URL", None)
os.environ.pop("INTENT_TAXONOMY_FILE", None)
os.environ.pop("ACTION_WEBHOOK_URL", None)

from intent_tracking.action_notifier import ActionChangedEvent
from intent_tracking.intent_repository import InMemoryIntentRepository
from intent_tracking.intent_store import ConversationIntentStore
from intent_tracking.taxonomy import IntentConfig


class RecordingNotifier:
    """Collects action-change events."""

    def __init__(self):
        self.events: List[ActionChangedEvent] = []

    async def notify(self, event: ActionChangedEvent) -> None:
        self.events.append(event)


@pytest.fixture
def config():
    return IntentConfig()


@pytest.fixture
def repository():
    return InMemoryIntentRepository()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store(config, repository, notifier):
    return ConversationIntentStore(config, repository, notifiers=[notifier])


@pytest.fixture
def t0():
    """Fixed turn timestamp."""
    return datetime(2026, 3, 2, 10, 0, 0)


@pytest.fixture
def client():
    """Create a FastAPI test client with fresh services."""
    from api.main import app
    from api.services import get_services
    from config.settings import get_settings

    get_settings.cache_clear()
    get_services().reset()
    yield TestClient(app)
    get_services().reset()
