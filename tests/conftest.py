"""
Shared pytest fixtures for the moderation test suite.

The store runs on an in-memory SQLite database; the Hive client is an
``AsyncMock`` unless a test needs the real HTTP adapter.
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from prayer_guard.db import models as db
from prayer_guard.db.session import make_session_factory
from prayer_guard.db.store import ModerationStore, SqlContentRepository
from prayer_guard.moderation.classification import build_result
from prayer_guard.moderation.orchestrator import ModerationOrchestrator


class RecordingContentRepository:
    """Content repository double that remembers every visibility update."""

    def __init__(self):
        self.calls: list[tuple[str, str, bool]] = []

    def set_visibility(self, content_id: str, moderation_status: str, is_visible: bool) -> bool:
        self.calls.append((content_id, moderation_status, is_visible))
        return True


def scored(scores: dict, model_version: str = "hive-text-v2", thresholds=None):
    return build_result(scores, model_version=model_version, thresholds=thresholds)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    db.Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return ModerationStore(session_factory)


@pytest.fixture
def sql_content_repo(session_factory):
    return SqlContentRepository(session_factory)


@pytest.fixture
def content_repo():
    return RecordingContentRepository()


@pytest.fixture
def client():
    mock = AsyncMock()
    mock.classify_text.return_value = scored({})
    mock.classify_media.return_value = scored({}, model_version="hive-media-v2")
    mock.submit_video.return_value = "task-1"
    mock.poll_task.return_value = None
    return mock


@pytest.fixture
def orchestrator(client, store, content_repo):
    return ModerationOrchestrator(client, store, content_repo, webhook_url="https://hooks.example/moderation")
