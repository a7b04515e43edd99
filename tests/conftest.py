"""Common test fixtures for notegraph."""

import pytest

from notegraph.config import config
from notegraph.models.db_models import get_session_factory, init_db
from notegraph.services.note_service import NoteService
from notegraph.storage import (
    LinkRepository,
    NoteRepository,
    PresenceRepository,
    TagRepository,
)


@pytest.fixture
def test_config(tmp_path, monkeypatch):
    """Point the global config at a temp database (auto-restored even on crash)."""
    monkeypatch.setattr(config, "database_path", tmp_path / "test_notegraph.db")
    monkeypatch.setattr(config, "context_length", 50)
    monkeypatch.setattr(config, "min_mention_title_length", 3)
    monkeypatch.setattr(config, "suggestion_pool_size", 8)
    monkeypatch.setattr(config, "presence_window_seconds", 30)
    monkeypatch.setattr(config, "ai_api_key", None)
    yield config


@pytest.fixture
def engine(test_config):
    """A fresh SQLite database with the schema created."""
    engine = init_db(test_config.get_db_url())
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def note_repository(session_factory):
    return NoteRepository(session_factory)


@pytest.fixture
def link_repository(session_factory):
    return LinkRepository(session_factory)


@pytest.fixture
def tag_repository(session_factory):
    return TagRepository(session_factory)


@pytest.fixture
def presence_repository(session_factory):
    return PresenceRepository(session_factory)


@pytest.fixture
def note_service(engine):
    """A NoteService without a completion provider."""
    service = NoteService(engine=engine)
    yield service
    service.suggestions.shutdown()
