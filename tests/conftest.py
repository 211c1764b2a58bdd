"""Common test fixtures for Rhizonote Sync."""

import pytest

from rhizonote_sync.config import config
from rhizonote_sync.models.db_models import get_session_factory, init_db
from rhizonote_sync.models.schema import Folder, Note
from rhizonote_sync.observability import metrics
from rhizonote_sync.storage.markdown_parser import MarkdownParser
from rhizonote_sync.storage.sync_state_repository import SyncStateRepository
from tests.fakes import START_TIME_MS, FakeRemoteStore


@pytest.fixture(params=["asyncio"])
def anyio_backend(request):
    """Restrict anyio tests to asyncio only (trio is not installed)."""
    return request.param


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Keep the global metrics collector isolated per test."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def test_config(tmp_path, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    monkeypatch.setattr(config, "base_dir", tmp_path)
    monkeypatch.setattr(config, "database_path", tmp_path / "db" / "sync.db")
    yield config


@pytest.fixture
def repository(test_config):
    """SyncStateRepository on a fresh SQLite file."""
    engine = init_db(test_config.get_db_url())
    yield SyncStateRepository(get_session_factory(engine))
    engine.dispose()


@pytest.fixture
def store():
    return FakeRemoteStore()


@pytest.fixture
def parser():
    return MarkdownParser()


@pytest.fixture
def make_note():
    """Factory for notes with fixed timestamps."""

    def _make(id="n1", title="Note", content="Body", updated_at=START_TIME_MS, **kw):
        kw.setdefault("created_at", updated_at)
        return Note(id=id, title=title, content=content, updated_at=updated_at, **kw)

    return _make


@pytest.fixture
def make_folder():
    def _make(id, name, parent_id=None, **kw):
        return Folder(id=id, name=name, parent_id=parent_id, **kw)

    return _make
