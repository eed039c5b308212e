"""Shared fixtures: module-scoped DB template, per-test store copies, chunk store."""

import shutil

import pytest

from repolens.storage.chunk_store import ChunkStore
from repolens.storage.sqlite_store import SqliteStore
from tests.helpers import FAKE_DIMS, SAMPLE_FILES, FakeEmbedder, FakeSource


@pytest.fixture(scope="module")
def _module_db_path(tmp_path_factory):
    """Create one fully-initialized DB per test module as a template."""
    db_path = tmp_path_factory.mktemp("db") / "test.db"
    s = SqliteStore(db_path)
    s.init_db()
    s._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
    s._conn.close()
    return db_path


@pytest.fixture
def db_path(tmp_path, _module_db_path):
    """Copy the template DB into a per-test tmp dir (fast file copy, no init_db)."""
    path = tmp_path / "test.db"
    shutil.copy2(_module_db_path, path)
    return path


@pytest.fixture
def store(db_path):
    """Per-test SqliteStore backed by a pre-initialized DB copy."""
    s = SqliteStore(db_path)
    yield s
    s.close()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def chunk_store(tmp_path, embedder):
    """LanceDB chunk store with 8-dim fake embeddings."""
    cs = ChunkStore(tmp_path / "lancedb", embedder, dims=FAKE_DIMS)
    cs.init_table()
    return cs


@pytest.fixture
def source():
    return FakeSource(SAMPLE_FILES)
