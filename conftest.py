"""Pytest configuration: set test env before any photosync imports so DB, storage and keys use test values."""

import asyncio
import os
import tempfile

import pytest

# Set before photosync.server.db.session or photosync.server.config are used so the engine and settings use test paths
_tmp = tempfile.mkdtemp(prefix="photosync_test_")
os.environ.setdefault("PHOTOSYNC_DB_PATH", os.path.join(_tmp, "test.db"))
os.environ.setdefault("PHOTOSYNC_STORAGE_BASE_PATH", os.path.join(_tmp, "photos"))
os.environ.setdefault("PHOTOSYNC_API_KEY", "test-api-key-at-least-32-characters-long")
# Client config and sync state go to a throwaway dir (also selects a separate keyring namespace)
os.environ.setdefault("PHOTOSYNC_CONFIG_DIR", os.path.join(_tmp, "client"))

TEST_API_KEY = os.environ["PHOTOSYNC_API_KEY"]


@pytest.fixture(scope="session")
def init_test_db():
    """Create tables once per test session."""
    from photosync.server.db.session import init_db

    asyncio.run(init_db())


@pytest.fixture
def session_factory(init_test_db):
    """Yield get_session so tests can use async with session_factory() as session."""
    from photosync.server.db.session import get_session
    return get_session


@pytest.fixture
def api_key() -> str:
    return TEST_API_KEY
