"""
Test configuration and fixtures.

Every test gets a fresh SQLite database, a fresh in-memory cache and queue,
and its own click store file, so cached snapshots and queued clicks never
leak between tests.
"""

import asyncio
import os

# Must be set before the app (and its settings) are imported
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("QUEUE_BACKEND", "memory")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from main import app
from smartlink_app.cache.strategies import InMemoryCache
from smartlink_app.click_processor.click_worker import ClickWorker
from smartlink_app.config import settings
from smartlink_app.database.connection import Base, get_db
from smartlink_app.dependencies import get_cache, get_click_storage, get_queue
from smartlink_app.queue.strategies import InMemoryQueue
from smartlink_app.storage.strategies import SQLiteClickStorage

# Test database configuration
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """Fresh schema and session per test"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def queue():
    return InMemoryQueue()


@pytest.fixture
def click_storage(tmp_path):
    return SQLiteClickStorage(db_path=str(tmp_path / "analytics.db"))


@pytest.fixture(scope="function")
def client(db_session, cache, queue, click_storage):
    """TestClient wired to the per-test database and backends"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_queue] = lambda: queue
    app.dependency_overrides[get_click_storage] = lambda: click_storage

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def click_worker(queue, click_storage):
    return ClickWorker(queue=queue, storage=click_storage, db_session_factory=TestingSessionLocal)


@pytest.fixture
def drain_clicks(click_worker, db_session):
    """
    Run the click worker until the queue is empty and flush its counters.

    The worker writes through its own session, so the test session is
    expired afterwards to see the new counter values.
    """
    def drain() -> int:
        async def run():
            handled = 0
            while await click_worker.queue.get_queue_length(settings.queue_name):
                handled += await click_worker.run_once()
            click_worker.flush_counters()
            return handled

        handled = asyncio.run(run())
        db_session.expire_all()
        return handled

    return drain


@pytest.fixture
def short_link(client):
    """Create a short link and return its JSON representation"""
    def create(original_url="https://www.example.com/landing", **extra):
        response = client.post("/api/v1/urls/", json={"original_url": original_url, **extra})
        assert response.status_code == 201, response.text
        return response.json()

    return create
