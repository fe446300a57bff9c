"""
Pytest configuration and fixtures for tinylink tests.
"""

import os

# Must be set before tinylink modules are imported
os.environ["ENVIRONMENT"] = "dev"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from tinylink import auth, database
from tinylink.dependencies import get_store
from tinylink.main import app
from tinylink.store import MemoryLinkStore, SQLLinkStore


@pytest.fixture
def memory_store():
    """Create an empty in-memory store."""
    return MemoryLinkStore()


@pytest.fixture
def sql_store():
    """Create a store backed by a fresh in-memory SQLite database."""
    engine = database.make_engine("sqlite://")
    database.Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield SQLLinkStore(session)
    finally:
        session.close()
        engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Run a test against every store implementation."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def alice(store):
    return store.insert_user("ext-alice", "Alice", "alice@example.com")


@pytest.fixture
def bob(store):
    return store.insert_user("ext-bob", "Bob", "bob@example.com")


def bearer(external_id: str) -> dict:
    token = auth.create_access_token({"sub": external_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(memory_store):
    """TestClient whose requests all share one in-memory store."""
    app.dependency_overrides[get_store] = lambda: memory_store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def alice_headers(client):
    response = client.post(
        "/api/users",
        json={"display_name": "Alice", "email": "alice@example.com"},
        headers=bearer("ext-alice"),
    )
    assert response.status_code == 201
    return bearer("ext-alice")


@pytest.fixture
def bob_headers(client):
    response = client.post(
        "/api/users",
        json={"display_name": "Bob", "email": "bob@example.com"},
        headers=bearer("ext-bob"),
    )
    assert response.status_code == 201
    return bearer("ext-bob")


@pytest.fixture
def headers_for():
    """Build Authorization headers for an arbitrary external identity."""
    return bearer
