"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.helpers import get_provider_client, get_vault
from database import Base, get_db
from main import app
from services.sync_service import SyncService
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    USER_ID,
    connection,
    entitlement,
    vault,
)
from tests.fixtures.mocks import MockPlaidClient


@pytest.fixture(name="db")
def db_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def mock_provider():
    """Mock Plaid client with sample accounts and an empty first delta page."""
    return MockPlaidClient()


@pytest.fixture
def sync_service(mock_provider, vault):
    return SyncService(mock_provider, vault)


@pytest.fixture
def auth_headers():
    """Headers the upstream auth proxy forwards for USER_ID."""
    return {"X-User-Id": USER_ID}


@pytest.fixture(name="client")
def client_fixture(db, mock_provider, vault):
    """Create a test client with the test database, mock provider and test vault."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provider_client] = lambda: mock_provider
    app.dependency_overrides[get_vault] = lambda: vault
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _release_sync_locks():
    """Start each test with a fresh per-connection lock registry."""
    registry = SyncService.lock_registry()
    registry._locks.clear()
    registry._rerun_requested.clear()
    yield
