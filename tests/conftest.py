"""
Pytest configuration and fixtures for SchoolPulse tests.
"""

import os

os.environ.setdefault("DB_URL", "sqlite://")

from datetime import datetime  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import app.models.admin  # noqa: E402,F401
import app.models.lms  # noqa: E402,F401
import app.models.metrics  # noqa: E402,F401
import app.models.registry  # noqa: E402,F401
from app.database.session import get_session  # noqa: E402
from app.main import app  # noqa: E402
from app.services.config_service import config_service  # noqa: E402

from factories import REGISTRY_URL, FakeHttp  # noqa: E402


@pytest.fixture
def test_engine():
    """Create a fresh in-memory database engine per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(test_engine):
    """Create a test database session."""
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(autouse=True)
def reset_settings():
    """Drop cached settings and overrides between tests."""
    config_service.clear_cache()
    yield
    config_service.clear_cache()


@pytest.fixture
def fake_now():
    """Freeze the service clock on a Wednesday."""
    config_service.set_setting("APP_NOW_MODE", "fake")
    config_service.set_setting("APP_FAKE_NOW", "2024-05-15T12:00:00")
    return datetime(2024, 5, 15, 12, 0, 0)


@pytest.fixture
def registry_settings():
    config_service.set_setting("REGISTRY_API_URL", REGISTRY_URL)
    config_service.set_setting("REGISTRY_TIMEOUT", "5")


@pytest.fixture
def client(db_session):
    """Create a test client with database dependency override."""

    def override_get_session():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_session] = override_get_session

    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_client(db_session, registry_settings, sleeps):
    """Build a RegistryClient around a scripted HTTP session."""
    from app.services.registry_client import RegistryClient

    def factory(responses, triggered_by="api"):
        http = FakeHttp(responses)
        client = RegistryClient(db_session, http=http, sleep=sleeps.append, triggered_by=triggered_by)
        return client, http

    return factory
