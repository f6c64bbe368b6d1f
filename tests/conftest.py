"""Pytest configuration and fixtures."""

import os

# Keep the app away from any on-disk database while tests import it
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from facelogin.config import FACE_DESCRIPTOR_MIN_LENGTH
from facelogin.dependencies import get_db
from facelogin.main import app
from facelogin.models import Base


def make_descriptor(value=0.0, length=FACE_DESCRIPTOR_MIN_LENGTH):
    """Descriptor with every component set to ``value``."""
    return [value] * length


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    """TestClient whose requests use the in-memory database."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def register(client):
    """Register a user through the API and return the JSON response."""

    def _register(username="alice", descriptor=None, password="secret123", name=None):
        response = client.post(
            "/api/auth/register",
            json={
                "name": name or username.title(),
                "username": username,
                "password": password,
                "faceDescriptor": descriptor if descriptor is not None else make_descriptor(),
            },
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _register


@pytest.fixture
def auth_headers(register):
    """Bearer headers for a freshly registered user."""
    token = register()["token"]
    return {"Authorization": f"Bearer {token}"}
