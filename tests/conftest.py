"""Test configuration and fixtures.

Provides an isolated in-memory SQLite database (one shared connection via
StaticPool) so tests don't depend on a local Postgres, plus a fresh
connection registry per test so realtime state never leaks between tests.
"""

import json
import os
from datetime import datetime, timedelta
from typing import Generator

# Set env flags BEFORE importing application modules
os.environ.setdefault("DEBUG", "1")
os.environ.setdefault("TESTING", "1")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import database  # SessionLocal is redirected to the test engine below
from database import Base, get_db
from event_bus import Broadcaster
from main import app  # imports routers & models
from models.user import User
from realtime import ConnectionRegistry
from security import create_access_token, get_password_hash

engine = create_engine(
    "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PASSWORD = "password123"
# bcrypt is slow on purpose; hash once for every fixture user
PASSWORD_HASH = get_password_hash(PASSWORD)


class RecordingSink:
    """Sink that keeps every frame it is sent."""

    def __init__(self):
        self.frames = []

    def send(self, frame: str) -> None:
        self.frames.append(frame)

    @property
    def events(self):
        out = []
        for frame in self.frames:
            if frame.startswith("data: "):
                out.append(json.loads(frame[len("data: "):].strip()))
        return out

    @property
    def event_types(self):
        return [e["type"] for e in self.events]


class FailingSink:
    """Sink whose peer vanished without a clean close."""

    def __init__(self):
        self.attempts = 0

    def send(self, frame: str) -> None:
        self.attempts += 1
        raise ConnectionResetError("peer went away")


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def setup_db() -> Generator[None, None, None]:
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session(setup_db) -> Generator:  # type: ignore
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def override_db_dependency(db_session):  # type: ignore
    """Override FastAPI dependency to use the SQLite session."""
    def _get_db():
        try:
            yield db_session
        finally:
            pass
    app.dependency_overrides[get_db] = _get_db

    # Also redirect direct imports of SessionLocal within tests/modules
    database.SessionLocal = TestingSessionLocal  # type: ignore
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
def registry() -> ConnectionRegistry:
    registry = ConnectionRegistry()
    app.state.registry = registry
    app.state.broadcaster = Broadcaster(registry)
    return registry


@pytest.fixture()
def client(registry) -> TestClient:  # type: ignore
    return TestClient(app)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


def make_user(db, email: str, role: str = "admin", banned: bool = False, name: str = "Test User") -> User:
    user = User(name=name, email=email, password=PASSWORD_HASH, role=role, banned=banned)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user: User, session_id: str = "sess-test") -> dict:
    token = create_access_token({"sub": user.email}, session_id=session_id)
    return {"Authorization": f"Bearer {token}"}


def attach(registry: ConnectionRegistry, user: User, sink=None, client_id: str | None = None):
    """Register ``user`` as a connected stream client and return its sink."""
    sink = sink if sink is not None else RecordingSink()
    registry.register(client_id or f"{user.id}-test", str(user.id), user.role, user.email, sink)
    return sink
