import os
import tempfile

# Settings are read at import time, so the environment goes first.
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("GROQ_API_KEY", "test-key")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="berries-uploads-")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from berries.database import build_engine, get_db, init_db
from berries.main import app
from berries.routers.auth import create_access_token
from berries.routers.chat import get_completion_provider
from berries.services.session_store import SessionStore


class FakeProvider:
    """Completion provider double that records calls and stream closure."""

    def __init__(self, reply="Hello there", tokens=None, error=None):
        self.reply = reply
        self.tokens = ["Hel", "lo", " there"] if tokens is None else tokens
        self.error = error
        self.calls = []
        self.tokens_sent = 0
        self.stream_closed = False

    async def complete(self, message, system_prompt=None):
        self.calls.append((message, system_prompt))
        if self.error is not None:
            raise self.error
        return self.reply

    async def stream(self, message, system_prompt=None):
        self.calls.append((message, system_prompt))
        try:
            for token in self.tokens:
                self.tokens_sent += 1
                yield token
            if self.error is not None:
                raise self.error
        finally:
            self.stream_closed = True


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return SessionStore(db)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def client(session_factory, provider):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_completion_provider] = lambda: provider
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_headers():
    def _make(identity="alice@example.com"):
        return {"Authorization": f"Bearer {create_access_token(identity)}"}
    return _make


@pytest.fixture
def headers(make_headers):
    return make_headers()
