"""Pytest configuration and fixtures for TalentLink tests.

Test isolation strategy:
- Each test gets a fresh database: an in-memory SQLite engine by default,
  or TEST_DATABASE_URL (e.g. PostgreSQL) with tables dropped afterwards
- Schema comes from Base.metadata (the Alembic migration mirrors it)
- Apps are built with create_app() wired to the test engine
- Auth uses real HS256 tokens minted with the test secret (tests.helpers)
- Time-sensitive tests pin the clock with the `frozen_clock` fixture
"""

import os
import sys
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

# Add repo root to sys.path for importing top-level packages (e.g., apps)
_repo_root = Path(__file__).parent.parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

# Settings are read lazily; make sure the test environment wins
os.environ["TALENTLINK_ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ["JWT_SECRET"] = "talentlink-test-secret-0123456789abcdef"
os.environ.pop("JWT_ISSUER", None)
os.environ.pop("POST_CATALOG_URL", None)

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from talentlink import clock
from talentlink.app import add_request_id_middleware, create_app
from talentlink.config import clear_settings_cache
from talentlink.db.engine import create_db_engine
from talentlink.db.models import Base
from talentlink.db.session import create_session_factory, get_db
from talentlink.services.live_bus import LiveBus
from talentlink.services.post_catalog import PostSummary, StaticPostCatalog

clear_settings_cache()

# Posts known to the catalog used by test apps
KNOWN_POSTS = {
    7: PostSummary(post_ref=7, title="Logo design help", owner_uid=None),
    9: PostSummary(post_ref=9, title="Python tutoring", owner_uid=None),
}


class FrozenClock:
    """Controllable replacement for talentlink.clock.utcnow."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, hour: int, minute: int, second: int = 0) -> datetime:
        self.now = self.now.replace(hour=hour, minute=minute, second=second, microsecond=0)
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Create a database engine with a fresh schema for one test."""
    url = os.environ.get("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
    engine = create_db_engine(url)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def postgres_only(engine: Engine) -> None:
    """Skip unless TEST_DATABASE_URL points at PostgreSQL (row locks are real there)."""
    if engine.dialect.name != "postgresql":
        pytest.skip("requires PostgreSQL (set TEST_DATABASE_URL)")


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Provide a database session bound to the test engine."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def bus() -> LiveBus:
    return LiveBus(max_queue=16)


@pytest.fixture
def post_catalog() -> StaticPostCatalog:
    return StaticPostCatalog(KNOWN_POSTS)


@pytest.fixture
def frozen_clock(monkeypatch) -> FrozenClock:
    """Pin clock.utcnow to 2026-03-02 10:00:00 UTC; tests move it explicitly."""
    fake = FrozenClock(datetime(2026, 3, 2, 10, 0, tzinfo=UTC))
    monkeypatch.setattr(clock, "utcnow", fake)
    return fake


def _build_app(
    session_factory: sessionmaker[Session],
    post_catalog: StaticPostCatalog,
    skip_auth_middleware: bool,
) -> FastAPI:
    app = create_app(
        skip_auth_middleware=skip_auth_middleware,
        session_factory=session_factory,
        post_catalog=post_catalog,
    )

    def override_get_db() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    add_request_id_middleware(app, log_requests=False)
    return app


@pytest.fixture
def client(session_factory, post_catalog) -> Generator[TestClient, None, None]:
    """Provide a FastAPI test client without authentication.

    Suitable for public endpoints only.
    """
    app = _build_app(session_factory, post_catalog, skip_auth_middleware=True)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def authenticated_app(session_factory, post_catalog) -> FastAPI:
    """Provide a FastAPI app with auth middleware verifying test tokens."""
    return _build_app(session_factory, post_catalog, skip_auth_middleware=False)


@pytest.fixture
def authenticated_client(authenticated_app) -> Generator[TestClient, None, None]:
    """Provide a FastAPI test client with auth middleware.

    Use auth_headers() to generate valid tokens for requests.
    """
    with TestClient(authenticated_app) as client:
        yield client
