import os
from datetime import datetime, timedelta, timezone

# Settings are read at import time; make sure tests never reach for Postgres or a real secret.
os.environ.setdefault("JWT_SECRET", "test_jwt_secret")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("CLEANUP_INTERVAL_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cardsync.core.base import Base
from cardsync.core.security import hash_password

# Import models so they register with SQLAlchemy metadata.
from cardsync.models.user import User  # noqa: F401
from cardsync.models.device import Device  # noqa: F401
from cardsync.models.rate_limit_entry import RateLimitEntry  # noqa: F401
from cardsync.models.refresh_token import RefreshToken  # noqa: F401
from cardsync.models.sync_blob import SyncBlob  # noqa: F401
from cardsync.models.token_blacklist import TokenBlacklistEntry  # noqa: F401

from cardsync.auth.tokens import AccessTokenService
from cardsync.core.database import get_db
from cardsync.dependencies.rate_limit import get_rate_limiter
from cardsync.services.rate_limiter import NoopRateLimitStore, RateLimiter
from cardsync.services.rate_limiter_sql import SqlRateLimitStore

TEST_SECRET = "test_jwt_secret"
TEST_PASSWORD = "correct horse battery staple"


class FrozenClock:
    """Deterministic clock; call it like utcnow(), move it with advance()."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current

    @property
    def epoch(self) -> int:
        return int(self.current.timestamp())


@pytest.fixture(scope="session")
def db_engine():
    # In-memory SQLite for fast, isolated tests.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def session_factory(db_engine):
    # Important: because we use an in-memory SQLite DB with StaticPool, the DB
    # persists across tests. Reset schema per test to avoid cross-test coupling.
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture()
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def password():
    return TEST_PASSWORD


@pytest.fixture()
def clock():
    return FrozenClock()


@pytest.fixture()
def token_service(clock):
    return AccessTokenService(TEST_SECRET, clock=clock)


@pytest.fixture()
def users(db_session):
    """
    Two distinct active users for ownership / isolation tests.
    """
    user_a = User(email="test@example.com", password_hash=hash_password(TEST_PASSWORD), is_active=True)
    user_b = User(email="other@example.com", password_hash=hash_password(TEST_PASSWORD), is_active=True)
    db_session.add_all([user_a, user_b])
    db_session.commit()
    db_session.refresh(user_a)
    db_session.refresh(user_b)
    return user_a, user_b


@pytest.fixture()
def sql_rate_limiter(session_factory):
    return RateLimiter(SqlRateLimitStore(session_factory), key_secret=TEST_SECRET)


@pytest.fixture()
def rate_limiter():
    # Default to "rate limiting disabled" unless a test installs a real limiter.
    return RateLimiter(NoopRateLimitStore(), key_secret=TEST_SECRET, enabled=False)


@pytest.fixture()
def app(db_session, rate_limiter):
    from cardsync.main import app as fastapi_app

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def login(client, users):
    """
    Log ``user`` in through the API; returns the bearer headers.
    The refresh cookie stays in the client's cookie jar.
    """

    def _login(user: User | None = None) -> dict[str, str]:
        target = user or users[0]
        res = client.post("/auth/login", json={"email": target.email, "password": TEST_PASSWORD})
        assert res.status_code == 200, res.text
        return {"Authorization": f"Bearer {res.json()['access_token']}"}

    return _login
