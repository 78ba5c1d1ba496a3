"""
Root test configuration and fixtures.

Every test gets its own in-memory SQLite database, so tests never share
rows. Shared fixtures:
- db_session / store: SQLAlchemy session and credential store
- email_sender / notifier: MockEmailSender-backed AccountNotifier
- sessions: SessionService with a fixed secret
- clock: adjustable frozen clock for token and premium expiry
- make_user / make_forum / make_group / make_call: record factories
- client: FastAPI TestClient wired through dependency_overrides
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest
import yaml
from sqlalchemy.orm import Session, sessionmaker

# Set test environment before the app reads it
os.environ.setdefault("ENV", "test")
os.environ.setdefault("SESSION_SECRET", "test-session-secret")

from src.auth.passwords import hash_password
from src.auth.session_service import SessionService
from src.config.access_policy import AccessPolicy, reset_access_policy
from src.database.session import build_engine, create_tables
from src.entitlements.policy import EntitlementEngine
from src.models.forum import Forum, ForumPost
from src.models.group import Group
from src.models.user import User
from src.models.zoom_call import ZoomCall
from src.repositories.credential_store import SQLAlchemyCredentialStore
from src.services.email_sender import MockEmailSender
from src.services.notification_service import AccountNotifier

DEFAULT_PASSWORD = "correct-horse-battery"
FROZEN_NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FROZEN_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine():
    engine = build_engine("sqlite://")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Generator[Session, None, None]:
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def store(db_session):
    return SQLAlchemyCredentialStore(db_session)


# =============================================================================
# Policy / clock / collaborators
# =============================================================================


@pytest.fixture(autouse=True)
def _reset_policy():
    """Each test starts from a freshly loaded access policy."""
    reset_access_policy()
    yield
    reset_access_policy()


@pytest.fixture
def policy():
    return AccessPolicy()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def engine(store, policy, clock):
    return EntitlementEngine(store, policy=policy, clock=clock)


@pytest.fixture
def email_sender():
    return MockEmailSender()


@pytest.fixture
def notifier(email_sender):
    return AccountNotifier(email_sender, app_url="https://circles.test")


@pytest.fixture
def sessions():
    return SessionService(secret="test-session-secret", ttl=timedelta(days=7))


# =============================================================================
# Record factories
# =============================================================================


@pytest.fixture
def make_user(store):
    counter = {"n": 0}

    def _make(**overrides) -> User:
        counter["n"] += 1
        n = counter["n"]
        fields = {
            "username": f"member{n}",
            "email": f"member{n}@example.com",
            "password_hash": hash_password(DEFAULT_PASSWORD),
            "full_name": f"Member {n}",
            "is_verified": True,
            "is_premium": False,
            "is_admin": False,
        }
        fields.update(overrides)
        return store.create(User(**fields))
    return _make


@pytest.fixture
def make_forum(store):
    def _make(title: str = "Gardening", is_premium: bool = False) -> Forum:
        return store.create(Forum(title=title, description=f"{title} talk", is_premium=is_premium))
    return _make


@pytest.fixture
def make_post(store):
    def _make(forum: Forum, author: User, title: str = "Hello") -> ForumPost:
        return store.create(ForumPost(
            forum_id=forum.id, user_id=author.id, title=title, content="First post"
        ))
    return _make


@pytest.fixture
def make_group(store):
    def _make(name: str = "Walkers", is_premium: bool = False) -> Group:
        return store.create(Group(name=name, description=f"{name} group", is_premium=is_premium))
    return _make


@pytest.fixture
def make_call(store):
    def _make(group: Group, start: datetime, hours: int = 1, title: str = "Weekly chat") -> ZoomCall:
        return store.create(ZoomCall(
            group_id=group.id,
            title=title,
            start_time=start,
            end_time=start + timedelta(hours=hours),
            zoom_link="https://zoom.example/j/123",
        ))
    return _make


# =============================================================================
# Application
# =============================================================================


@pytest.fixture
def app(db_session, notifier, sessions):
    from main import app as fastapi_app
    from src.api.dependencies.services import get_billing_client, get_notifier
    from src.auth.dependencies import get_sessions
    from src.database.session import get_db_session

    async def _no_billing():
        yield None

    fastapi_app.dependency_overrides[get_db_session] = lambda: db_session
    fastapi_app.dependency_overrides[get_notifier] = lambda: notifier
    fastapi_app.dependency_overrides[get_sessions] = lambda: sessions
    fastapi_app.dependency_overrides[get_billing_client] = _no_billing
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app)


@pytest.fixture
def auth_headers(sessions):
    """Bearer headers for a session issued directly to `user`."""
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {sessions.issue(user.id)}"}
    return _headers


# =============================================================================
# Config files
# =============================================================================


@pytest.fixture
def make_yaml_config(tmp_path):
    """
    Factory fixture that writes a YAML config file and returns its path.

    Usage:
        config_path = make_yaml_config("access_policy.yml", {"tokens": {...}})
    """
    def _make(filename: str, config: dict):
        config_path = tmp_path / filename
        with open(config_path, "w") as f:
            yaml.dump(config, f)
        return config_path
    return _make


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "security: mark test as security-focused")
