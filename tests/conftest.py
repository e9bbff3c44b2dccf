import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("SQL_ECHO", "false")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("EMAIL_BACKEND", "disabled")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("FRONTEND_URL", "https://app.example.com")

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

project_root = Path(__file__).resolve().parents[1]
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import authcore.models  # noqa: F401
from authcore.core.rate_limit import limiter

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

limiter.enabled = False


class FrozenClock:
    def __init__(self, start: datetime):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class RecordingMailer:
    """Collects notifications instead of delivering them"""

    def __init__(self):
        self.sent = []
        self.fail_with = None

    def send(self, notification):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(notification)

    def by_template(self, template):
        return [n for n in self.sent if n.template == template]

    def last_token(self, template):
        key = "verification_url" if template == "verification" else "reset_url"
        return self.by_template(template)[-1].context[key].split("token=", 1)[1]


@pytest.fixture()
def engine():
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture()
def db_session(engine):
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture()
def clock():
    return FrozenClock(datetime(2026, 3, 2, 9, 30, 0, tzinfo=timezone.utc))


@pytest.fixture()
def mailer():
    return RecordingMailer()


@pytest.fixture()
def test_settings():
    from authcore.core.config import get_settings

    return get_settings()


@pytest.fixture()
def service(db_session, test_settings, mailer, clock):
    from authcore.services.credentials import CredentialService

    return CredentialService(db_session, settings=test_settings, mailer=mailer, clock=clock)


@pytest.fixture()
def client(engine, db_session, mailer, clock):
    from authcore.main import app
    from authcore.core.database import get_session
    from authcore.routers.auth import get_clock, get_mailer

    def get_session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
