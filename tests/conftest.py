"""
Shared pytest fixtures.

Uses a SQLite file database so no Postgres is required for tests. Tables
are created once per session and emptied before every test: the learning
job works across all users, so tests cannot share ledger rows.
"""
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import app.models  # noqa: F401
from app.db.base import Base, get_db
from app.main import app
from app.routers.decisions import get_now
from app.routers.learning import get_learning_job
from app.services.consent import SqlConsentStore
from app.services.learning_job import NightlyLearningJob

SQLITE_URL = "sqlite:///./test_sage.db"

engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Fixed "now" for everything time-windowed (job runs, metrics, expiry).
NOW = datetime(2031, 3, 12, 9, 0, tzinfo=timezone.utc)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


def make_job(clock=None, **kwargs) -> NightlyLearningJob:
    return NightlyLearningJob(
        session_factory=TestingSessionLocal,
        clock=clock or (lambda: NOW),
        **kwargs,
    )


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables(create_tables):
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture()
def db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(db):
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_learning_job] = lambda: make_job()
    app.dependency_overrides[get_now] = lambda: NOW
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def now():
    return NOW


@pytest.fixture()
def job_factory():
    return make_job


@pytest.fixture()
def consent(db):
    """consent.grant(user) / consent.withdraw(user, purpose), committed."""
    store = SqlConsentStore(db)

    class _Consent:
        @staticmethod
        def grant(user_id: str, *purposes: str) -> None:
            for purpose in purposes or ("ai_profiling", "policy_learning"):
                store.grant(user_id, purpose)
            db.commit()

        @staticmethod
        def withdraw(user_id: str, purpose: str = "policy_learning") -> None:
            store.withdraw(user_id, purpose)
            db.commit()

    return _Consent()
