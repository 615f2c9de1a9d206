"""
Test configuration: environment, in-memory database and factories.

The environment must be set before the application is imported because
``forecasting.db`` and ``forecasting.auth`` read it at import time.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["APP_ENV"] = "test"

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from forecasting import models  # noqa: E402
from forecasting.auth import create_token_pair, hash_password  # noqa: E402
from forecasting.db import Base, SessionLocal, engine, get_db  # noqa: E402
from forecasting.main import app  # noqa: E402
from forecasting.models import ForecastStatus, MarketSegment, ProjectType, Role  # noqa: E402

PASSWORD = "password123"


@pytest.fixture(autouse=True)
def schema():
    """Fresh tables for every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    """Test client whose requests share the test's session."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role=Role.CONTRIBUTOR, segments=(), email=None, is_active=True, password=PASSWORD):
        counter["n"] += 1
        user = models.User(
            email=email or f"user{counter['n']}@example.com",
            first_name="Test",
            last_name=f"User{counter['n']}",
            password_hash=hash_password(password),
            role=role,
            market_segments=[MarketSegment(s).value for s in segments],
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def headers_for():
    def _headers(user):
        return {"Authorization": f"Bearer {create_token_pair(user)['token']}"}

    return _headers


@pytest.fixture
def admin(make_user):
    return make_user(Role.ADMIN, email="admin@example.com")


@pytest.fixture
def make_period(db):
    def _make(name="FY25 Q1", is_locked=False, **overrides):
        now = datetime.now(timezone.utc)
        period = models.ForecastPeriod(
            name=name,
            start_date=overrides.pop("start_date", now - timedelta(days=10)),
            end_date=overrides.pop("end_date", now + timedelta(days=80)),
            submission_deadline=overrides.pop("submission_deadline", now + timedelta(days=20)),
            is_locked=is_locked,
            **overrides,
        )
        db.add(period)
        db.commit()
        db.refresh(period)
        return period

    return _make


@pytest.fixture
def make_forecast(db):
    def _make(user, period, segment=MarketSegment.ENERGY, status=ForecastStatus.DRAFT):
        forecast = models.Forecast(user_id=user.id, period_id=period.id, market_segment=segment, status=status)
        db.add(forecast)
        db.commit()
        db.refresh(forecast)
        return forecast

    return _make


@pytest.fixture
def make_project(db):
    def _make(forecast, name="Plant upgrade", project_type=ProjectType.SWAG, value=100000.0, probability=50):
        project = models.Project(
            forecast_id=forecast.id,
            name=name,
            type=project_type,
            estimated_value=value,
            probability=probability,
            expected_close_date=datetime.now(timezone.utc) + timedelta(days=30),
        )
        db.add(project)
        db.commit()
        db.refresh(project)
        return project

    return _make
