"""
Shared pytest fixtures for Commute Traffic Tracker tests

Provides fixtures for:
- Database setup/teardown with in-memory SQLite
- FastAPI test client
- Mock data generators
- A fake directions API client
- Environment variable mocking
"""

import json
from datetime import datetime, timedelta
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from api.main import app, get_maps_client
from src.database import get_db
from src.local_time import stamp_local
from src.maps_client import DirectionsResult, MapsApiError
from src.models import Base, Measurement, Prediction

TEST_TIMEZONE = "America/New_York"
TEST_ORIGIN = "100 Home St, Brooklyn, NY"
TEST_ROUTES = [
    {
        "id": "work",
        "label": "Office",
        "destination": "1 Office Park, Westport, CT",
        "destination_label": "Westport",
    },
    {
        "id": "gym",
        "label": "Gym",
        "destination": "5 Gym Ave, Brooklyn, NY",
        "active": False,
    },
]

# Tuesday 2024-03-12 09:00 EDT
BASE_TIME = datetime(2024, 3, 12, 13, 0, 0)


class FakeMapsClient:
    """Stands in for MapsClient; records calls and returns canned durations"""

    def __init__(self, duration_in_traffic_seconds=1800, fail_destinations=(), fail_calls=()):
        self.duration_in_traffic_seconds = duration_in_traffic_seconds
        self.fail_destinations = set(fail_destinations)
        self.fail_calls = set(fail_calls)  # 0-based call numbers that fail
        self.calls = []

    def fetch_directions(self, origin, destination, departure_time="now", traffic_model=None):
        call_number = len(self.calls)
        self.calls.append((origin, destination, departure_time, traffic_model))
        if destination in self.fail_destinations or call_number in self.fail_calls:
            raise MapsApiError("API returned status: UNKNOWN_ERROR", "UNKNOWN_ERROR", True)
        return DirectionsResult(
            duration_seconds=self.duration_in_traffic_seconds - 120,
            duration_in_traffic_seconds=self.duration_in_traffic_seconds,
            distance_meters=82000,
            route_summary="I-95 N",
        )


@pytest.fixture(scope="session")
def test_engine():
    """
    Create an in-memory SQLite engine for testing

    Session-scoped so it's created once for all tests. StaticPool keeps a single
    connection so the API (running in another thread) sees the same database.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """
    Create a new database session for a test with transaction rollback

    Function-scoped so each test gets a clean database state
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(bind=connection)
    session = SessionLocal()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def fake_maps_client() -> FakeMapsClient:
    return FakeMapsClient()


@pytest.fixture
def make_maps_client():
    """Factory for FakeMapsClient with custom durations or failures"""
    return FakeMapsClient


@pytest.fixture(scope="function")
def client(db_session, fake_maps_client):
    """
    FastAPI TestClient with database and directions client overrides

    All API requests will use the test database session
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_maps_client] = lambda: fake_maps_client
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_measurement(db_session):
    """Factory that inserts a Measurement stamped with local-time bucket keys"""

    def _make(
        measured_at: datetime,
        minutes: float,
        direction: str = "outbound",
        route_id: str = "work",
        route_summary: str = "I-95 N",
    ) -> Measurement:
        stamp = stamp_local(measured_at, TEST_TIMEZONE)
        seconds = int(round(minutes * 60))
        measurement = Measurement(
            route_id=route_id,
            direction=direction,
            measured_at=measured_at,
            measured_at_local=stamp.local_timestamp,
            duration_seconds=seconds,
            duration_in_traffic_seconds=seconds,
            distance_meters=82000,
            route_summary=route_summary,
            day_of_week=stamp.day_of_week,
            hour_local=stamp.hour_local,
            is_holiday=stamp.is_holiday,
        )
        db_session.add(measurement)
        db_session.commit()
        db_session.refresh(measurement)
        return measurement

    return _make


@pytest.fixture
def make_prediction(db_session):
    """Factory that inserts a Prediction stamped from predicted_for"""

    def _make(
        predicted_for: datetime,
        minutes: float,
        direction: str = "outbound",
        route_id: str = "work",
        traffic_model: str = "best_guess",
        predicted_at: datetime = None,
    ) -> Prediction:
        predicted_at = predicted_at or predicted_for - timedelta(days=1)
        stamp = stamp_local(predicted_for, TEST_TIMEZONE)
        prediction = Prediction(
            route_id=route_id,
            direction=direction,
            predicted_at=predicted_at,
            predicted_at_local=stamp_local(predicted_at, TEST_TIMEZONE).local_timestamp,
            predicted_for=predicted_for,
            predicted_for_local=stamp.local_timestamp,
            predicted_duration_seconds=int(round(minutes * 60)),
            traffic_model=traffic_model,
            day_of_week=stamp.day_of_week,
            hour_local=stamp.hour_local,
            is_holiday=stamp.is_holiday,
        )
        db_session.add(prediction)
        db_session.commit()
        db_session.refresh(prediction)
        return prediction

    return _make


@pytest.fixture
def sample_measurements(make_measurement) -> list[Measurement]:
    """
    Seven outbound trips of 60..120 minutes (one hour apart from 09:00 local)
    and five inbound trips of 10..50 minutes
    """
    measurements = []
    for i, minutes in enumerate([60, 70, 80, 90, 100, 110, 120]):
        measurements.append(
            make_measurement(BASE_TIME + timedelta(hours=i), minutes, direction="outbound")
        )
    for i, minutes in enumerate([10, 20, 30, 40, 50]):
        measurements.append(
            make_measurement(BASE_TIME + timedelta(hours=i), minutes, direction="inbound")
        )
    return measurements


@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch):
    """
    Mock environment variables for tests

    autouse=True means this runs for every test automatically
    """
    # Use in-memory SQLite for tests (overridden by db_session fixture)
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
    # Mock API key to prevent accidental real API calls
    monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "test_api_key_do_not_use")
    monkeypatch.setenv("ORIGIN", TEST_ORIGIN)
    monkeypatch.setenv("TIMEZONE", TEST_TIMEZONE)
    monkeypatch.setenv("ROUTES", json.dumps(TEST_ROUTES))
    monkeypatch.delenv("ROUTES_FILE", raising=False)
    monkeypatch.delenv("START_HOUR", raising=False)
    monkeypatch.delenv("END_HOUR", raising=False)
