"""Shared test fixtures and configuration for the AirSync test suite."""

import itertools
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.models.db_models import Base, Sensor, Site
from pipeline.config import SyncConfig

_created_at = itertools.count()


@pytest.fixture()
def db_engine():
    """In-memory SQLite engine with the ORM schema, fresh per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def make_site(session_factory):
    """Create a Site (and optional sensors). Sites get increasing created_at."""

    def _make(external_id=1001, name=None, latitude=34.05, longitude=-118.25, sensors=()):
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        site = Site(
            external_id=external_id,
            name=name or f"Site {external_id}",
            latitude=latitude,
            longitude=longitude,
            created_at=base + timedelta(seconds=next(_created_at)),
        )
        with session_factory() as db:
            db.add(site)
            db.flush()
            for position, (ext_id, parameter) in enumerate(sensors):
                db.add(Sensor(
                    site_id=site.id,
                    external_sensor_id=str(ext_id),
                    parameter_id=position + 1,
                    parameter_name=parameter,
                    parameter_units="µg/m³",
                    parameter_display_name=parameter.upper(),
                    position=position,
                ))
            db.commit()
        return site

    return _make


@pytest.fixture()
def sync_config():
    return SyncConfig(
        database_url="sqlite://",
        api_key="test-key-1234567890",
        base_url="https://api.test/v3",
        job_id="TEST_SYNC",
        max_sites_per_run=50,
        batch_size=3,
        site_delay=0.0,
        batch_delay=0.0,
        max_attempts=3,
        base_delay=0.0,
        match_sites=False,
    )


def json_response(payload, status_code=200, url="https://api.test/v3/x"):
    """Real httpx.Response so raise_for_status() behaves as in production."""
    return httpx.Response(status_code, json=payload, request=httpx.Request("GET", url))


def latest_payload(*pairs):
    """{"results": [...]} for /locations/{id}/latest from (sensor_id, value) pairs."""
    return {
        "results": [
            {
                "sensorsId": sensor_id,
                "locationsId": 1,
                "value": value,
                "datetime": {"utc": "2024-01-15T10:00:00Z", "local": "2024-01-15T02:00:00-08:00"},
            }
            for sensor_id, value in pairs
        ]
    }
