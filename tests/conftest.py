"""Shared fixtures: a file-backed SQLite store per test and polygon builders."""

import os

# keep the module-level engine away from the repository data directory
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest

from fieldshare.config import Settings
from fieldshare.db import init_db, make_engine, make_session_factory
from fieldshare.services.fields.service import FieldService
from fieldshare.services.geometry.polygons import METRES_PER_DEGREE_LON_EQUATOR


def _square(lon, lat, size=0.001):
    return {
        "type": "Polygon",
        "coordinates": [[
            [lon, lat],
            [lon + size, lat],
            [lon + size, lat + size],
            [lon, lat + size],
            [lon, lat],
        ]],
    }


def _gap_deg(metres):
    """Longitude degrees spanning `metres` on the equator."""
    return metres / METRES_PER_DEGREE_LON_EQUATOR


@pytest.fixture
def square():
    return _square


@pytest.fixture
def gap_deg():
    return _gap_deg


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'fieldshare_test.db'}")
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def service(db, session_factory, settings):
    return FieldService(db, settings=settings, session_factory=session_factory)


@pytest.fixture
def make_field(service):
    """Create a field through the service with sensible defaults."""

    def _make(user_id, geometry, **attrs):
        payload = {"name": attrs.pop("name", "Field"), "geometry": geometry,
                   "crop": attrs.pop("crop", "corn"), "season": attrs.pop("season", "2024")}
        payload.update(attrs)
        return service.create_field(user_id, payload)

    return _make
