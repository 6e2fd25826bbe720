import pytest

from app import create_app
from app.config import TestConfig
from app.extensions import db
from app.services import enhancement_jobs
from app.services.enhancement import _read_presets


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.drop_all()
        db.create_all()
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def _reset_job_runtime():
    # Job ids restart with every in-memory database.
    yield
    with enhancement_jobs._RUNTIME_LOCK:
        enhancement_jobs._RUNTIME_STATE.clear()
        enhancement_jobs._STOP_REQUESTED.clear()
        enhancement_jobs._FINISHED_JOBS.clear()
    _read_presets.cache_clear()
