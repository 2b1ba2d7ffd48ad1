"""Pytest configuration and fixtures."""

import pytest

from app import create_app
from config import Config
from models import db
from preferences import MemoryStorage
from records import RecordStore


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    COUNT_VIEWS = True
    COUNT_LIKES = True
    COMMENT_APPROVAL = "route"
    LOG_LEVEL = "WARNING"


@pytest.fixture
def make_app():
    """Build an app on a fresh in-memory database, with config overrides."""
    created = []

    def _make(**overrides):
        config = type("OverrideConfig", (TestConfig,), overrides)
        application = create_app(config)
        created.append(application)
        return application

    yield _make

    for application in created:
        with application.app_context():
            db.session.remove()
            db.drop_all()


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def record_store(app):
    """RecordStore inside an application context."""
    with app.app_context():
        yield RecordStore()


@pytest.fixture
def storage():
    return MemoryStorage()
