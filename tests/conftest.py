"""Pytest configuration and fixtures."""

import pytest

from procurement_tracker import create_app
from procurement_tracker.domain import Actor
from procurement_tracker.extensions import db
from procurement_tracker.fallback import fallback_users
from procurement_tracker.seed import DEMO_PASSWORD, seed_demo_data

TEST_CONFIG = "config.TestingConfig"


@pytest.fixture(scope="function")
def app(tmp_path):
    """Application on an in-memory SQLite database seeded with the demo data."""
    app = create_app(TEST_CONFIG)
    app.extensions["procurement"].storage.root = tmp_path / "uploads"

    with app.app_context():
        db.create_all()
        seed_demo_data()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope="function")
def bare_app():
    """Application whose database has no tables at all."""
    app = create_app(TEST_CONFIG)
    yield app
    with app.app_context():
        db.session.remove()


@pytest.fixture
def service(app):
    return app.extensions["procurement"]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def actors():
    """Demo users keyed by id (admin1, buyer1, buyer2, client1)."""
    return {actor.id: actor for actor in fallback_users()}


@pytest.fixture
def outsider():
    return Actor(id="client2", name="Other Client", email="other@example.com", role="client")


@pytest.fixture
def login(client):
    """Log the test client in as a demo user by email."""

    def _login(email: str, password: str = DEMO_PASSWORD):
        response = client.post("/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.get_json()
        return response

    return _login
