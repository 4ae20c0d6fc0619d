"""Pytest configuration for the tracking service tests."""

import os

# must be set before app is imported so the engine binds to an in-memory db
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest


@pytest.fixture
def client():
    import app as tracking_app

    tracking_app.app.config["TESTING"] = True
    with tracking_app.app.test_client() as client:
        yield client

    tracking_app.registry.sessions.clear()
    tracking_app.session.query(tracking_app.TrackedLocation).delete()
    tracking_app.session.commit()
