"""Shared test fixtures."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient


@pytest.fixture(autouse=True)
def _mock_settings(monkeypatch):
    """Provide default settings for all tests."""
    monkeypatch.setenv("USERS_API_LOG_JSON", "false")
    monkeypatch.setenv("USERS_API_LOG_LEVEL", "debug")

    # Reset cached settings and store
    import users_api.config.loader as loader
    import users_api.store.users as user_store
    loader._settings = None
    user_store._store = None
    yield
    loader._settings = None
    user_store._store = None


@pytest.fixture
def client():
    """FastAPI test client with the lifespan (store, pipeline) running."""
    import users_api.main as main_module
    main_module._pipeline = None

    from users_api.main import app
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    main_module._pipeline = None


@pytest.fixture
def json_headers():
    return {"Content-Type": "application/json"}
