"""
Shared fixtures for auth service tests.
"""

import pytest
from fastapi.testclient import TestClient

from service_auth.app.main import AuthService
from shared.config import get_config


@pytest.fixture
def auth_config():
    """Factory for auth configs with fast hashing and no Redis."""

    def _make(**overrides):
        settings = {
            "env": "test",
            "jwt_secret": "auth-test-secret",
            "jwt_refresh_secret": "auth-test-refresh-secret",
            "rate_limit_enabled": False,
            "bcrypt_rounds": 4,
            "bootstrap_admins": "root",
        }
        settings.update(overrides)
        return get_config("auth", 3001, **settings)

    return _make


@pytest.fixture
def auth_service(auth_config):
    return AuthService(auth_config())


@pytest.fixture
def client(auth_service):
    with TestClient(auth_service.app) as test_client:
        yield test_client


@pytest.fixture
def registration():
    """Factory for valid registration payloads."""

    def _make(name: str = "alice", **overrides):
        payload = {
            "username": name,
            "email": f"{name}@example.com",
            "password": "Secret123",
            "first_name": "Alice",
            "last_name": "Smith",
            "department": "it",
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def register(client, registration):
    """Register a user through the API and return the response body."""

    def _register(name: str = "alice", headers=None, **overrides):
        response = client.post("/api/auth/register", json=registration(name, **overrides), headers=headers)
        assert response.status_code == 201, response.text
        return response.json()

    return _register


@pytest.fixture
def auth_headers():
    def _headers(body):
        return {"Authorization": f"Bearer {body['access_token']}"}

    return _headers
