"""Tests for health check endpoints."""
import pytest
from flask import Flask

from scim_provider.api.health import bp as health_bp


@pytest.fixture()
def bare_client():
    app = Flask(__name__)
    app.register_blueprint(health_bp)
    with app.test_client() as client:
        yield client


def test_health_check(bare_client):
    """Test basic health check endpoint."""
    response = bare_client.get("/health")
    assert response.status_code == 200
    assert response.data == b"ok"
    assert response.content_type.startswith("text/plain")


def test_readiness_without_provider(bare_client):
    """Not ready until create_app() attaches a provider."""
    response = bare_client.get("/ready")
    assert response.status_code == 503
    assert response.data == b"not ready"


def test_readiness_check(client):
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.data == b"ready"
    assert response.content_type.startswith("text/plain")
