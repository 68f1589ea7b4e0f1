"""Pytest shared fixtures."""
import os
import pathlib
import sys

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Configure test environment BEFORE any app imports: importing flask_app
# builds the module-level app from the environment.
for _var in ("SCIM_STATIC_TOKEN", "SCIM_MAX_PAYLOAD_BYTES", "SCIM_LIST_MAX_RESULTS"):
    os.environ.pop(_var, None)
os.environ.setdefault("DEMO_MODE", "true")

import pytest

from scim_provider.config import AppConfig
from scim_provider.core.in_memory_store import InMemoryProviderStore
from scim_provider.core.provider import Provider
from scim_provider.flask_app import create_app

BASE_URL = "http://scim.test/scim/v2"
STATIC_TOKEN = "test-static-token-12345"
PATCHOP = "urn:ietf:params:scim:api:messages:2.0:PatchOp"


# ─────────────────────────────────────────────────────────────────────────────
# Core fixtures
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture
def store():
    return InMemoryProviderStore()


@pytest.fixture
def provider(store):
    return Provider(store, base_url=BASE_URL)


# ─────────────────────────────────────────────────────────────────────────────
# Flask fixtures
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture
def app_config():
    return AppConfig(demo_mode=True, scim_base_url=BASE_URL)


@pytest.fixture
def app(store, app_config):
    flask_app = create_app(store=store, cfg=app_config)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture
def auth_app(store):
    cfg = AppConfig(demo_mode=False, scim_base_url=BASE_URL, scim_static_token=STATIC_TOKEN)
    flask_app = create_app(store=store, cfg=cfg)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def auth_client(auth_app):
    with auth_app.test_client() as test_client:
        yield test_client


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────
class ScimClient:
    """Thin wrapper that sends SCIM JSON and returns (status, body)."""

    def __init__(self, client, headers=None):
        self.client = client
        self.headers = headers or {}

    def _send(self, method, path, body=None, **kwargs):
        response = self.client.open(
            f"/scim/v2{path}",
            method=method,
            json=body,
            content_type="application/scim+json" if body is not None else None,
            headers=self.headers,
            **kwargs,
        )
        return response

    def get(self, path, **kwargs):
        return self._send("GET", path, **kwargs)

    def post(self, path, body):
        return self._send("POST", path, body)

    def put(self, path, body):
        return self._send("PUT", path, body)

    def patch(self, path, *operations):
        return self._send("PATCH", path, {"schemas": [PATCHOP], "Operations": list(operations)})

    def delete(self, path):
        return self._send("DELETE", path)

    def create_user(self, user_name, **fields):
        response = self.post("/Users", {"userName": user_name, **fields})
        assert response.status_code == 201, response.get_json()
        return response.get_json()

    def create_group(self, display_name, members=None, **fields):
        body = {"displayName": display_name, **fields}
        if members is not None:
            body["members"] = [{"value": m} for m in members]
        response = self.post("/Groups", body)
        assert response.status_code == 201, response.get_json()
        return response.get_json()


@pytest.fixture
def scim(client):
    return ScimClient(client)
