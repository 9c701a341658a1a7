import pytest
from fastapi.testclient import TestClient

from agegate import PolicyConfig
from app.config import Settings
from app.main import create_app

from support import trust_store_for


@pytest.fixture
def policy():
    return PolicyConfig(minimum_age=18)


@pytest.fixture
def make_client(policy):
    """Factory for a test client over a freshly built service."""
    apps = []

    def _make(trust_store=None, **overrides):
        overrides.setdefault("policy", policy)
        settings = Settings(log_json=False, **overrides)
        app = create_app(settings, trust_store=trust_store or trust_store_for())
        apps.append(app)
        return TestClient(app)

    yield _make

    for app in apps:
        app.state.verifier.shutdown()


@pytest.fixture
def client(make_client):
    return make_client()
