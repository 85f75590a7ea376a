"""Pytest fixtures for gateproxy tests."""

import pytest
from fastapi.testclient import TestClient

from gateproxy.config import ProxyConfig

CONFIG_ENV_VARS = [
    "PROXY_ALLOWED_HOSTS",
    "ALLOWED_HOSTS",
    "PROXY_API_KEY",
    "API_KEY",
    "PROXY_TIMEOUT_MS",
    "PROXY_MAX_JSON_BYTES",
    "PROXY_FOLLOW_REDIRECTS",
    "PROXY_REVALIDATE_REDIRECTS",
    "PROXY_HOST",
    "PROXY_PORT",
    "PROXY_CORS_ALLOW_ORIGINS",
    "PROXY_LOGGING_MODE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate every test from the host environment and any .env file."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def make_config():
    """Build a configuration snapshot from keyword overrides."""

    def _make(**overrides) -> ProxyConfig:
        values = {"allowed_hosts": "api.example.com", "api_key": "test-key-123"}
        values.update(overrides)
        return ProxyConfig(**values)

    return _make


@pytest.fixture
def mock_config(make_config):
    """Provide the default test configuration."""
    return make_config()


@pytest.fixture
def make_client():
    """Create a test client whose proxy route uses the given configuration."""
    from gateproxy.main import create_app, get_config

    def _make(config: ProxyConfig) -> TestClient:
        app = create_app(config)
        app.dependency_overrides[get_config] = lambda: config
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client, mock_config):
    """Create a test client for the FastAPI app."""
    return make_client(mock_config)


@pytest.fixture
def auth_headers():
    return {"X-API-KEY": "test-key-123"}
