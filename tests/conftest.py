from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient

from socratic_gateway import metrics
from socratic_gateway.config.settings import clear_settings_cache
from socratic_gateway.main import create_app

TEST_SECRET = "test-secret"

BASE_ENV = {
    "SOCRATIC_AUTH_MODE": "shared_secret",
    "SOCRATIC_AUTH_SHARED_SECRET": TEST_SECRET,
    "SOCRATIC_STUB_PROVIDER_ENABLED": "true",
    "SOCRATIC_ALLOWED_ORIGINS": "",
    "SOCRATIC_STORAGE_BACKEND": "memory",
}

# Provider and search credentials from the developer's shell must not leak in.
CLEARED_ENV = (
    "SOCRATIC_ANTHROPIC_API_KEY",
    "SOCRATIC_OPENAI_API_KEY",
    "SOCRATIC_TAVILY_API_KEY",
    "SOCRATIC_AUTH_ALLOW_OPEN",
    "SOCRATIC_RATE_LIMIT_MAX_REQUESTS",
    "SOCRATIC_CONVERSATION_RATE_LIMIT_MAX_REQUESTS",
    "SOCRATIC_IDENTITY_VERIFY_URL",
    "SOCRATIC_METRICS_ENABLED",
    "SOCRATIC_POSTGRES_DSN",
)


@pytest.fixture
def make_client(monkeypatch: pytest.MonkeyPatch) -> Callable[..., TestClient]:
    def factory(**overrides: str) -> TestClient:
        for name in CLEARED_ENV:
            monkeypatch.delenv(name, raising=False)
        for name, value in {**BASE_ENV, **overrides}.items():
            monkeypatch.setenv(name, value)
        clear_settings_cache()
        metrics.reset_metrics()
        return TestClient(create_app())

    return factory


@pytest.fixture
def client(make_client: Callable[..., TestClient]) -> TestClient:
    return make_client()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {TEST_SECRET}"}

