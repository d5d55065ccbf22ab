"""Shared fixtures for the routekit test suite."""

import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from routekit import RouteApp, Settings  # noqa: E402
from routekit.testclient import TestClient  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    return Settings(environment="test")


@pytest.fixture
def app(settings: Settings) -> RouteApp:
    return RouteApp(title="Test API", version="1.0.0", settings=settings)


@pytest.fixture
def client(app: RouteApp):
    test_client = TestClient(app)
    yield test_client
    test_client.close()
