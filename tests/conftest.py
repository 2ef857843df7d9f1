import os

# Enable caching for tests
if "CACHE_ENABLED" not in os.environ:
    os.environ["CACHE_ENABLED"] = "true"

import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from pulseboard.services.github.client import GitHubAPIClient
from pulseboard.www import app


@pytest.fixture
def fastapi_client():
    """Fixture to create a FastAPI test client."""
    client = TestClient(app)
    yield client


@pytest.fixture
def mock_client() -> GitHubAPIClient:
    """Create a test GitHub API client for mocking."""
    return GitHubAPIClient(token=SecretStr("test_token"))
