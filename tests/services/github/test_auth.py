from unittest.mock import patch

from pydantic import SecretStr

from pulseboard.conf.github import GitHubSettings
from pulseboard.services.github.auth import GitHubClient
from pulseboard.services.github.client import GitHubAPIClient


def test_pat_client_creation() -> None:
    """Test creating a client from a configured token and retry policy."""
    settings = GitHubSettings(
        github_token=SecretStr("test_pat_token"),
        github_api_url="https://github.example.com/api/v3/",
        github_max_retries=5,
        github_rate_limit_floor=30.0,
    )

    client = GitHubClient(settings=settings).get_client()

    assert isinstance(client, GitHubAPIClient)
    assert client.token == "test_pat_token"
    assert client.base_url == "https://github.example.com/api/v3"
    assert client.max_retries == 5
    assert client.rate_limit_floor == 30.0


def test_token_override() -> None:
    """Test using token override instead of settings."""
    settings = GitHubSettings(github_token=SecretStr("test_pat_token"))

    client = GitHubClient(settings=settings, token_override="override_token").get_client()

    assert client.token == "override_token"


def test_unauthenticated_client_warns() -> None:
    """Test that a missing token still yields a client, with a warning."""
    settings = GitHubSettings(github_token=None)

    with patch("pulseboard.services.github.auth.logger") as mock_logger:
        client = GitHubClient(settings=settings).get_client()

    assert client.token is None
    mock_logger.warning.assert_called_once()


def test_defaults_to_global_settings() -> None:
    from pulseboard.settings import settings

    assert GitHubClient().settings is settings
