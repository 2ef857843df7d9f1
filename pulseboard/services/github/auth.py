"""GitHub client factory."""

from logging import getLogger

from pydantic import SecretStr

from pulseboard.conf.github import GitHubSettings

from .client import GitHubAPIClient

logger = getLogger(__name__)


class GitHubClient:
    """Factory for creating GitHub API clients configured from settings."""

    def __init__(self, settings: GitHubSettings | None = None, token_override: str | None = None) -> None:
        """Initialize with settings.

        Args:
            settings: GitHub settings (defaults to global settings)
            token_override: Optional PAT token to override settings
        """
        if settings is None:
            from pulseboard.settings import settings as global_settings

            settings = global_settings

        self.settings = settings
        self.token_override = token_override

    def get_token(self) -> SecretStr | None:
        if self.token_override:
            logger.info("Using token override for authentication")
            return SecretStr(self.token_override)
        if self.settings.github_token:
            logger.info("Using PAT for authentication")
            return self.settings.github_token
        logger.warning("No GitHub token configured, using unauthenticated requests with low rate limits")
        return None

    def get_client(self) -> GitHubAPIClient:
        """Return a GitHub API client with the configured token and retry policy.

        The client must still be entered with ``async with``.
        """
        return GitHubAPIClient(
            self.get_token(),
            base_url=self.settings.github_api_url,
            timeout=self.settings.github_request_timeout,
            max_retries=self.settings.github_max_retries,
            retry_base_delay=self.settings.github_retry_base_delay,
            rate_limit_floor=self.settings.github_rate_limit_floor,
        )
