from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings

DEFAULT_REPOSITORIES = [
    "antvis/g",
    "antvis/g2",
    "antvis/s2",
    "antvis/f2",
    "antvis/g6",
    "antvis/x6",
    "antvis/l7",
    "antvis/AVA",
    "ant-design/ant-design-charts",
]


class GitHubSettings(BaseSettings):
    """GitHub API configuration and issue analysis settings."""

    # Personal Access Token authentication
    github_token: SecretStr | None = Field(
        default=None,
        description="GitHub Personal Access Token for API authentication",
    )
    github_api_url: str = Field(
        default="https://api.github.com",
        description="Base URL for the GitHub REST API",
    )
    github_request_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for a single GitHub API request",
    )

    # Organization whose members count as maintainers
    github_org: str = Field(
        default="antvis",
        description="GitHub organization whose members are treated as maintainers",
    )
    github_repositories: list[str] = Field(
        default_factory=lambda: list(DEFAULT_REPOSITORIES),
        description="Known repository catalog (owner/name) shown on the dashboard",
    )

    # Retry policy
    github_max_retries: int = Field(
        default=3,
        description="Maximum number of retries for a failed GitHub API call",
    )
    github_retry_base_delay: float = Field(
        default=2.0,
        description="Base delay in seconds for exponential backoff between retries",
    )
    github_rate_limit_floor: float = Field(
        default=10.0,
        description="Minimum wait in seconds when the GitHub rate limit is exhausted",
    )

    # Issue analysis
    github_search_page_size: int = Field(
        default=100,
        description="Page size for GitHub search requests (max 100)",
    )
    issue_detail_delay: float = Field(
        default=0.1,
        description="Pause in seconds after each per-issue comments/timeline fetch",
    )
    issue_detail_concurrency: int = Field(
        default=1,
        description="Maximum number of issues whose details are fetched concurrently",
    )
    repo_fetch_concurrency: int = Field(
        default=5,
        description="Maximum number of repositories fetched concurrently",
    )
    sla_hours: float = Field(
        default=48.0,
        description="Response time target in hours",
    )
    triage_labels: list[str] = Field(
        default_factory=lambda: ["OSCP"],
        description="Labels that count as a response no matter who applied them",
    )
    membership_cache_failures: bool = Field(
        default=False,
        description="Cache a negative membership result when the membership check itself failed",
    )
    membership_preload: bool = Field(
        default=False,
        description="Load the full organization member list when the web server starts",
    )

    # Query limits
    max_repos_per_query: int = Field(
        default=10,
        description="Maximum number of repositories in a single metrics query",
    )
    max_query_range_days: int = Field(
        default=365,
        description="Maximum length in days of a metrics query date range",
    )

    @field_validator("github_search_page_size")
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        """Validate search page size is accepted by GitHub."""
        if not 1 <= v <= 100:
            raise ValueError("github_search_page_size must be between 1 and 100")
        return v

    @field_validator("issue_detail_concurrency", "repo_fetch_concurrency", "max_repos_per_query")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate concurrency and count limits are positive."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("github_max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        """Validate retry count is not negative."""
        if v < 0:
            raise ValueError("github_max_retries must not be negative")
        return v

    # Disable validation by default - only validate when actually using GitHub features
    github_validate_on_init: bool = Field(
        default=False,
        description="Whether to validate GitHub auth config on initialization",
    )

    @model_validator(mode="after")
    def validate_auth_config(self) -> "GitHubSettings":
        """Validate that a token is configured when validation is enabled."""
        # Skip validation unless explicitly enabled
        if not self.github_validate_on_init:
            return self

        if self.github_token is None:
            raise ValueError("github_token is required when github_validate_on_init is set")
        return self
