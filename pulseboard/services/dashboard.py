"""Wiring of the services behind the web API and the CLI."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from logging import getLogger

from pulseboard.conf.settings import Settings

from .aggregation import IssueMetricsService
from .github.analyzer import IssueResponseAnalyzer
from .github.auth import GitHubClient
from .github.client import GitHubAPIClient
from .github.contributors import ContributorCollector
from .github.issues import RepositoryAggregator
from .github.membership import MembershipResolver
from .github.pullrequests import PullRequestCollector

logger = getLogger(__name__)


class Dashboard:
    """One set of long-lived services sharing a GitHub client and its caches."""

    def __init__(self, client: GitHubAPIClient, config: Settings) -> None:
        self.client = client
        self.config = config
        self.membership = MembershipResolver(
            client,
            config.github_org,
            cache_failures=config.membership_cache_failures,
        )
        self.analyzer = IssueResponseAnalyzer(
            self.membership,
            sla_hours=config.sla_hours,
            triage_labels=config.triage_labels,
        )
        self.aggregator = RepositoryAggregator(
            client,
            self.analyzer,
            per_page=config.github_search_page_size,
            detail_delay=config.issue_detail_delay,
            detail_concurrency=config.issue_detail_concurrency,
        )
        self.issue_metrics = IssueMetricsService(
            self.aggregator,
            catalog=config.github_repositories,
            max_concurrency=config.repo_fetch_concurrency,
            max_repos=config.max_repos_per_query,
            max_range_days=config.max_query_range_days,
        )
        self.pull_requests = PullRequestCollector(client, max_concurrency=config.repo_fetch_concurrency)
        self.contributors = ContributorCollector(client, max_concurrency=config.repo_fetch_concurrency)

    @classmethod
    @asynccontextmanager
    async def open(cls, config: Settings, token_override: str | None = None) -> AsyncIterator["Dashboard"]:
        """Create a dashboard whose GitHub client lives as long as the context."""
        async with GitHubClient(config, token_override).get_client() as client:
            yield cls(client, config)
