"""Service for collecting pull request statistics across repositories."""

import asyncio
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from logging import getLogger
from typing import Any

import httpx

from pulseboard.services.cache import get_cached, set_cached
from pulseboard.services.metrics import percentage
from pulseboard.settings import settings

from .client import GitHubAPIClient
from .models import PullRequestInfo, format_timestamp, parse_timestamp, repository_from_item

logger = getLogger(__name__)

PR_TYPES = ("feat", "fix", "docs", "style", "refactor", "test", "chore", "other")

# Checked in order; the first matching keyword decides the type
PR_TYPE_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("feat", ("feat", "feature")),
    ("fix", ("fix", "bug")),
    ("docs", ("docs", "doc")),
    ("style", ("style", "format")),
    ("refactor", ("refactor", "refact")),
    ("test", ("test",)),
    ("chore", ("chore", "build", "ci")),
]

# Reports always look back at least this far so the "total" view has context
MIN_LOOKBACK_DAYS = 60


def classify_pr_type(title: str) -> str:
    """Classify a pull request by keywords in its title.

    Examples:
        >>> classify_pr_type("feat(g2): add funnel chart")
        'feat'
        >>> classify_pr_type("Bump version")
        'other'
    """
    lowered = title.lower()
    for pr_type, keywords in PR_TYPE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return pr_type
    return "other"


def parse_pull_request(item: dict[str, Any]) -> PullRequestInfo:
    """Convert a search API item into a PullRequestInfo.

    Raises:
        KeyError, ValueError: If the item is missing required fields
    """
    created_at = parse_timestamp(item["created_at"])
    if created_at is None:
        raise ValueError(f"Pull request {item.get('number')} has no creation time")
    pr_data = item.get("pull_request") or {}
    user = item.get("user") or {}
    return PullRequestInfo(
        number=item["number"],
        title=item["title"],
        repository=repository_from_item(item),
        url=item["html_url"],
        state=item["state"],
        created_at=created_at,
        merged_at=parse_timestamp(pr_data.get("merged_at")),
        closed_at=parse_timestamp(item.get("closed_at")),
        author=user.get("login"),
        pr_type=classify_pr_type(item["title"]),
        author_association=item.get("author_association"),
    )


@dataclass
class PullRequestStats:
    """Summary statistics for a set of pull requests."""

    total: int = 0
    merged: int = 0
    open: int = 0
    closed: int = 0
    merge_rate: int = 0
    type_distribution: dict[str, int] = field(default_factory=dict)
    repo_distribution: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "merged": self.merged,
            "open": self.open,
            "closed": self.closed,
            "mergeRate": self.merge_rate,
            "typeDistribution": dict(self.type_distribution),
            "repoDistribution": dict(self.repo_distribution),
        }


def compute_pr_stats(pull_requests: Sequence[PullRequestInfo]) -> PullRequestStats:
    """Count pull requests by state, type and repository.

    ``closed`` only counts pull requests closed without merging. The merge
    rate is 0 when there are no pull requests.
    """
    total = len(pull_requests)
    merged = sum(1 for pr in pull_requests if pr.get_display_state() == "merged")
    repo_distribution: dict[str, int] = {}
    for pr in pull_requests:
        name = pr.repository.split("/")[-1]
        repo_distribution[name] = repo_distribution.get(name, 0) + 1
    return PullRequestStats(
        total=total,
        merged=merged,
        open=sum(1 for pr in pull_requests if pr.state == "open"),
        closed=sum(1 for pr in pull_requests if pr.get_display_state() == "closed"),
        merge_rate=percentage(merged, total, empty=0),
        type_distribution={t: sum(1 for pr in pull_requests if pr.pr_type == t) for t in PR_TYPES},
        repo_distribution=repo_distribution,
    )


def group_by_type(pull_requests: Iterable[PullRequestInfo]) -> dict[str, list[PullRequestInfo]]:
    """Group pull requests by type, newest first within each group."""
    groups: dict[str, list[PullRequestInfo]] = {t: [] for t in PR_TYPES}
    for pr in pull_requests:
        groups.setdefault(pr.pr_type, []).append(pr)
    for prs in groups.values():
        prs.sort(key=lambda pr: pr.created_at, reverse=True)
    return groups


@dataclass
class PullRequestReport:
    """Pull request statistics for the requested window and a wider fetch window."""

    all_prs: list[PullRequestInfo]
    filtered_prs: list[PullRequestInfo]
    start: datetime
    end: datetime
    fetch_start: datetime
    fetch_end: datetime

    @property
    def total(self) -> PullRequestStats:
        return compute_pr_stats(self.all_prs)

    @property
    def filtered(self) -> PullRequestStats:
        return compute_pr_stats(self.filtered_prs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": {"total": self.total.to_dict(), "filtered": self.filtered.to_dict()},
            "details": {
                "total": {t: [pr.to_dict() for pr in prs] for t, prs in group_by_type(self.all_prs).items()},
                "filtered": {t: [pr.to_dict() for pr in prs] for t, prs in group_by_type(self.filtered_prs).items()},
            },
            "timeRange": {
                "startDate": format_timestamp(self.start),
                "endDate": format_timestamp(self.end),
                "fetchStartDate": format_timestamp(self.fetch_start),
                "fetchEndDate": format_timestamp(self.fetch_end),
            },
        }


def _day_start(value: date) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


class PullRequestCollector:
    """Service for collecting pull requests of a set of repositories from GitHub."""

    def __init__(self, github_client: GitHubAPIClient, max_concurrency: int = 5) -> None:
        """Initialize the pull request collector.

        Args:
            github_client: GitHub API client (already entered)
            max_concurrency: Maximum number of repositories searched at once
        """
        self.github_client = github_client
        self.max_concurrency = max(max_concurrency, 1)

    async def collect_repo_prs(self, repository: str, since: date, until: date) -> list[PullRequestInfo]:
        """Collect pull requests created in a repository between two dates (inclusive).

        Results are cached for ``cache_pr_ttl`` seconds.

        Raises:
            httpx.HTTPStatusError: If the GitHub search fails after retries
        """
        since_str = since.strftime("%Y-%m-%d")
        until_str = until.strftime("%Y-%m-%d")
        cache_key = f"prs:{repository}:{since_str}:{until_str}"

        cached = await get_cached(cache_key)
        if isinstance(cached, list):
            logger.debug(f"Cache hit for pull requests: {repository} {since_str}..{until_str}")
            return list(cached)

        query = f"repo:{repository} is:pr created:{since_str}..{until_str}"
        logger.debug(f"GitHub search query: {query}")

        search_start_time = time.time()
        items = await self.github_client.search_all_issues(query=query, sort="created", order="desc")
        logger.info(f"GitHub search for {repository} completed in {time.time() - search_start_time:.2f}s")

        pull_requests: list[PullRequestInfo] = []
        for item in items:
            if not item.get("pull_request"):
                continue
            try:
                pull_requests.append(parse_pull_request(item))
            except (KeyError, ValueError, IndexError) as e:
                logger.warning(f"Failed to parse PR data: {e}", exc_info=True)

        await set_cached(cache_key, pull_requests, ttl=settings.cache_pr_ttl)
        return pull_requests

    async def collect_prs(self, repositories: Sequence[str], since: date, until: date) -> list[PullRequestInfo]:
        """Collect pull requests for several repositories concurrently.

        A repository that fails is logged and contributes no pull requests.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def collect(repository: str) -> list[PullRequestInfo]:
            async with semaphore:
                try:
                    return await self.collect_repo_prs(repository, since, until)
                except httpx.HTTPError as e:
                    logger.error(f"Failed to collect pull requests for {repository}: {e}")
                    return []

        results = await asyncio.gather(*[collect(repo) for repo in repositories])
        pull_requests = [pr for prs in results for pr in prs]
        logger.info(f"Collected {len(pull_requests)} pull requests from {len(repositories)} repositories")
        return pull_requests

    async def build_report(
        self,
        repositories: Sequence[str],
        start_date: date,
        end_date: date,
        now: datetime | None = None,
    ) -> PullRequestReport:
        """Collect pull requests and summarize them for the requested window.

        The fetch window reaches back at least ``MIN_LOOKBACK_DAYS`` from now
        and ends now, so the "total" statistics cover recent activity even for
        a short requested window.
        """
        now = now or datetime.now(timezone.utc)
        start = _day_start(start_date)
        end = _day_start(end_date) + timedelta(days=1) - timedelta(microseconds=1)
        fetch_start = min(start, now - timedelta(days=MIN_LOOKBACK_DAYS))

        all_prs = await self.collect_prs(repositories, fetch_start.date(), now.date())
        filtered = [pr for pr in all_prs if start <= pr.created_at <= end]
        return PullRequestReport(
            all_prs=all_prs,
            filtered_prs=filtered,
            start=start,
            end=end,
            fetch_start=fetch_start,
            fetch_end=now,
        )
