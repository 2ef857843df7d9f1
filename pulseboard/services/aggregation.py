"""Merging per-repository issue analysis into combined dashboard metrics."""

import asyncio
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from logging import getLogger
from typing import Any

import httpx

from .cancellation import CancellationToken, check_cancelled
from .errors import (
    AggregationCancelled,
    ErrorCategory,
    InvalidQueryError,
    PulseboardError,
    UpstreamError,
    to_upstream_error,
)
from .github.issues import ProgressCallback, RepositoryAggregator, as_date
from .github.models import AnalyzedIssue
from .metrics import IssueMetricsSummary, RepoMetrics, compute_repo_metrics, summarize_issues

logger = getLogger(__name__)

REPOSITORY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


def validate_query(
    repos: Iterable[str],
    start_date: date,
    end_date: date,
    max_repos: int = 10,
    max_range_days: int = 365,
) -> list[str]:
    """Validate a metrics query and return the de-duplicated repository list.

    Raises:
        InvalidQueryError: If the query can never succeed
    """
    repo_list: list[str] = []
    for repo in repos:
        repo = repo.strip()
        if not REPOSITORY_PATTERN.match(repo):
            raise InvalidQueryError(f"Invalid repository name: {repo!r}. Expected owner/name")
        if repo not in repo_list:
            repo_list.append(repo)

    if not repo_list:
        raise InvalidQueryError("At least one repository is required")
    if len(repo_list) > max_repos:
        raise InvalidQueryError(f"Too many repositories: {len(repo_list)} (maximum {max_repos})")

    start, end = as_date(start_date), as_date(end_date)
    if start > end:
        raise InvalidQueryError("Start date must not be after end date")
    if (end - start).days > max_range_days:
        raise InvalidQueryError(f"Date range is longer than {max_range_days} days")

    return repo_list


@dataclass
class RepoFetchStatus:
    repository: str
    ok: bool = True
    from_cache: bool = False
    category: ErrorCategory | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "repo": self.repository,
            "ok": self.ok,
            "fromCache": self.from_cache,
            "category": self.category.value if self.category else None,
            "message": self.message,
        }


@dataclass
class IssueMetricsResult:
    issues: list[AnalyzedIssue] = field(default_factory=list)
    per_repo: list[RepoMetrics] = field(default_factory=list)
    summary: IssueMetricsSummary = field(default_factory=IssueMetricsSummary)
    statuses: list[RepoFetchStatus] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        """True when at least one repository could not be fetched."""
        return any(not status.ok for status in self.statuses)

    def to_dict(self) -> dict[str, Any]:
        return {
            "issues": [issue.to_dict() for issue in self.issues],
            "perRepo": [metrics.to_dict() for metrics in self.per_repo],
            "summary": self.summary.to_dict(),
            "statuses": [status.to_dict() for status in self.statuses],
            "partial": self.partial,
        }


@dataclass
class _ActiveRequest:
    repos: frozenset[str]
    token: CancellationToken


class IssueMetricsService:
    """Answers multi-repository issue metric queries on top of a RepositoryAggregator."""

    def __init__(
        self,
        aggregator: RepositoryAggregator,
        catalog: Iterable[str] = (),
        max_concurrency: int = 5,
        max_repos: int = 10,
        max_range_days: int = 365,
    ) -> None:
        self.aggregator = aggregator
        self.catalog = frozenset(catalog)
        self.max_concurrency = max(max_concurrency, 1)
        self.max_repos = max_repos
        self.max_range_days = max_range_days
        self._active: _ActiveRequest | None = None

    def is_cache_valid(self, repository: str, start_date: date, end_date: date) -> bool:
        return self.aggregator.is_cache_valid(repository, start_date, end_date)

    async def request_issue_metrics(
        self,
        repos: Sequence[str],
        start_date: date,
        end_date: date,
        on_progress: ProgressCallback | None = None,
    ) -> IssueMetricsResult | None:
        """Run a metrics query on behalf of an interactive caller.

        A request for repositories that share nothing with the request still
        in flight cancels that request. A request that shares repositories
        lets it continue and reuses its fetches.
        """
        repo_list = validate_query(repos, start_date, end_date, self.max_repos, self.max_range_days)
        active = _ActiveRequest(frozenset(repo_list), CancellationToken())

        previous = self._active
        if previous is not None and not previous.token.cancelled and previous.repos.isdisjoint(active.repos):
            logger.info(f"Cancelling in-flight metrics request for {', '.join(sorted(previous.repos))}")
            previous.token.cancel("superseded by a request for other repositories")

        self._active = active
        try:
            return await self.get_issue_metrics(repo_list, start_date, end_date, active.token, on_progress)
        finally:
            if self._active is active:
                self._active = None

    async def get_issue_metrics(
        self,
        repos: Sequence[str],
        start_date: date,
        end_date: date,
        cancel_token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> IssueMetricsResult | None:
        """Fetch, analyze and merge issues for several repositories.

        Returns:
            The merged result, or None when ``cancel_token`` fired

        Raises:
            InvalidQueryError: If the query is malformed
            UpstreamError: If every repository failed to load
        """
        repo_list = validate_query(repos, start_date, end_date, self.max_repos, self.max_range_days)
        start, end = as_date(start_date), as_date(end_date)

        try:
            check_cancelled(cancel_token)
            self.aggregator.evict(set(repo_list) | self.catalog)
            loaded = await self._load_all(repo_list, start, end, cancel_token, on_progress)
        except AggregationCancelled as e:
            logger.info(f"Issue metrics request cancelled: {e}")
            return None

        statuses = [status for _, status, _ in loaded]
        errors = [error for _, _, error in loaded if error is not None]
        if errors and len(errors) == len(repo_list):
            raise errors[0]

        combined: list[AnalyzedIssue] = []
        per_repo: list[RepoMetrics] = []
        for repo, (issues, _, _) in zip(repo_list, loaded):
            combined.extend(issues)
            per_repo.append(compute_repo_metrics(repo, issues))
        combined.sort(key=lambda issue: issue.created_at, reverse=True)

        return IssueMetricsResult(
            issues=combined,
            per_repo=per_repo,
            summary=summarize_issues(combined),
            statuses=statuses,
        )

    async def _load_all(
        self,
        repo_list: list[str],
        start: date,
        end: date,
        cancel_token: CancellationToken | None,
        on_progress: ProgressCallback | None,
    ) -> list[tuple[list[AnalyzedIssue], RepoFetchStatus, UpstreamError | None]]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def load(repo: str) -> tuple[list[AnalyzedIssue], RepoFetchStatus, UpstreamError | None]:
            if self.aggregator.is_cache_valid(repo, start, end):
                issues = await self.aggregator.fetch_repo_issues(repo, start, end, cancel_token)
                return issues, RepoFetchStatus(repo, from_cache=True), None

            async with semaphore:
                check_cancelled(cancel_token)
                try:
                    issues = await self.aggregator.fetch_repo_issues(repo, start, end, cancel_token, on_progress)
                except (httpx.HTTPError, PulseboardError) as e:
                    error = to_upstream_error(e, context=repo)
                    logger.error(f"Failed to load issues for {repo}: {e}")
                    return [], RepoFetchStatus(repo, ok=False, category=error.category, message=error.message), error
            return issues, RepoFetchStatus(repo), None

        tasks = [asyncio.ensure_future(load(repo)) for repo in repo_list]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
