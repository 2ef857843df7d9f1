"""Per-repository issue collection, analysis and caching."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from logging import getLogger
from typing import Any

import httpx

from pulseboard.services.cancellation import CancellationToken, check_cancelled
from pulseboard.services.errors import AggregationCancelled

from .analyzer import IssueResponseAnalyzer
from .client import SEARCH_RESULT_LIMIT, GitHubAPIClient
from .models import AnalyzedIssue, Issue, IssueDetails

logger = getLogger(__name__)

CacheKey = tuple[date, date]


class CacheState(str, Enum):
    EMPTY = "empty"
    FETCHING = "fetching"
    READY = "ready"


@dataclass
class RepoCacheEntry:
    """Cached analysis for one repository and one date range.

    Moves EMPTY -> FETCHING -> READY and back to FETCHING whenever a
    different date range is requested. Only the task that owns the
    current fetch may move it to READY.
    """

    repository: str
    key: CacheKey | None = None
    state: CacheState = CacheState.EMPTY
    issues: list[AnalyzedIssue] = field(default_factory=list)
    task: "asyncio.Task[list[AnalyzedIssue]] | None" = None


@dataclass
class AnalysisProgress:
    completed: int
    total: int
    repository: str


ProgressCallback = Callable[[AnalysisProgress], None]


def as_date(value: date) -> date:
    """Normalize datetimes to their calendar date so cache keys compare equal."""
    if isinstance(value, datetime):
        return value.date()
    return value


def build_issue_query(repository: str, start_date: date, end_date: date) -> str:
    """Build the search query for issues created within the inclusive date range."""
    start = datetime.combine(as_date(start_date), time.min, tzinfo=timezone.utc)
    # The upper bound is midnight after end_date so the whole end day is included
    end = datetime.combine(as_date(end_date) + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return (
        f"repo:{repository} is:issue "
        f"created:{start.strftime('%Y-%m-%dT%H:%M:%SZ')}..{end.strftime('%Y-%m-%dT%H:%M:%SZ')}"
    )


async def fetch_issue_details(
    client: GitHubAPIClient,
    repository: str,
    number: int,
    comment_limit: int | None = None,
    event_limit: int | None = None,
) -> IssueDetails:
    """Fetch comments and timeline of an issue concurrently.

    Limits cap the result to the first page of that size; None fetches everything.
    """
    comments, timeline = await asyncio.gather(
        client.get_issue_comments(
            repository,
            number,
            per_page=comment_limit or 100,
            max_pages=1 if comment_limit else None,
        ),
        client.get_issue_timeline(
            repository,
            number,
            per_page=event_limit or 100,
            max_pages=1 if event_limit else None,
        ),
    )
    return IssueDetails.from_api(comments, timeline)


class RepositoryAggregator:
    """Fetches and analyzes the issues of one repository, caching by date range."""

    def __init__(
        self,
        client: GitHubAPIClient,
        analyzer: IssueResponseAnalyzer,
        cache: dict[str, RepoCacheEntry] | None = None,
        per_page: int = 100,
        max_results: int | None = None,
        detail_delay: float = 0.1,
        detail_concurrency: int = 1,
        fetch_details: bool = True,
    ) -> None:
        self.client = client
        self.analyzer = analyzer
        self.cache: dict[str, RepoCacheEntry] = cache if cache is not None else {}
        self.per_page = min(per_page, 100)
        self.max_results = max_results
        self.detail_delay = detail_delay
        self.detail_concurrency = max(detail_concurrency, 1)
        self.fetch_details = fetch_details

    def is_cache_valid(self, repository: str, start_date: date, end_date: date) -> bool:
        """Return True when a finished analysis for exactly this range is cached."""
        entry = self.cache.get(repository)
        if entry is None:
            return False
        return entry.state is CacheState.READY and entry.key == (as_date(start_date), as_date(end_date))

    def evict(self, keep: set[str]) -> list[str]:
        """Drop cache entries for every repository not in ``keep``."""
        evicted = [repo for repo in self.cache if repo not in keep]
        for repo in evicted:
            del self.cache[repo]
        if evicted:
            logger.debug(f"Evicted cached issues for {', '.join(evicted)}")
        return evicted

    async def fetch_repo_issues(
        self,
        repository: str,
        start_date: date,
        end_date: date,
        cancel_token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> list[AnalyzedIssue]:
        """Return the analyzed issues of ``repository`` created in the date range.

        A repeated call with the same range is answered from the cache without
        any upstream calls. Calls for a range that is already being fetched
        wait on that fetch instead of starting another one.

        Raises:
            AggregationCancelled: If ``cancel_token`` fires
            httpx.HTTPError: If the issue search fails after retries
        """
        check_cancelled(cancel_token)
        key: CacheKey = (as_date(start_date), as_date(end_date))
        entry = self.cache.get(repository)
        if entry is None:
            entry = RepoCacheEntry(repository)
            self.cache[repository] = entry

        if entry.key == key:
            if entry.state is CacheState.READY:
                logger.debug(f"Using cached issues for {repository} ({key[0]} - {key[1]})")
                return list(entry.issues)
            if entry.state is CacheState.FETCHING and entry.task is not None:
                logger.debug(f"Joining in-flight fetch for {repository}")
                return await self._join(entry.task, repository, start_date, end_date, cancel_token, on_progress)

        if entry.state is CacheState.FETCHING:
            logger.info(f"Date range changed for {repository}, superseding in-flight fetch")

        entry.key = key
        entry.state = CacheState.FETCHING
        entry.issues = []
        task = asyncio.ensure_future(self._fetch_and_store(entry, key, cancel_token, on_progress))
        entry.task = task
        # Shielded so cancelling this caller never cancels the fetch joiners share
        return list(await asyncio.shield(task))

    async def _join(
        self,
        task: "asyncio.Task[list[AnalyzedIssue]]",
        repository: str,
        start_date: date,
        end_date: date,
        cancel_token: CancellationToken | None,
        on_progress: ProgressCallback | None,
    ) -> list[AnalyzedIssue]:
        try:
            return list(await asyncio.shield(task))
        except asyncio.CancelledError:
            # Only a cancelled shared fetch is restarted, cancelling this caller propagates
            if not task.cancelled():
                raise
        except AggregationCancelled:
            pass
        check_cancelled(cancel_token)
        # The owner of the shared fetch gave up but this caller still wants the data
        logger.debug(f"Shared fetch for {repository} was cancelled, restarting")
        return await self.fetch_repo_issues(repository, start_date, end_date, cancel_token, on_progress)

    def _owns(self, entry: RepoCacheEntry, key: CacheKey) -> bool:
        return (
            self.cache.get(entry.repository) is entry
            and entry.key == key
            and entry.task is asyncio.current_task()
        )

    async def _fetch_and_store(
        self,
        entry: RepoCacheEntry,
        key: CacheKey,
        cancel_token: CancellationToken | None,
        on_progress: ProgressCallback | None,
    ) -> list[AnalyzedIssue]:
        try:
            issues = await self._collect(entry.repository, key, cancel_token, on_progress)
            check_cancelled(cancel_token)
        except BaseException:
            if self._owns(entry, key):
                entry.key = None
                entry.state = CacheState.EMPTY
                entry.task = None
            raise

        if self._owns(entry, key):
            entry.issues = issues
            entry.state = CacheState.READY
            entry.task = None
        else:
            logger.debug(f"Discarding superseded results for {entry.repository} ({key[0]} - {key[1]})")
        return issues

    async def _collect(
        self,
        repository: str,
        key: CacheKey,
        cancel_token: CancellationToken | None,
        on_progress: ProgressCallback | None,
    ) -> list[AnalyzedIssue]:
        start_date, end_date = key
        query = build_issue_query(repository, start_date, end_date)
        logger.info(f"Fetching issues: {query}")

        items = await self._search(query, cancel_token)
        issues: list[Issue] = []
        for item in items:
            if item.get("pull_request"):
                continue
            try:
                issues.append(Issue.from_api(item))
            except (KeyError, ValueError) as e:
                logger.warning(f"Failed to parse issue data in {repository}: {e}")

        logger.info(f"Analyzing {len(issues)} issues from {repository}")
        return await self._analyze_all(repository, issues, cancel_token, on_progress)

    async def _search(self, query: str, cancel_token: CancellationToken | None) -> list[dict[str, Any]]:
        limit = SEARCH_RESULT_LIMIT
        if self.max_results:
            limit = min(limit, self.max_results)

        items: list[dict[str, Any]] = []
        page = 1
        while True:
            check_cancelled(cancel_token)
            result = await self.client.search_issues(
                query, sort="created", order="desc", per_page=self.per_page, page=page
            )
            check_cancelled(cancel_token)

            page_items = result.get("items", [])
            total_count = result.get("total_count", 0)
            items.extend(page_items)
            logger.debug(f"Page {page}: {len(page_items)} items (total {total_count})")

            if len(page_items) < self.per_page or len(items) >= limit or page * self.per_page >= total_count:
                break
            page += 1

        return items[:limit]

    async def _analyze_all(
        self,
        repository: str,
        issues: list[Issue],
        cancel_token: CancellationToken | None,
        on_progress: ProgressCallback | None,
    ) -> list[AnalyzedIssue]:
        total = len(issues)
        completed = 0
        semaphore = asyncio.Semaphore(self.detail_concurrency)

        async def analyze_one(issue: Issue) -> AnalyzedIssue:
            nonlocal completed
            async with semaphore:
                check_cancelled(cancel_token)
                details: IssueDetails | None = None
                error: str | None = None
                wants_details = self.fetch_details and issue.comments > 0
                if wants_details:
                    try:
                        details = await fetch_issue_details(self.client, issue.repository, issue.number)
                    except (httpx.HTTPError, KeyError, ValueError) as e:
                        logger.warning(f"Failed to fetch details for {issue.repository}#{issue.number}: {e}")
                        error = f"Failed to fetch issue details: {e}"
                    check_cancelled(cancel_token)

                result = await self.analyzer.analyze(issue, details, error)
                check_cancelled(cancel_token)

                if wants_details and self.detail_delay > 0:
                    await asyncio.sleep(self.detail_delay)

            completed += 1
            if on_progress is not None:
                on_progress(AnalysisProgress(completed=completed, total=total, repository=repository))
            return result

        tasks = [asyncio.ensure_future(analyze_one(issue)) for issue in issues]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
