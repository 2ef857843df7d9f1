from datetime import date, datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from pulseboard.services.github.models import PullRequestInfo
from pulseboard.services.github.pullrequests import (
    PR_TYPES,
    PullRequestCollector,
    classify_pr_type,
    compute_pr_stats,
    group_by_type,
    parse_pull_request,
)


def pr_item(
    number: int,
    title: str = "feat: add chart",
    state: str = "open",
    created_at: str = "2024-03-05T10:00:00Z",
    merged_at: str | None = None,
    repo: str = "antvis/g2",
) -> dict[str, Any]:
    return {
        "number": number,
        "title": title,
        "state": state,
        "created_at": created_at,
        "closed_at": merged_at if state == "closed" else None,
        "html_url": f"https://github.com/{repo}/pull/{number}",
        "repository_url": f"https://api.github.com/repos/{repo}",
        "user": {"login": "contributor"},
        "author_association": "CONTRIBUTOR",
        "pull_request": {"merged_at": merged_at},
    }


def make_pr(number: int, state: str = "open", merged: bool = False, pr_type: str = "feat", day: int = 5) -> PullRequestInfo:
    created = datetime(2024, 3, day, tzinfo=timezone.utc)
    return PullRequestInfo(
        number=number,
        title=f"PR {number}",
        repository="antvis/g2",
        url=f"https://github.com/antvis/g2/pull/{number}",
        state=state,
        created_at=created,
        merged_at=created if merged else None,
        closed_at=created if state == "closed" else None,
        author="contributor",
        pr_type=pr_type,
    )


@pytest.fixture
def mock_github_client() -> AsyncMock:
    """Create a mock GitHub client."""
    return AsyncMock()


@pytest.fixture
def no_cache():
    """Bypass the shared in-memory cache."""
    with (
        patch("pulseboard.services.github.pullrequests.get_cached", new_callable=AsyncMock) as mock_get,
        patch("pulseboard.services.github.pullrequests.set_cached", new_callable=AsyncMock) as mock_set,
    ):
        mock_get.return_value = None
        yield mock_set


@pytest.mark.parametrize(
    "title,expected",
    [
        ("feat(g2): add funnel chart", "feat"),
        ("Feature: new legend", "feat"),
        ("fix: tooltip position", "fix"),
        ("Bugfix for axis", "fix"),
        ("docs: update README", "docs"),
        ("style: format code", "style"),
        ("refactor: extract scale", "refactor"),
        ("test: add e2e", "test"),
        ("chore: bump deps", "chore"),
        ("ci: add workflow", "chore"),
        ("Bump version", "other"),
    ],
)
def test_classify_pr_type(title: str, expected: str) -> None:
    """Test keyword based PR classification."""
    assert classify_pr_type(title) == expected


def test_parse_pull_request() -> None:
    """Test converting a search item into a PullRequestInfo."""
    pr = parse_pull_request(pr_item(7, state="closed", merged_at="2024-03-06T10:00:00Z"))

    assert pr.number == 7
    assert pr.repository == "antvis/g2"
    assert pr.pr_type == "feat"
    assert pr.get_display_state() == "merged"
    assert pr.author_association == "CONTRIBUTOR"


def test_compute_pr_stats() -> None:
    """Test state, type and repository counts."""
    prs = [
        make_pr(1, state="closed", merged=True),
        make_pr(2, state="closed", merged=True, pr_type="fix"),
        make_pr(3, state="closed", pr_type="fix"),
        make_pr(4, state="open", pr_type="docs"),
    ]

    stats = compute_pr_stats(prs)

    assert stats.total == 4
    assert stats.merged == 2
    assert stats.closed == 1
    assert stats.open == 1
    assert stats.merge_rate == 50
    assert stats.type_distribution["fix"] == 2
    assert stats.type_distribution["other"] == 0
    assert stats.repo_distribution == {"g2": 4}


def test_compute_pr_stats_empty() -> None:
    """Test that an empty set has a zero merge rate."""
    stats = compute_pr_stats([])

    assert stats.total == 0
    assert stats.merge_rate == 0
    assert set(stats.type_distribution) == set(PR_TYPES)


def test_group_by_type_newest_first() -> None:
    """Test grouping keeps every type and sorts newest first."""
    groups = group_by_type([make_pr(1, day=1), make_pr(2, day=9), make_pr(3, pr_type="fix")])

    assert [pr.number for pr in groups["feat"]] == [2, 1]
    assert [pr.number for pr in groups["fix"]] == [3]
    assert groups["docs"] == []


@pytest.mark.asyncio
async def test_collect_repo_prs(mock_github_client: AsyncMock, no_cache: AsyncMock) -> None:
    """Test collecting and caching the pull requests of one repository."""
    mock_github_client.search_all_issues.return_value = [pr_item(1), {"number": 2, "title": "issue"}]

    collector = PullRequestCollector(mock_github_client)
    prs = await collector.collect_repo_prs("antvis/g2", date(2024, 3, 1), date(2024, 3, 31))

    assert [pr.number for pr in prs] == [1]
    query = mock_github_client.search_all_issues.call_args.kwargs["query"]
    assert query == "repo:antvis/g2 is:pr created:2024-03-01..2024-03-31"
    no_cache.assert_called_once()
    assert no_cache.call_args.args[0] == "prs:antvis/g2:2024-03-01:2024-03-31"


@pytest.mark.asyncio
async def test_collect_repo_prs_cache_hit(mock_github_client: AsyncMock) -> None:
    """Test that cached pull requests skip the search."""
    cached = [make_pr(1)]

    with patch("pulseboard.services.github.pullrequests.get_cached", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = cached
        collector = PullRequestCollector(mock_github_client)
        prs = await collector.collect_repo_prs("antvis/g2", date(2024, 3, 1), date(2024, 3, 31))

    assert prs == cached
    mock_github_client.search_all_issues.assert_not_called()


@pytest.mark.asyncio
async def test_collect_repo_prs_skips_malformed(mock_github_client: AsyncMock, no_cache: AsyncMock) -> None:
    """Test that items missing fields are skipped."""
    broken = pr_item(2)
    del broken["title"]
    mock_github_client.search_all_issues.return_value = [pr_item(1), broken]

    collector = PullRequestCollector(mock_github_client)
    prs = await collector.collect_repo_prs("antvis/g2", date(2024, 3, 1), date(2024, 3, 31))

    assert [pr.number for pr in prs] == [1]


@pytest.mark.asyncio
async def test_collect_prs_failed_repo_skipped(mock_github_client: AsyncMock, no_cache: AsyncMock) -> None:
    """Test that one failing repository does not fail the collection."""

    async def search(query: str, sort: str, order: str) -> list[dict[str, Any]]:
        if "antvis/g6" in query:
            raise httpx.ConnectError("refused")
        return [pr_item(1)]

    mock_github_client.search_all_issues.side_effect = search
    collector = PullRequestCollector(mock_github_client)

    prs = await collector.collect_prs(["antvis/g2", "antvis/g6"], date(2024, 3, 1), date(2024, 3, 31))

    assert len(prs) == 1


@pytest.mark.asyncio
async def test_build_report_windows(mock_github_client: AsyncMock, no_cache: AsyncMock) -> None:
    """Test that the fetch window reaches back 60 days while filtering to the request."""
    mock_github_client.search_all_issues.return_value = [
        pr_item(1, created_at="2024-05-20T10:00:00Z"),
        pr_item(2, created_at="2024-04-10T10:00:00Z"),
    ]
    now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    collector = PullRequestCollector(mock_github_client)
    report = await collector.build_report(["antvis/g2"], date(2024, 5, 15), date(2024, 5, 31), now=now)

    query = mock_github_client.search_all_issues.call_args.kwargs["query"]
    assert "created:2024-04-02..2024-06-01" in query
    assert report.total.total == 2
    assert [pr.number for pr in report.filtered_prs] == [1]

    data = report.to_dict()
    assert data["summary"]["filtered"]["total"] == 1
    assert data["timeRange"]["startDate"] == "2024-05-15T00:00:00Z"
    assert data["timeRange"]["fetchEndDate"] == "2024-06-01T12:00:00Z"
    assert [pr["number"] for pr in data["details"]["total"]["feat"]] == [1, 2]
