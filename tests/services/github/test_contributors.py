"""Tests for contributor collection and merging."""

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from pulseboard.services.github.contributors import (
    ContributorCollector,
    compute_contributor_stats,
    merge_contributors,
    permission_to_role,
)
from pulseboard.services.github.models import Contributor, ContributorRole, PullRequestInfo


def make_pr(number: int, author: str | None) -> PullRequestInfo:
    created = datetime(2024, 3, 5, tzinfo=timezone.utc)
    return PullRequestInfo(
        number=number,
        title=f"PR {number}",
        repository="antvis/g2",
        url=f"https://github.com/antvis/g2/pull/{number}",
        state="open",
        created_at=created,
        merged_at=None,
        closed_at=None,
        author=author,
    )


@pytest.fixture
def mock_github_client() -> AsyncMock:
    """Create a mock GitHub client."""
    return AsyncMock()


@pytest.fixture
def no_cache():
    """Bypass the shared in-memory cache."""
    with (
        patch("pulseboard.services.github.contributors.get_cached", new_callable=AsyncMock) as mock_get,
        patch("pulseboard.services.github.contributors.set_cached", new_callable=AsyncMock),
    ):
        mock_get.return_value = None
        yield mock_get


@pytest.mark.parametrize(
    "permission,expected",
    [
        ("admin", ContributorRole.OWNER),
        ("maintain", ContributorRole.MEMBER),
        ("write", ContributorRole.MEMBER),
        ("triage", ContributorRole.COLLABORATOR),
        ("read", ContributorRole.COLLABORATOR),
        ("none", ContributorRole.CONTRIBUTOR),
        (None, ContributorRole.CONTRIBUTOR),
    ],
)
def test_permission_to_role(permission: str | None, expected: ContributorRole) -> None:
    assert permission_to_role(permission) == expected


def test_merge_contributors() -> None:
    """Test that the same login across repositories becomes one entry."""
    g2 = [
        Contributor(login="Alice", contributions=3, pull_requests=1, repositories=["antvis/g2"]),
        Contributor(login="bob", contributions=10, repositories=["antvis/g2"]),
    ]
    g6 = [
        Contributor(
            login="alice",
            contributions=9,
            pull_requests=2,
            role=ContributorRole.MEMBER,
            is_maintainer=True,
            repositories=["antvis/g6"],
            avatar_url="https://avatars/alice",
        ),
    ]

    merged = merge_contributors([g2, g6])

    assert [c.login for c in merged] == ["Alice", "bob"]
    alice = merged[0]
    assert alice.contributions == 12
    assert alice.pull_requests == 3
    assert alice.role == ContributorRole.MEMBER
    assert alice.is_maintainer is True
    assert alice.repositories == ["antvis/g2", "antvis/g6"]
    assert alice.avatar_url == "https://avatars/alice"


def test_merge_contributors_does_not_mutate_input() -> None:
    """Test that merging leaves the per-repository lists untouched."""
    first = Contributor(login="alice", contributions=1, repositories=["antvis/g2"])

    merge_contributors([[first], [Contributor(login="alice", contributions=1, repositories=["antvis/g6"])]])

    assert first.contributions == 1
    assert first.repositories == ["antvis/g2"]


def test_compute_contributor_stats() -> None:
    contributors = [
        Contributor(login="alice", contributions=5, pull_requests=2, is_maintainer=True),
        Contributor(login="bob", contributions=1, pull_requests=1),
    ]

    stats = compute_contributor_stats(contributors)

    assert stats.to_dict() == {
        "total": 2,
        "maintainers": 1,
        "contributors": 1,
        "totalContributions": 6,
        "totalPullRequests": 3,
    }


@pytest.mark.asyncio
async def test_get_role_failure_defaults_to_contributor(mock_github_client: AsyncMock, no_cache: AsyncMock) -> None:
    """Test that a failing permission lookup leaves a plain contributor."""
    mock_github_client.get_collaborator_permission.side_effect = httpx.ConnectError("refused")

    collector = ContributorCollector(mock_github_client)

    assert await collector.get_role("antvis/g2", "alice") == ContributorRole.CONTRIBUTOR


@pytest.mark.asyncio
async def test_get_role_cached(mock_github_client: AsyncMock, no_cache: AsyncMock) -> None:
    """Test that a cached role skips the lookup."""
    no_cache.return_value = "OWNER"

    collector = ContributorCollector(mock_github_client)

    assert await collector.get_role("antvis/g2", "alice") == ContributorRole.OWNER
    mock_github_client.get_collaborator_permission.assert_not_called()


@pytest.mark.asyncio
async def test_collect_repo_contributors(mock_github_client: AsyncMock, no_cache: AsyncMock) -> None:
    """Test counting commits and pull requests per author."""
    mock_github_client.list_commits.return_value = [
        {"author": {"login": "alice", "avatar_url": "https://avatars/alice", "html_url": "https://github.com/alice"}},
        {"author": {"login": "alice"}},
        {"author": None},
        {"author": {"login": "bob"}},
    ]
    mock_github_client.get_collaborator_permission.side_effect = lambda repo, login: {"alice": "admin"}.get(login)

    collector = ContributorCollector(mock_github_client)
    with patch.object(
        collector.pull_requests,
        "collect_repo_prs",
        new=AsyncMock(return_value=[make_pr(1, "bob"), make_pr(2, None)]),
    ):
        contributors = await collector.collect_repo_contributors("antvis/g2", date(2024, 3, 1), date(2024, 3, 31))

    by_login = {c.login: c for c in contributors}
    assert by_login["alice"].contributions == 2
    assert by_login["alice"].avatar_url == "https://avatars/alice"
    assert by_login["alice"].role == ContributorRole.OWNER
    assert by_login["alice"].is_maintainer is True
    assert by_login["bob"].contributions == 2
    assert by_login["bob"].pull_requests == 1
    assert by_login["bob"].is_maintainer is False

    kwargs = mock_github_client.list_commits.call_args.kwargs
    assert kwargs["since"] == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert kwargs["until"] == datetime(2024, 4, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_collect_contributors_skips_failed_repo(mock_github_client: AsyncMock) -> None:
    """Test that a repository that fails is skipped and the rest merged."""
    collector = ContributorCollector(mock_github_client)

    async def collect(repository: str, since: date, until: date) -> list[Contributor]:
        if repository == "antvis/g6":
            raise httpx.ConnectError("refused")
        return [Contributor(login="alice", contributions=1, repositories=[repository])]

    with patch.object(collector, "collect_repo_contributors", side_effect=collect):
        merged = await collector.collect_contributors(
            ["antvis/g2", "antvis/g6", "antvis/s2"], date(2024, 3, 1), date(2024, 3, 31)
        )

    assert len(merged) == 1
    assert merged[0].contributions == 2
    assert merged[0].repositories == ["antvis/g2", "antvis/s2"]
