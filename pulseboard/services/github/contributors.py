"""Contributor collection and cross-repository merging."""

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from logging import getLogger
from typing import Any

import httpx

from pulseboard.services.cache import get_cached, set_cached
from pulseboard.settings import settings

from .client import GitHubAPIClient
from .models import Contributor, ContributorRole
from .pullrequests import PullRequestCollector

logger = getLogger(__name__)

PERMISSION_ROLES = {
    "admin": ContributorRole.OWNER,
    "maintain": ContributorRole.MEMBER,
    "write": ContributorRole.MEMBER,
    "triage": ContributorRole.COLLABORATOR,
    "read": ContributorRole.COLLABORATOR,
}


def permission_to_role(permission: str | None) -> ContributorRole:
    """Map a repository permission level to a contributor role."""
    if permission is None:
        return ContributorRole.CONTRIBUTOR
    return PERMISSION_ROLES.get(permission, ContributorRole.CONTRIBUTOR)


def merge_contributors(groups: Iterable[Iterable[Contributor]]) -> list[Contributor]:
    """Merge contributor lists from several repositories, one entry per login.

    Contribution and pull request counts are summed, repositories are
    unioned, the maintainer flag is OR-ed and the highest ranked role wins.
    The result is sorted by contributions, most active first.
    """
    merged: dict[str, Contributor] = {}
    for group in groups:
        for contributor in group:
            key = contributor.login.lower()
            existing = merged.get(key)
            if existing is None:
                merged[key] = Contributor(
                    login=contributor.login,
                    avatar_url=contributor.avatar_url,
                    url=contributor.url,
                    contributions=contributor.contributions,
                    pull_requests=contributor.pull_requests,
                    role=contributor.role,
                    is_maintainer=contributor.is_maintainer,
                    repositories=list(contributor.repositories),
                )
                continue

            existing.contributions += contributor.contributions
            existing.pull_requests += contributor.pull_requests
            existing.is_maintainer = existing.is_maintainer or contributor.is_maintainer
            if contributor.role.rank > existing.role.rank:
                existing.role = contributor.role
            existing.avatar_url = existing.avatar_url or contributor.avatar_url
            existing.url = existing.url or contributor.url
            for repo in contributor.repositories:
                if repo not in existing.repositories:
                    existing.repositories.append(repo)

    return sorted(merged.values(), key=lambda c: (-c.contributions, c.login.lower()))


@dataclass
class ContributorStats:
    total: int = 0
    maintainers: int = 0
    contributors: int = 0
    total_contributions: int = 0
    total_pull_requests: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "maintainers": self.maintainers,
            "contributors": self.contributors,
            "totalContributions": self.total_contributions,
            "totalPullRequests": self.total_pull_requests,
        }


def compute_contributor_stats(contributors: Sequence[Contributor]) -> ContributorStats:
    maintainers = sum(1 for c in contributors if c.is_maintainer)
    return ContributorStats(
        total=len(contributors),
        maintainers=maintainers,
        contributors=len(contributors) - maintainers,
        total_contributions=sum(c.contributions for c in contributors),
        total_pull_requests=sum(c.pull_requests for c in contributors),
    )


class ContributorCollector:
    """Collects who contributed to a set of repositories in a date window."""

    def __init__(self, github_client: GitHubAPIClient, max_concurrency: int = 5) -> None:
        self.github_client = github_client
        self.max_concurrency = max(max_concurrency, 1)
        self.pull_requests = PullRequestCollector(github_client, max_concurrency=max_concurrency)

    async def get_role(self, repository: str, login: str) -> ContributorRole:
        """Look up a user's role in a repository, cached for ``cache_permission_ttl`` seconds.

        Lookups that fail leave the user a plain contributor.
        """
        cache_key = f"permission:{repository}:{login.lower()}"
        cached = await get_cached(cache_key)
        if isinstance(cached, str):
            return ContributorRole(cached)

        try:
            permission = await self.github_client.get_collaborator_permission(repository, login)
        except httpx.HTTPError as e:
            logger.debug(f"Could not read permission of {login} in {repository}: {e}")
            return ContributorRole.CONTRIBUTOR

        role = permission_to_role(permission)
        await set_cached(cache_key, role.value, ttl=settings.cache_permission_ttl)
        return role

    async def collect_repo_contributors(self, repository: str, since: date, until: date) -> list[Contributor]:
        """Collect contributors of one repository from commits and pull requests.

        Each commit and each pull request counts as one contribution.

        Raises:
            httpx.HTTPError: If commits or pull requests cannot be listed
        """
        window_start = datetime.combine(since, time.min, tzinfo=timezone.utc)
        window_end = datetime.combine(until + timedelta(days=1), time.min, tzinfo=timezone.utc)
        commits, pull_requests = await asyncio.gather(
            self.github_client.list_commits(repository, since=window_start, until=window_end),
            self.pull_requests.collect_repo_prs(repository, since, until),
        )

        contributors: dict[str, Contributor] = {}

        def record(login: str) -> Contributor:
            contributor = contributors.get(login)
            if contributor is None:
                contributor = Contributor(login=login, repositories=[repository])
                contributors[login] = contributor
            contributor.contributions += 1
            return contributor

        for commit in commits:
            author = commit.get("author") or {}
            login = author.get("login")
            if not login:
                continue
            contributor = record(login)
            contributor.avatar_url = contributor.avatar_url or author.get("avatar_url")
            contributor.url = contributor.url or author.get("html_url")

        for pr in pull_requests:
            if not pr.author:
                continue
            record(pr.author).pull_requests += 1

        roles = await asyncio.gather(*[self.get_role(repository, login) for login in contributors])
        for contributor, role in zip(contributors.values(), roles):
            contributor.role = role
            contributor.is_maintainer = role.is_maintainer

        logger.info(f"Found {len(contributors)} contributors in {repository}")
        return list(contributors.values())

    async def collect_contributors(self, repositories: Sequence[str], since: date, until: date) -> list[Contributor]:
        """Collect and merge contributors of several repositories.

        A repository that fails is logged and skipped.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def collect(repository: str) -> list[Contributor]:
            async with semaphore:
                try:
                    return await self.collect_repo_contributors(repository, since, until)
                except httpx.HTTPError as e:
                    logger.error(f"Failed to collect contributors for {repository}: {e}")
                    return []

        groups = await asyncio.gather(*[collect(repo) for repo in repositories])
        return merge_contributors(groups)
