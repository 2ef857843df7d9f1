"""Organization membership lookups with an in-memory cache."""

import asyncio
from logging import getLogger

from aiocache import SimpleMemoryCache
from aiocache.base import BaseCache

from .client import GitHubAPIClient

logger = getLogger(__name__)


class MembershipResolver:
    """Answers "is this user a maintainer?" for one organization.

    Results are cached for the lifetime of the resolver. Concurrent lookups
    for the same login share one upstream request. A failed lookup answers
    False and is only remembered when ``cache_failures`` is set, so transient
    errors are retried on the next call.
    """

    def __init__(
        self,
        client: GitHubAPIClient,
        org: str,
        cache: BaseCache | None = None,
        cache_failures: bool = False,
    ) -> None:
        self.client = client
        self.org = org
        self.cache = cache if cache is not None else SimpleMemoryCache()
        self.cache_failures = cache_failures
        self.hits = 0
        self.misses = 0
        self._pending: dict[str, asyncio.Task[bool]] = {}

    def _cache_key(self, username: str) -> str:
        return f"membership:{self.org.lower()}:{username.lower()}"

    async def is_privileged(self, username: str | None) -> bool:
        """Return True when ``username`` is a member of the organization. Never raises."""
        if not username:
            return False

        key = self._cache_key(username)
        cached = await self.cache.get(key)
        if cached is not None:
            self.hits += 1
            return bool(cached)

        task = self._pending.get(key)
        if task is None:
            self.misses += 1
            task = asyncio.ensure_future(self._lookup(username, key))
            self._pending[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        return await asyncio.shield(task)

    def _forget(self, key: str, task: "asyncio.Task[bool]") -> None:
        if self._pending.get(key) is task:
            del self._pending[key]

    async def _lookup(self, username: str, key: str) -> bool:
        try:
            is_member = await self.client.check_org_membership(self.org, username)
        except Exception as e:
            logger.warning(f"Membership check failed for {username} in {self.org}: {e}")
            if self.cache_failures:
                await self.cache.set(key, False)
            return False

        await self.cache.set(key, is_member)
        logger.debug(f"{username} {'is' if is_member else 'is not'} a member of {self.org}")
        return is_member

    async def preload(self) -> int:
        """Seed the cache with every visible organization member.

        Returns:
            Number of members cached

        Raises:
            httpx.HTTPStatusError: If the member list cannot be fetched
        """
        members = await self.client.list_org_members(self.org)
        for member in members:
            login = member.get("login")
            if login:
                await self.cache.set(self._cache_key(login), True)
        logger.info(f"Preloaded {len(members)} members of {self.org}")
        return len(members)
