"""Async GitHub API client using httpx."""

import asyncio
from datetime import datetime
from logging import getLogger
from typing import Any

import httpx
from pydantic import SecretStr

from .retry import fetch_with_retry

logger = getLogger(__name__)

# GitHub's search API never returns more than this many results for one query
SEARCH_RESULT_LIMIT = 1000


class GitHubAPIClient:
    """Async GitHub API client for making API requests."""

    def __init__(
        self,
        token: SecretStr | None,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_base_delay: float = 2.0,
        rate_limit_floor: float = 10.0,
    ) -> None:
        """Initialize GitHub API client.

        Args:
            token: GitHub Personal Access Token, or None for unauthenticated access
            base_url: Base URL for GitHub API (default: https://api.github.com)
            timeout: Request timeout in seconds
            max_retries: Retries allowed after the initial attempt of each request
            retry_base_delay: Base delay in seconds for exponential backoff
            rate_limit_floor: Minimum wait in seconds after a rate limit response
        """
        self.token = token.get_secret_value() if token else None
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.rate_limit_floor = rate_limit_floor
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "GitHubAPIClient":
        """Enter async context manager."""
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request_with_retry(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Make HTTP request with automatic retry on transient failures and rate limiting.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: URL to request
            **kwargs: Additional arguments to pass to httpx request

        Returns:
            httpx.Response object

        Raises:
            httpx.HTTPStatusError: If the request fails after retries
            httpx.TimeoutException: If request times out after retries
        """
        if not self._client:
            raise RuntimeError("Client not initialized - use async with context manager")
        client = self._client

        async def send() -> httpx.Response:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response

        return await fetch_with_retry(
            send,
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            rate_limit_floor=self.rate_limit_floor,
            description=f"{method} {url}",
        )

    async def _get_paginated(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        per_page: int = 100,
        max_pages: int | None = None,
    ) -> list[dict[str, Any]]:
        """Collect every item from a paginated list endpoint."""
        per_page = min(per_page, 100)
        page = 1
        items: list[dict[str, Any]] = []

        while True:
            page_params: dict[str, Any] = dict(params or {})
            page_params.update({"per_page": per_page, "page": page})
            response = await self._request_with_retry("GET", url, params=page_params)
            page_items: list[dict[str, Any]] = response.json()

            if not page_items:
                break

            items.extend(page_items)

            # A short page is the last page
            if len(page_items) < per_page:
                break
            if max_pages is not None and page >= max_pages:
                logger.debug(f"Stopping pagination of {url} at page limit {max_pages}")
                break

            page += 1

        return items

    async def search_issues(
        self,
        query: str,
        sort: str = "created",
        order: str = "desc",
        per_page: int = 100,
        page: int = 1,
    ) -> dict[str, Any]:
        """Search for issues/PRs using GitHub search API.

        Args:
            query: GitHub search query (e.g., "repo:antvis/g2 is:issue created:2024-01-01..2024-02-01")
            sort: Sort field (created, updated, comments)
            order: Sort order (asc, desc)
            per_page: Results per page (max 100)
            page: Page number

        Returns:
            Search results dictionary with 'total_count' and 'items' keys

        Raises:
            httpx.HTTPStatusError: If the request fails after retries
        """
        params: dict[str, str | int] = {
            "q": query,
            "sort": sort,
            "order": order,
            "per_page": min(per_page, 100),
            "page": page,
        }

        response = await self._request_with_retry("GET", f"{self.base_url}/search/issues", params=params)
        result: dict[str, Any] = response.json()
        return result

    async def search_all_issues(
        self,
        query: str,
        sort: str = "created",
        order: str = "desc",
        per_page: int = 100,
        max_results: int | None = None,
        max_concurrent_pages: int = 5,
    ) -> list[dict[str, Any]]:
        """Search for all issues/PRs, handling pagination automatically with concurrent requests.

        Args:
            query: GitHub search query
            sort: Sort field (created, updated, comments)
            order: Sort order (asc, desc)
            per_page: Results per page (max 100)
            max_results: Maximum total results to fetch (None for all GitHub will return)
            max_concurrent_pages: Maximum number of concurrent page fetches (default: 5)

        Returns:
            List of all matching issues/PRs

        Raises:
            httpx.HTTPStatusError: If the request fails
        """
        per_page = min(per_page, 100)

        logger.debug(f"Fetching first page of search results (query: {query})")
        first_result = await self.search_issues(query, sort, order, per_page, 1)
        total_count = first_result.get("total_count", 0)
        first_items = first_result.get("items", [])

        logger.debug(f"Total results available: {total_count}")

        target_count = min(total_count, SEARCH_RESULT_LIMIT)
        if max_results:
            target_count = min(target_count, max_results)

        if len(first_items) >= target_count:
            result_items: list[dict[str, Any]] = first_items[:target_count]
            return result_items

        total_pages = (target_count + per_page - 1) // per_page

        logger.debug(f"Fetching pages 2-{total_pages} with max {max_concurrent_pages} concurrent requests")
        semaphore = asyncio.Semaphore(max_concurrent_pages)

        async def fetch_page(page: int) -> dict[str, Any]:
            async with semaphore:
                return await self.search_issues(query, sort, order, per_page, page)

        remaining_results = await asyncio.gather(*[fetch_page(page) for page in range(2, total_pages + 1)])

        all_items = list(first_items)
        for page_result in remaining_results:
            all_items.extend(page_result.get("items", []))

        logger.debug(f"Collected {len(all_items)} total items")
        return_items: list[dict[str, Any]] = all_items[:target_count]
        return return_items

    async def get_issue_comments(
        self, repository: str, number: int, per_page: int = 100, max_pages: int | None = None
    ) -> list[dict[str, Any]]:
        """Get the comments on an issue in chronological order.

        Args:
            repository: Repository full name (owner/name)
            number: Issue number
            per_page: Results per page (max 100)
            max_pages: Stop after this many pages (None for all)

        Returns:
            List of comment dictionaries

        Raises:
            httpx.HTTPStatusError: If the request fails
        """
        return await self._get_paginated(
            f"{self.base_url}/repos/{repository}/issues/{number}/comments",
            per_page=per_page,
            max_pages=max_pages,
        )

    async def get_issue_timeline(
        self, repository: str, number: int, per_page: int = 100, max_pages: int | None = None
    ) -> list[dict[str, Any]]:
        """Get the timeline events of an issue (labels, cross references, closes, ...).

        Args:
            repository: Repository full name (owner/name)
            number: Issue number
            per_page: Results per page (max 100)
            max_pages: Stop after this many pages (None for all)

        Returns:
            List of timeline event dictionaries

        Raises:
            httpx.HTTPStatusError: If the request fails
        """
        return await self._get_paginated(
            f"{self.base_url}/repos/{repository}/issues/{number}/timeline",
            per_page=per_page,
            max_pages=max_pages,
        )

    async def check_org_membership(self, org: str, username: str) -> bool:
        """Check whether a user belongs to an organization.

        GitHub answers 204 for members and 404 for non-members. When the token
        does not belong to the organization the request is redirected to the
        public membership endpoint, which the client follows.

        Raises:
            httpx.HTTPStatusError: For failures other than 404
        """
        try:
            await self._request_with_retry("GET", f"{self.base_url}/orgs/{org}/members/{username}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return False
            raise
        return True

    async def list_org_members(self, org: str, per_page: int = 100) -> list[dict[str, Any]]:
        """List every member of an organization visible to the token."""
        return await self._get_paginated(f"{self.base_url}/orgs/{org}/members", per_page=per_page)

    async def get_collaborator_permission(self, repository: str, username: str) -> str | None:
        """Get a user's permission level on a repository.

        Returns:
            One of "admin", "maintain", "write", "triage", "read", "none",
            or None when GitHub does not know the user as a collaborator.
        """
        try:
            response = await self._request_with_retry(
                "GET", f"{self.base_url}/repos/{repository}/collaborators/{username}/permission"
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            raise
        permission: str | None = response.json().get("permission")
        return permission

    async def list_commits(
        self,
        repository: str,
        since: datetime | None = None,
        until: datetime | None = None,
        per_page: int = 100,
        max_pages: int | None = 10,
    ) -> list[dict[str, Any]]:
        """List commits on the default branch of a repository within a time window."""
        params: dict[str, Any] = {}
        if since:
            params["since"] = since.isoformat()
        if until:
            params["until"] = until.isoformat()
        return await self._get_paginated(
            f"{self.base_url}/repos/{repository}/commits",
            params=params,
            per_page=per_page,
            max_pages=max_pages,
        )

    async def get_rate_limit(self) -> dict[str, Any]:
        """Get current rate limit status.

        Returns:
            Rate limit data dictionary

        Raises:
            httpx.HTTPStatusError: If the request fails
        """
        if not self._client:
            raise RuntimeError("Client not initialized - use async with context manager")

        response = await self._client.get(f"{self.base_url}/rate_limit")
        response.raise_for_status()
        result: dict[str, Any] = response.json()
        return result
