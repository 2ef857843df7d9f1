"""Async client for the LeanCloud store holding documentation feedback."""

import json
from datetime import date, datetime, time, timedelta, timezone
from logging import getLogger
from typing import Any

import httpx
from pydantic import SecretStr

from pulseboard.conf.leancloud import LeanCloudSettings

from .errors import FeedbackStoreError, categorize_upstream_error
from .github.models import Feedback
from .github.retry import retrying

logger = getLogger(__name__)


def _as_datetime(value: date, end_of_range: bool = False) -> datetime:
    """Convert a date to the UTC instant bounding a query range.

    A plain date used as the end of a range means "through the end of that
    day", so it becomes midnight of the following day.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if end_of_range:
        value = value + timedelta(days=1)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _lc_date(value: datetime) -> dict[str, str]:
    iso = value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
    return {"__type": "Date", "iso": iso}


def build_feedback_filter(start: date, end: date, repo: str | None = None) -> dict[str, Any]:
    """Build the LeanCloud ``where`` filter for feedback created in ``[start, end)``."""
    where: dict[str, Any] = {
        "createdAt": {
            "$gte": _lc_date(_as_datetime(start)),
            "$lt": _lc_date(_as_datetime(end, end_of_range=True)),
        }
    }
    if repo:
        where["repo"] = repo
    return where


class FeedbackStoreClient:
    """Reads and updates feedback records through the LeanCloud REST API."""

    def __init__(
        self,
        app_id: str,
        app_key: SecretStr,
        api_url: str = "https://api.leancloud.cn/1.1",
        class_name: str = "UserFeedback",
        query_limit: int = 1000,
        timeout: float = 30.0,
    ) -> None:
        self.app_id = app_id
        self.app_key = app_key.get_secret_value()
        self.api_url = api_url.rstrip("/")
        self.class_name = class_name
        self.query_limit = query_limit
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, config: LeanCloudSettings) -> "FeedbackStoreClient":
        """Build a client from settings.

        Raises:
            ValueError: If the LeanCloud credentials are not configured
        """
        if not config.leancloud_app_id or not config.leancloud_app_key:
            raise ValueError("LeanCloud credentials not configured")
        return cls(
            app_id=config.leancloud_app_id,
            app_key=config.leancloud_app_key,
            api_url=config.leancloud_api_url,
            class_name=config.leancloud_class_name,
            query_limit=config.leancloud_query_limit,
        )

    async def __aenter__(self) -> "FeedbackStoreClient":
        self._client = httpx.AsyncClient(
            headers={
                "X-LC-Id": self.app_id,
                "X-LC-Key": self.app_key,
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(self.timeout, connect=10.0),
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def class_url(self) -> str:
        return f"{self.api_url}/classes/{self.class_name}"

    @retrying(max_retries=2, base_delay=1.0)
    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if not self._client:
            raise RuntimeError("Client not initialized - use async with context manager")
        response = await self._client.request(method, url, **kwargs)
        response.raise_for_status()
        return response

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._send(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"LeanCloud {method} {url} failed: {e}")
            raise FeedbackStoreError(
                f"Feedback store request failed: {e}",
                category=categorize_upstream_error(e),
                cause=e,
            ) from e

    async def list_feedback(
        self,
        start: date,
        end: date,
        repo: str | None = None,
        limit: int | None = None,
    ) -> list[Feedback]:
        """List feedback created between ``start`` and ``end``.

        Raises:
            FeedbackStoreError: If the store cannot be queried
        """
        params = {
            "limit": str(limit or self.query_limit),
            "where": json.dumps(build_feedback_filter(start, end, repo)),
        }
        response = await self._request("GET", self.class_url, params=params)
        results = response.json().get("results", [])

        feedback: list[Feedback] = []
        for item in results:
            try:
                feedback.append(Feedback.from_api(item))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed feedback record: {e}")
        logger.info(f"Loaded {len(feedback)} feedback records")
        return feedback

    async def set_resolved(self, object_id: str, resolved: bool) -> dict[str, Any]:
        """Mark a feedback record as resolved or unresolved.

        Raises:
            FeedbackStoreError: If the update is rejected
        """
        response = await self._request(
            "PUT",
            f"{self.class_url}/{object_id}",
            json={"isResolved": "1" if resolved else "0"},
        )
        result: dict[str, Any] = response.json()
        return result
