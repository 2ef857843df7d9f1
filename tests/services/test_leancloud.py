"""Tests for the LeanCloud feedback store client."""

import json
from datetime import date, datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from pydantic import SecretStr

from pulseboard.conf.leancloud import LeanCloudSettings
from pulseboard.services.errors import ErrorCategory, FeedbackStoreError
from pulseboard.services.leancloud import FeedbackStoreClient, build_feedback_filter


def make_response(status_code: int = 200, json_data: Any = None) -> AsyncMock:
    mock_response = AsyncMock()
    mock_response.status_code = status_code
    mock_response.headers = {}
    mock_response.json = lambda: json_data
    if status_code >= 400:
        error = httpx.HTTPStatusError(f"HTTP {status_code}", request=AsyncMock(), response=mock_response)
        mock_response.raise_for_status = lambda: (_ for _ in ()).throw(error)
    else:
        mock_response.raise_for_status = lambda: None
    return mock_response


@pytest.fixture
def store() -> FeedbackStoreClient:
    return FeedbackStoreClient(app_id="app-id", app_key=SecretStr("app-key"), api_url="https://lc.example.com/1.1/")


def test_build_feedback_filter_end_is_exclusive_next_day() -> None:
    """Test that the end date covers the whole day."""
    where = build_feedback_filter(date(2024, 3, 1), date(2024, 3, 31), repo="antvis/g2")

    assert where == {
        "createdAt": {
            "$gte": {"__type": "Date", "iso": "2024-03-01T00:00:00.000Z"},
            "$lt": {"__type": "Date", "iso": "2024-04-01T00:00:00.000Z"},
        },
        "repo": "antvis/g2",
    }


def test_build_feedback_filter_datetime_bounds_kept() -> None:
    """Test that explicit instants are used as given."""
    where = build_feedback_filter(
        datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc),
        datetime(2024, 3, 2, 8, 30, 0, 250000, tzinfo=timezone.utc),
    )

    assert where["createdAt"]["$gte"]["iso"] == "2024-03-01T08:30:00.000Z"
    assert where["createdAt"]["$lt"]["iso"] == "2024-03-02T08:30:00.250Z"
    assert "repo" not in where


def test_from_settings_requires_credentials() -> None:
    with pytest.raises(ValueError):
        FeedbackStoreClient.from_settings(LeanCloudSettings(leancloud_app_id=None, leancloud_app_key=None))


def test_from_settings() -> None:
    config = LeanCloudSettings(leancloud_app_id="id", leancloud_app_key=SecretStr("key"), leancloud_query_limit=50)

    client = FeedbackStoreClient.from_settings(config)

    assert client.app_id == "id"
    assert client.app_key == "key"
    assert client.query_limit == 50


@pytest.mark.asyncio
async def test_context_manager_headers(store: FeedbackStoreClient) -> None:
    async with store:
        assert store._client is not None
        assert store._client.headers["X-LC-Id"] == "app-id"
        assert store._client.headers["X-LC-Key"] == "app-key"

    assert store._client is None


@pytest.mark.asyncio
async def test_list_feedback(store: FeedbackStoreClient) -> None:
    """Test listing feedback parses records and skips malformed ones."""
    results = {
        "results": [
            {
                "objectId": "abc",
                "createdAt": "2024-03-02T10:00:00.000Z",
                "repo": "antvis/g2",
                "url": "https://g2.antv.vision/manual/intro",
                "title": "Intro",
                "comment": "Typo in example",
                "isResolved": "1",
            },
            {"objectId": "def", "createdAt": "2024-03-03T10:00:00.000Z", "rating": 1},
            {"createdAt": "2024-03-04T10:00:00.000Z"},
        ]
    }

    with patch.object(store, "_client") as mock_http_client:
        mock_http_client.request = AsyncMock(return_value=make_response(json_data=results))

        feedback = await store.list_feedback(date(2024, 3, 1), date(2024, 3, 31), repo="antvis/g2")

    assert [f.object_id for f in feedback] == ["abc", "def"]
    assert feedback[0].is_resolved is True
    assert feedback[0].is_suggestion is True
    assert feedback[1].rating == "1"
    assert feedback[1].is_suggestion is False

    method, url = mock_http_client.request.call_args.args
    params = mock_http_client.request.call_args.kwargs["params"]
    assert (method, url) == ("GET", "https://lc.example.com/1.1/classes/UserFeedback")
    assert params["limit"] == "1000"
    assert json.loads(params["where"])["repo"] == "antvis/g2"


@pytest.mark.asyncio
async def test_set_resolved(store: FeedbackStoreClient) -> None:
    with patch.object(store, "_client") as mock_http_client:
        mock_http_client.request = AsyncMock(return_value=make_response(json_data={"updatedAt": "now"}))

        result = await store.set_resolved("abc", False)

    assert result == {"updatedAt": "now"}
    mock_http_client.request.assert_called_once_with(
        "PUT",
        "https://lc.example.com/1.1/classes/UserFeedback/abc",
        json={"isResolved": "0"},
    )


@pytest.mark.asyncio
async def test_store_error_wrapped(store: FeedbackStoreClient) -> None:
    """Test that upstream failures are retried and then wrapped."""
    with (
        patch.object(store, "_client") as mock_http_client,
        patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
    ):
        mock_http_client.request = AsyncMock(return_value=make_response(503))

        with pytest.raises(FeedbackStoreError) as exc_info:
            await store.list_feedback(date(2024, 3, 1), date(2024, 3, 31))

    assert exc_info.value.category == ErrorCategory.SERVER
    assert mock_http_client.request.call_count == 3
    assert mock_sleep.call_count == 2


@pytest.mark.asyncio
async def test_unauthorized_not_retried(store: FeedbackStoreClient) -> None:
    with patch.object(store, "_client") as mock_http_client:
        mock_http_client.request = AsyncMock(return_value=make_response(401))

        with pytest.raises(FeedbackStoreError) as exc_info:
            await store.set_resolved("abc", True)

    assert exc_info.value.category == ErrorCategory.CLIENT
    mock_http_client.request.assert_called_once()
