"""Tests for cooperative cancellation."""

import asyncio

import pytest

from pulseboard.services.cancellation import CancellationToken, check_cancelled
from pulseboard.services.errors import AggregationCancelled


def test_token_starts_live() -> None:
    token = CancellationToken()

    assert token.cancelled is False
    token.raise_if_cancelled()
    check_cancelled(token)


def test_missing_token_never_fires() -> None:
    check_cancelled(None)


def test_cancel_raises_with_reason() -> None:
    token = CancellationToken()
    token.cancel("superseded")

    with pytest.raises(AggregationCancelled, match="superseded"):
        check_cancelled(token)


def test_first_reason_kept() -> None:
    token = CancellationToken()
    token.cancel("first")
    token.cancel("second")

    assert token.reason == "first"


@pytest.mark.asyncio
async def test_wait_released_by_cancel() -> None:
    token = CancellationToken()
    waiter = asyncio.ensure_future(token.wait())
    await asyncio.sleep(0)

    assert not waiter.done()
    token.cancel()
    await asyncio.wait_for(waiter, timeout=1)
    assert token.cancelled is True
