"""Cooperative cancellation for multi-repository aggregation."""

import asyncio

from .errors import AggregationCancelled


class CancellationToken:
    """A single cancellation signal shared by every fetch of one aggregation.

    Workers call ``raise_if_cancelled()`` before starting a unit of work and
    again after each ``await`` resumes.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AggregationCancelled(self.reason or "aggregation cancelled")

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()


def check_cancelled(token: CancellationToken | None) -> None:
    """Raise AggregationCancelled if ``token`` has fired. A missing token never fires."""
    if token is not None:
        token.raise_if_cancelled()
