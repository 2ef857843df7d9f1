"""Error types shared by the GitHub pipeline, the feedback store and the web API."""

from enum import Enum

import httpx


class ErrorCategory(str, Enum):
    """Coarse, user-facing classification of a failure."""

    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NETWORK = "network"
    SERVER = "server"
    CLIENT = "client"


CATEGORY_MESSAGES = {
    ErrorCategory.RATE_LIMITED: "GitHub API rate limit exceeded, please retry later.",
    ErrorCategory.TIMEOUT: "The upstream request timed out, please retry.",
    ErrorCategory.NETWORK: "Could not reach the upstream service, check the network and retry.",
    ErrorCategory.SERVER: "The upstream service returned an error, please retry later.",
    ErrorCategory.CLIENT: "The request was rejected by the upstream service.",
}


class PulseboardError(Exception):
    """Base class for errors surfaced to API and CLI callers."""

    category: ErrorCategory = ErrorCategory.SERVER

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidQueryError(PulseboardError):
    """Malformed caller input. Rejected immediately and never retried."""

    category = ErrorCategory.CLIENT


class UpstreamError(PulseboardError):
    """An upstream call failed after retries were exhausted."""

    def __init__(self, message: str, category: ErrorCategory, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.category = category
        self.cause = cause


class FeedbackStoreError(UpstreamError):
    """The LeanCloud feedback store rejected or failed a request."""


class AggregationCancelled(Exception):
    """Raised internally when a cancellation token fires.

    This is not an error from the caller's point of view: the metrics service
    turns it into an empty (None) result.
    """


def is_rate_limit_response(response: httpx.Response) -> bool:
    """Return True when a response signals an exhausted rate limit."""
    if response.status_code == 429:
        return True
    return response.status_code == 403 and response.headers.get("X-RateLimit-Remaining", "") == "0"


def categorize_upstream_error(error: BaseException) -> ErrorCategory:
    """Map a raw exception from an upstream call to an ErrorCategory."""
    if isinstance(error, UpstreamError):
        return error.category
    if isinstance(error, httpx.TimeoutException):
        return ErrorCategory.TIMEOUT
    if isinstance(error, httpx.TransportError):
        return ErrorCategory.NETWORK
    if isinstance(error, httpx.HTTPStatusError):
        if is_rate_limit_response(error.response):
            return ErrorCategory.RATE_LIMITED
        if error.response.status_code >= 500:
            return ErrorCategory.SERVER
        return ErrorCategory.CLIENT
    return ErrorCategory.SERVER


def to_upstream_error(error: BaseException, context: str | None = None) -> UpstreamError:
    """Wrap a raw upstream exception into an UpstreamError with a readable message."""
    if isinstance(error, UpstreamError):
        return error
    category = categorize_upstream_error(error)
    message = CATEGORY_MESSAGES[category]
    if context:
        message = f"{context}: {message}"
    return UpstreamError(message, category=category, cause=error)
