from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import date, datetime
from logging import getLogger
from typing import Any

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from pulseboard.services.aggregation import validate_query
from pulseboard.services.cache import configure_caches
from pulseboard.services.dashboard import Dashboard
from pulseboard.services.errors import (
    ErrorCategory,
    FeedbackStoreError,
    InvalidQueryError,
    UpstreamError,
    to_upstream_error,
)
from pulseboard.services.github.contributors import compute_contributor_stats
from pulseboard.services.github.issues import fetch_issue_details
from pulseboard.services.leancloud import FeedbackStoreClient
from pulseboard.services.metrics import compute_doc_metrics, summarize_page_ratings
from pulseboard.settings import settings

logger = getLogger(__name__)

# The details endpoint only needs enough history to find a first response
DETAIL_COMMENT_LIMIT = 10
DETAIL_EVENT_LIMIT = 50

CATEGORY_STATUS = {
    ErrorCategory.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCategory.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorCategory.NETWORK: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCategory.SERVER: status.HTTP_502_BAD_GATEWAY,
    ErrorCategory.CLIENT: status.HTTP_400_BAD_REQUEST,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan events."""
    # Startup: Initialize caches and the shared services
    configure_caches()
    async with AsyncExitStack() as stack:
        dashboard = await stack.enter_async_context(Dashboard.open(settings))
        app.state.dashboard = dashboard
        if settings.membership_preload:
            try:
                await dashboard.membership.preload()
            except httpx.HTTPError as e:
                logger.warning(f"Could not preload members of {settings.github_org}: {e}")
        yield


app = FastAPI(lifespan=lifespan)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )


# Request models


def _coerce_date(value: Any) -> Any:
    # Browsers send full ISO timestamps; only the calendar date matters
    if isinstance(value, str) and len(value) > 10:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    return value


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DateRangeRequest(ApiModel):
    start_date: date
    end_date: date

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def parse_dates(cls, v: Any) -> Any:
        return _coerce_date(v)


class RepoIssuesRequest(DateRangeRequest):
    repo: str


class MultiRepoRequest(DateRangeRequest):
    repos: list[str]


class IssueDetailsRequest(ApiModel):
    repo: str
    issue_number: int = Field(gt=0)


class CheckMemberRequest(ApiModel):
    username: str = Field(min_length=1)


class FeedbackRequest(DateRangeRequest):
    repo: str | None = None


class ResolveFeedbackRequest(ApiModel):
    object_id: str = Field(min_length=1)
    resolved: bool


# Dependencies


def get_dashboard(request: Request) -> Dashboard:
    dashboard: Dashboard = request.app.state.dashboard
    return dashboard


async def get_feedback_store() -> AsyncIterator[FeedbackStoreClient]:
    try:
        store = FeedbackStoreClient.from_settings(settings)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    async with store:
        yield store


def _validate(repos: list[str], start_date: date, end_date: date) -> list[str]:
    return validate_query(
        repos,
        start_date,
        end_date,
        max_repos=settings.max_repos_per_query,
        max_range_days=settings.max_query_range_days,
    )


# Exception Handlers


def _error_response(status_code: int, message: str, category: ErrorCategory | None = None) -> JSONResponse:
    content: dict[str, Any] = {"error": message}
    if category is not None:
        content["category"] = category.value
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(InvalidQueryError)
async def invalid_query_handler(request: Request, exc: InvalidQueryError) -> JSONResponse:
    return _error_response(status.HTTP_400_BAD_REQUEST, exc.message, exc.category)


@app.exception_handler(FeedbackStoreError)
async def feedback_store_handler(request: Request, exc: FeedbackStoreError) -> JSONResponse:
    return _error_response(status.HTTP_502_BAD_GATEWAY, exc.message, exc.category)


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    """Map upstream failures to a status code by category."""
    logger.warning(f"Upstream error on {request.url.path}: {exc.message}")
    return _error_response(CATEGORY_STATUS[exc.category], exc.message, exc.category)


@app.exception_handler(httpx.HTTPError)
async def http_error_handler(request: Request, exc: httpx.HTTPError) -> JSONResponse:
    error = to_upstream_error(exc)
    logger.warning(f"GitHub request failed on {request.url.path}: {exc}")
    return _error_response(CATEGORY_STATUS[error.category], error.message, error.category)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors."""
    logger.warning(f"Validation error: {exc.errors()}")
    return _error_response(status.HTTP_400_BAD_REQUEST, "Invalid request parameters.", ErrorCategory.CLIENT)


# Routes


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/github-issues")
async def github_issues(
    body: RepoIssuesRequest,
    dashboard: Dashboard = Depends(get_dashboard),
) -> list[dict[str, Any]]:
    """Analyzed issues of a single repository."""
    (repo,) = _validate([body.repo], body.start_date, body.end_date)
    issues = await dashboard.aggregator.fetch_repo_issues(repo, body.start_date, body.end_date)
    return [issue.to_dict() for issue in issues]


@app.post("/api/github-issues/details")
async def github_issue_details(
    body: IssueDetailsRequest,
    dashboard: Dashboard = Depends(get_dashboard),
) -> dict[str, Any]:
    """Recent comments and timeline events of one issue."""
    details = await fetch_issue_details(
        dashboard.client,
        body.repo,
        body.issue_number,
        comment_limit=DETAIL_COMMENT_LIMIT,
        event_limit=DETAIL_EVENT_LIMIT,
    )
    return {
        "comments": [comment.to_dict() for comment in details.comments],
        "timeline": [event.to_dict() for event in details.timeline],
    }


@app.post("/api/issue-metrics")
async def issue_metrics(
    body: MultiRepoRequest,
    dashboard: Dashboard = Depends(get_dashboard),
) -> dict[str, Any]:
    """Combined and per-repository issue response metrics.

    A request superseded by one for other repositories answers ``{"cancelled": true}``.
    """
    result = await dashboard.issue_metrics.request_issue_metrics(body.repos, body.start_date, body.end_date)
    if result is None:
        return {"cancelled": True}
    return result.to_dict()


@app.get("/api/issue-metrics/cache")
async def issue_metrics_cache(
    repo: str = Query(...),
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    dashboard: Dashboard = Depends(get_dashboard),
) -> dict[str, bool]:
    return {"valid": dashboard.issue_metrics.is_cache_valid(repo, start_date, end_date)}


@app.post("/api/check-member")
async def check_member(
    body: CheckMemberRequest,
    dashboard: Dashboard = Depends(get_dashboard),
) -> dict[str, bool]:
    return {"isMember": await dashboard.membership.is_privileged(body.username)}


@app.post("/api/pull-requests")
async def pull_requests(
    body: MultiRepoRequest,
    dashboard: Dashboard = Depends(get_dashboard),
) -> dict[str, Any]:
    repos = _validate(body.repos, body.start_date, body.end_date)
    report = await dashboard.pull_requests.build_report(repos, body.start_date, body.end_date)
    return report.to_dict()


@app.post("/api/contributors")
async def contributors(
    body: MultiRepoRequest,
    dashboard: Dashboard = Depends(get_dashboard),
) -> dict[str, Any]:
    repos = _validate(body.repos, body.start_date, body.end_date)
    merged = await dashboard.contributors.collect_contributors(repos, body.start_date, body.end_date)
    return {
        "contributors": [contributor.to_dict() for contributor in merged],
        "stats": compute_contributor_stats(merged).to_dict(),
    }


@app.post("/api/feedback")
async def feedback(
    body: FeedbackRequest,
    store: FeedbackStoreClient = Depends(get_feedback_store),
) -> dict[str, Any]:
    """Documentation feedback in a date range with suggestion and page rating summaries."""
    if body.start_date > body.end_date:
        raise InvalidQueryError("Start date must not be after end date")
    records = await store.list_feedback(body.start_date, body.end_date, repo=body.repo)
    return {
        "feedback": [record.to_dict() for record in records],
        "metrics": compute_doc_metrics(records).to_dict(),
        "pageRatings": [rating.to_dict() for rating in summarize_page_ratings(records)],
    }


@app.post("/api/resolve-feedback")
async def resolve_feedback(
    body: ResolveFeedbackRequest,
    store: FeedbackStoreClient = Depends(get_feedback_store),
) -> dict[str, Any]:
    await store.set_resolved(body.object_id, body.resolved)
    state = "resolved" if body.resolved else "unresolved"
    return {"success": True, "message": f"Feedback {body.object_id} marked as {state}"}
