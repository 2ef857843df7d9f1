"""Metric calculations over analyzed issues and documentation feedback."""

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote, urlsplit

from .github.models import AnalyzedIssue, Feedback


def round_half_up(value: float, digits: int = 0) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def percentage(part: int, total: int, empty: int = 100) -> int:
    """Integer percentage of ``part`` in ``total``; ``empty`` when there is nothing to measure."""
    if total == 0:
        return empty
    return int(round_half_up(part / total * 100))


def response_hours(issues: Iterable[AnalyzedIssue]) -> list[float]:
    """Response times of the issues that received a response."""
    return [i.response_time_in_hours for i in issues if i.has_response and i.response_time_in_hours is not None]


def average_hours(hours: Sequence[float]) -> float:
    if not hours:
        return 0.0
    return round_half_up(sum(hours) / len(hours), 1)


def median_hours(hours: Sequence[float]) -> float | None:
    """Upper median, matching how the dashboard has always reported it."""
    if not hours:
        return None
    ordered = sorted(hours)
    return ordered[len(ordered) // 2]


@dataclass
class RepoMetrics:
    repository: str
    total_issues: int = 0
    resolved_issues: int = 0
    responded_issues: int = 0
    responded_48h_issues: int = 0
    resolve_rate: int = 100
    response_rate: int = 100
    response_48h_rate: int = 100
    avg_response_time_in_hours: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "repo": self.repository,
            "totalIssues": self.total_issues,
            "resolvedIssues": self.resolved_issues,
            "respondedIssues": self.responded_issues,
            "responded48hIssues": self.responded_48h_issues,
            "resolveRate": self.resolve_rate,
            "responseRate": self.response_rate,
            "response48hRate": self.response_48h_rate,
            "avgResponseTimeInHours": self.avg_response_time_in_hours,
        }


@dataclass
class IssueMetricsSummary:
    total_issues: int = 0
    resolved_issues: int = 0
    open_issues: int = 0
    responded_issues: int = 0
    responded_48h_issues: int = 0
    resolve_rate: int = 100
    response_rate: int = 100
    response_48h_rate: int = 100
    avg_response_time_in_hours: float = 0.0
    median_response_time_in_hours: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalIssues": self.total_issues,
            "resolvedIssues": self.resolved_issues,
            "openIssues": self.open_issues,
            "respondedIssues": self.responded_issues,
            "responded48hIssues": self.responded_48h_issues,
            "resolveRate": self.resolve_rate,
            "responseRate": self.response_rate,
            "response48hRate": self.response_48h_rate,
            "avgResponseTimeInHours": self.avg_response_time_in_hours,
            "medianResponseTimeInHours": self.median_response_time_in_hours,
        }


def compute_repo_metrics(repository: str, issues: Sequence[AnalyzedIssue]) -> RepoMetrics:
    """Per-repository counts and rates. Every rate is 100 for a repository without issues."""
    total = len(issues)
    resolved = sum(1 for i in issues if i.state == "closed")
    responded = sum(1 for i in issues if i.has_response)
    within_sla = sum(1 for i in issues if i.meets_sla)
    return RepoMetrics(
        repository=repository,
        total_issues=total,
        resolved_issues=resolved,
        responded_issues=responded,
        responded_48h_issues=within_sla,
        resolve_rate=percentage(resolved, total),
        response_rate=percentage(responded, total),
        response_48h_rate=percentage(within_sla, total),
        avg_response_time_in_hours=average_hours(response_hours(issues)),
    )


def summarize_issues(issues: Sequence[AnalyzedIssue]) -> IssueMetricsSummary:
    """Combined metrics across every repository in a result."""
    combined = compute_repo_metrics("", issues)
    return IssueMetricsSummary(
        total_issues=combined.total_issues,
        resolved_issues=combined.resolved_issues,
        open_issues=sum(1 for i in issues if i.state == "open"),
        responded_issues=combined.responded_issues,
        responded_48h_issues=combined.responded_48h_issues,
        resolve_rate=combined.resolve_rate,
        response_rate=combined.response_rate,
        response_48h_rate=combined.response_48h_rate,
        avg_response_time_in_hours=combined.avg_response_time_in_hours,
        median_response_time_in_hours=median_hours(response_hours(issues)),
    )


@dataclass
class DocFeedbackMetrics:
    """Processing status of free-text documentation suggestions."""

    total: int = 0
    resolved: int = 0
    pending: int = 0
    resolve_rate: int = 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "resolved": self.resolved,
            "pending": self.pending,
            "resolveRate": self.resolve_rate,
        }


@dataclass
class PageRating:
    url: str
    repo: str | None = None
    good_reviews: int = 0
    bad_reviews: int = 0
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "repo": self.repo,
            "goodReviews": self.good_reviews,
            "badReviews": self.bad_reviews,
            "comments": list(self.reasons),
        }


def compute_doc_metrics(feedback: Iterable[Feedback], repos: Iterable[str] | None = None) -> DocFeedbackMetrics:
    """Count resolved and pending suggestions, optionally only for some repositories."""
    wanted = set(repos) if repos else None
    suggestions = [f for f in feedback if f.is_suggestion and (wanted is None or f.repo in wanted)]
    resolved = sum(1 for f in suggestions if f.is_resolved)
    return DocFeedbackMetrics(
        total=len(suggestions),
        resolved=resolved,
        pending=len(suggestions) - resolved,
        resolve_rate=percentage(resolved, len(suggestions)),
    )


def _page_path(url: str) -> str:
    # Ratings are grouped by page path so that hosts and mirrors collapse together
    return unquote(urlsplit(url).path).lstrip("/")


def summarize_page_ratings(feedback: Iterable[Feedback]) -> list[PageRating]:
    """Group rated feedback by page, counting positive ("1") and negative ratings."""
    pages: dict[str, PageRating] = {}
    for item in feedback:
        if item.is_suggestion:
            continue
        path = _page_path(item.url or "")
        page = pages.setdefault(path, PageRating(url=path, repo=item.repo))
        if item.rating == "1":
            page.good_reviews += 1
        else:
            page.bad_reviews += 1
        if item.reason and item.reason not in page.reasons:
            page.reasons.append(item.reason)
    return list(pages.values())
