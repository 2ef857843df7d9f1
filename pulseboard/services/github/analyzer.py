"""First-response detection and SLA classification for issues."""

import math
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timezone
from logging import getLogger
from typing import TypeVar

from .membership import MembershipResolver
from .models import AnalyzedIssue, Comment, Issue, IssueDetails, ResponseSource, TimelineEvent

logger = getLogger(__name__)

T = TypeVar("T")

DEFAULT_TRIAGE_LABELS = ("OSCP",)


def round_hours(seconds: float) -> float:
    """Convert seconds to hours rounded half-up to one decimal place."""
    return math.floor(seconds / 3600 * 10 + 0.5) / 10


def _same_user(a: str | None, b: str | None) -> bool:
    return a is not None and b is not None and a.lower() == b.lower()


async def select_first_response(
    candidates: Iterable[T],
    actor: Callable[[T], str | None],
    timestamp: Callable[[T], datetime],
    is_privileged: Callable[[str | None], Awaitable[bool]],
) -> T | None:
    """Pick the earliest candidate made by a privileged actor.

    Falls back to the earliest candidate overall when no privileged actor
    took part.
    """
    ordered = sorted(candidates, key=timestamp)
    for candidate in ordered:
        if await is_privileged(actor(candidate)):
            return candidate
    return ordered[0] if ordered else None


class IssueResponseAnalyzer:
    """Classifies issues as responded or not and measures time to first response."""

    def __init__(
        self,
        membership: MembershipResolver,
        sla_hours: float = 48,
        triage_labels: Iterable[str] = DEFAULT_TRIAGE_LABELS,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.membership = membership
        self.sla_hours = sla_hours
        self.triage_labels = frozenset(triage_labels)
        self.now = now or (lambda: datetime.now(timezone.utc))

    async def analyze(
        self,
        issue: Issue,
        details: IssueDetails | None = None,
        error: str | None = None,
    ) -> AnalyzedIssue:
        """Analyze a single issue.

        Args:
            issue: The issue to analyze
            details: Comments and timeline, or None to use only the issue state
            error: Marker recorded on the result when fetching details failed

        Returns:
            The issue with response fields populated
        """
        if await self.membership.is_privileged(issue.author):
            return AnalyzedIssue.from_issue(
                issue,
                has_response=True,
                response_time_in_hours=0.0,
                meets_sla=True,
                response_source=ResponseSource.MAINTAINER,
                error=error,
            )

        responded_at: datetime | None = None
        source: ResponseSource | None = None

        if details is not None:
            responded_at, source = await self._first_response(issue, details)

        if responded_at is None and issue.is_closed:
            responded_at, source = issue.closed_at, ResponseSource.CLOSED

        if responded_at is not None:
            hours = round_hours((responded_at - issue.created_at).total_seconds())
            has_response = True
        else:
            # Unanswered issues report how long they have been waiting
            hours = round_hours((self.now() - issue.created_at).total_seconds())
            has_response = False

        hours = max(hours, 0.0)
        return AnalyzedIssue.from_issue(
            issue,
            has_response=has_response,
            response_time_in_hours=hours,
            meets_sla=has_response and hours <= self.sla_hours,
            response_source=source,
            error=error,
        )

    async def _first_response(
        self, issue: Issue, details: IssueDetails
    ) -> tuple[datetime | None, ResponseSource | None]:
        comment = await self._comment_candidate(issue, details.comments)
        label = await self._label_candidate(issue, details.timeline)
        reference = self._reference_candidate(issue, details.timeline)

        # Ordered so that a comment wins a tie
        candidates: list[tuple[datetime, int, ResponseSource]] = []
        if comment is not None:
            candidates.append((comment.created_at, 0, ResponseSource.COMMENT))
        if label is not None:
            candidates.append((label.created_at, 1, ResponseSource.TIMELINE))
        if reference is not None:
            candidates.append((reference.created_at, 2, ResponseSource.TIMELINE))

        if not candidates:
            return None, None
        responded_at, _, source = min(candidates, key=lambda c: (c[0], c[1]))
        return responded_at, source

    async def _comment_candidate(self, issue: Issue, comments: list[Comment]) -> Comment | None:
        qualifying = [c for c in comments if not c.is_bot and not _same_user(c.author, issue.author)]
        return await select_first_response(
            qualifying,
            actor=lambda c: c.author,
            timestamp=lambda c: c.created_at,
            is_privileged=self.membership.is_privileged,
        )

    async def _label_candidate(self, issue: Issue, timeline: list[TimelineEvent]) -> TimelineEvent | None:
        labeled = [e for e in timeline if e.event == "labeled"]
        by_others = [e for e in labeled if e.actor and not e.is_bot and not _same_user(e.actor, issue.author)]
        chosen = await select_first_response(
            by_others,
            actor=lambda e: e.actor,
            timestamp=lambda e: e.created_at,
            is_privileged=self.membership.is_privileged,
        )

        # Triage labels count whoever applied them
        triage = [e for e in labeled if e.label in self.triage_labels]
        if triage:
            first_triage = min(triage, key=lambda e: e.created_at)
            if chosen is None or first_triage.created_at < chosen.created_at:
                chosen = first_triage
        return chosen

    def _reference_candidate(self, issue: Issue, timeline: list[TimelineEvent]) -> TimelineEvent | None:
        references = [
            e
            for e in timeline
            if e.event == "cross-referenced"
            and e.source_is_pull_request
            and e.source_number != issue.number
            and not e.is_bot
        ]
        return min(references, key=lambda e: e.created_at, default=None)
