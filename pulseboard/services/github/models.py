from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any

# Comment bodies are only kept as a short preview
COMMENT_BODY_PREVIEW = 200


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a GitHub/LeanCloud ISO-8601 timestamp into an aware datetime."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


def repository_from_item(item: dict[str, Any]) -> str:
    """Extract ``owner/name`` from a search result item."""
    repo_url = item.get("repository_url", "")
    if repo_url:
        return "/".join(repo_url.split("/")[-2:])
    # Fallback: parse from html_url
    url_parts = item.get("html_url", "").split("/")
    return f"{url_parts[3]}/{url_parts[4]}"


def is_bot_account(login: str | None, account_type: str | None) -> bool:
    if account_type == "Bot":
        return True
    return login is not None and login.endswith("[bot]")


class ResponseSource(str, Enum):
    """What counted as the first response to an issue."""

    COMMENT = "comment"
    TIMELINE = "timeline"
    CLOSED = "closed"
    MAINTAINER = "maintainer"


@dataclass
class Issue:
    """Domain model for a GitHub issue as returned by the search API."""

    number: int
    title: str
    repository: str
    state: str
    created_at: datetime
    closed_at: datetime | None
    author: str | None
    url: str
    labels: list[str] = field(default_factory=list)
    comments: int = 0
    author_type: str | None = None

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> "Issue":
        user = item.get("user") or {}
        created_at = parse_timestamp(item["created_at"])
        if created_at is None:
            raise ValueError(f"Issue {item.get('number')} has no creation time")
        return cls(
            number=item["number"],
            title=item.get("title", ""),
            repository=repository_from_item(item),
            state=item.get("state", "open"),
            created_at=created_at,
            closed_at=parse_timestamp(item.get("closed_at")),
            author=user.get("login"),
            author_type=user.get("type"),
            url=item.get("html_url", ""),
            labels=[label["name"] if isinstance(label, dict) else str(label) for label in item.get("labels", [])],
            comments=item.get("comments", 0) or 0,
        )

    @property
    def is_closed(self) -> bool:
        return self.state == "closed" and self.closed_at is not None


@dataclass
class Comment:
    id: int
    author: str | None
    author_type: str | None
    created_at: datetime
    body: str = ""

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> "Comment":
        user = item.get("user") or {}
        created_at = parse_timestamp(item["created_at"])
        if created_at is None:
            raise ValueError(f"Comment {item.get('id')} has no creation time")
        return cls(
            id=item["id"],
            author=user.get("login"),
            author_type=user.get("type"),
            created_at=created_at,
            body=(item.get("body") or "")[:COMMENT_BODY_PREVIEW],
        )

    @property
    def is_bot(self) -> bool:
        return is_bot_account(self.author, self.author_type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user": {"login": self.author, "type": self.author_type},
            "createdAt": format_timestamp(self.created_at),
            "body": self.body,
        }


@dataclass
class TimelineEvent:
    """A single issue timeline event.

    Only ``labeled`` and ``cross-referenced`` events take part in response
    detection; everything else is kept for display.
    """

    event: str
    actor: str | None
    actor_type: str | None
    created_at: datetime
    label: str | None = None
    source_number: int | None = None
    source_is_pull_request: bool = False

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> "TimelineEvent | None":
        """Build an event from the timeline API, or None for events without a timestamp (commits)."""
        created_at = parse_timestamp(item.get("created_at"))
        if created_at is None:
            return None
        # Comment events carry "user" rather than "actor"
        actor = item.get("actor") or item.get("user") or {}
        label = item.get("label") or {}
        source_issue = (item.get("source") or {}).get("issue") or {}
        return cls(
            event=item.get("event", ""),
            actor=actor.get("login"),
            actor_type=actor.get("type"),
            created_at=created_at,
            label=label.get("name"),
            source_number=source_issue.get("number"),
            source_is_pull_request=bool(source_issue.get("pull_request")),
        )

    @property
    def is_bot(self) -> bool:
        return is_bot_account(self.actor, self.actor_type)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "event": self.event,
            "actor": {"login": self.actor, "type": self.actor_type} if self.actor else None,
            "createdAt": format_timestamp(self.created_at),
        }
        if self.label is not None:
            result["label"] = {"name": self.label}
        if self.source_number is not None:
            result["source"] = {"number": self.source_number, "isPullRequest": self.source_is_pull_request}
        return result


@dataclass
class IssueDetails:
    comments: list[Comment] = field(default_factory=list)
    timeline: list[TimelineEvent] = field(default_factory=list)

    @classmethod
    def from_api(cls, comments: list[dict[str, Any]], timeline: list[dict[str, Any]]) -> "IssueDetails":
        events = [TimelineEvent.from_api(item) for item in timeline]
        return cls(
            comments=[Comment.from_api(item) for item in comments],
            timeline=[event for event in events if event is not None],
        )


@dataclass
class AnalyzedIssue(Issue):
    """An issue together with the outcome of response analysis."""

    has_response: bool = False
    response_time_in_hours: float | None = None
    meets_sla: bool = False
    response_source: ResponseSource | None = None
    error: str | None = None

    @classmethod
    def from_issue(cls, issue: Issue, **analysis: Any) -> "AnalyzedIssue":
        values = {f.name: getattr(issue, f.name) for f in fields(Issue)}
        values["labels"] = list(issue.labels)
        return cls(**values, **analysis)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "number": self.number,
            "title": self.title,
            "repository": self.repository,
            "state": self.state,
            "url": self.url,
            "author": self.author,
            "labels": list(self.labels),
            "comments": self.comments,
            "createdAt": format_timestamp(self.created_at),
            "closedAt": format_timestamp(self.closed_at),
            "hasResponse": self.has_response,
            "responseTimeInHours": self.response_time_in_hours,
            "meetsSLA": self.meets_sla,
            "responseSource": self.response_source.value if self.response_source else None,
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class PullRequestInfo:
    """Domain model for pull request information."""

    number: int
    title: str
    repository: str
    url: str
    state: str
    created_at: datetime
    merged_at: datetime | None
    closed_at: datetime | None
    author: str | None
    pr_type: str = "other"
    author_association: str | None = None  # Contributor relationship (OWNER, MEMBER, CONTRIBUTOR, etc.)

    def get_display_state(self) -> str:
        """Get the display state of the PR.

        GitHub API returns "open" or "closed" as state values.
        This method determines the actual semantic state:
        - "merged" if closed with merged_at timestamp
        - "open" if still open
        - "closed" if closed without being merged

        Returns:
            The display state: "merged", "open", or "closed"
        """
        if self.state == "closed" and self.merged_at:
            return "merged"
        return self.state

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "title": self.title,
            "repository": self.repository,
            "url": self.url,
            "state": self.get_display_state(),
            "type": self.pr_type,
            "author": self.author,
            "authorAssociation": self.author_association,
            "createdAt": format_timestamp(self.created_at),
            "mergedAt": format_timestamp(self.merged_at),
            "closedAt": format_timestamp(self.closed_at),
        }


class ContributorRole(str, Enum):
    """Repository role of a contributor, ordered by ``rank``."""

    OWNER = "OWNER"
    MEMBER = "MEMBER"
    COLLABORATOR = "COLLABORATOR"
    CONTRIBUTOR = "CONTRIBUTOR"
    FIRST_TIME_CONTRIBUTOR = "FIRST_TIME_CONTRIBUTOR"
    FIRST_TIMER = "FIRST_TIMER"
    NONE = "NONE"

    @property
    def rank(self) -> int:
        return ROLE_RANKS[self]

    @property
    def is_maintainer(self) -> bool:
        return self in (ContributorRole.OWNER, ContributorRole.MEMBER)


ROLE_RANKS = {
    ContributorRole.OWNER: 5,
    ContributorRole.MEMBER: 4,
    ContributorRole.COLLABORATOR: 3,
    ContributorRole.CONTRIBUTOR: 2,
    ContributorRole.FIRST_TIME_CONTRIBUTOR: 1,
    ContributorRole.FIRST_TIMER: 1,
    ContributorRole.NONE: 0,
}


@dataclass
class Contributor:
    login: str
    avatar_url: str | None = None
    url: str | None = None
    contributions: int = 0
    pull_requests: int = 0
    role: ContributorRole = ContributorRole.CONTRIBUTOR
    is_maintainer: bool = False
    repositories: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "login": self.login,
            "avatarUrl": self.avatar_url,
            "htmlUrl": self.url,
            "contributions": self.contributions,
            "pullRequests": self.pull_requests,
            "role": self.role.value,
            "isMaintainer": self.is_maintainer,
            "repos": list(self.repositories),
        }


@dataclass
class Feedback:
    """A documentation feedback record from the LeanCloud store."""

    object_id: str
    created_at: datetime
    repo: str | None = None
    url: str | None = None
    title: str | None = None
    comment: str | None = None
    rating: str | None = None  # "1" for a positive page rating, anything else negative
    reason: str | None = None
    is_resolved: bool = False

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> "Feedback":
        created_at = parse_timestamp(item.get("createdAt"))
        if created_at is None:
            raise ValueError(f"Feedback {item.get('objectId')} has no creation time")
        rating = item.get("rating")
        return cls(
            object_id=item["objectId"],
            created_at=created_at,
            repo=item.get("repo"),
            url=item.get("url"),
            title=item.get("title"),
            comment=item.get("comment"),
            rating=str(rating) if rating not in (None, "") else None,
            reason=item.get("reason"),
            is_resolved=str(item.get("isResolved", "0")) == "1",
        )

    @property
    def is_suggestion(self) -> bool:
        """Free-text suggestions are records that carry no rating."""
        return self.rating is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "objectId": self.object_id,
            "createdAt": format_timestamp(self.created_at),
            "repo": self.repo,
            "url": self.url,
            "title": self.title,
            "comment": self.comment,
            "rating": self.rating,
            "reason": self.reason,
            "isResolved": "1" if self.is_resolved else "0",
        }
