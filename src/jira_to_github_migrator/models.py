"""Data models exchanged between the Jira source, the orchestrator and GitHub.

Source-side records are immutable snapshots built once per run by
:mod:`jira_utils`. The import payload is the only mutable build artifact:
profile payload processors may adjust it (e.g. drop the assignee) before it
is submitted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from .utils import format_size


@dataclass(frozen=True)
class SourceUser:
    """A Jira user as referenced from issues and comments."""

    key: str
    display_name: str
    browser_url: str = ""


@dataclass(frozen=True)
class SourceComment:
    author: SourceUser
    body: str
    created: datetime


@dataclass(frozen=True)
class IssueRef:
    """Reference to another Jira issue (parent, sub-task)."""

    key: str
    summary: str = ""
    issue_type: str = ""


@dataclass(frozen=True)
class IssueLink:
    """A typed, directional link from one Jira issue to another.

    ``description`` is the phrase Jira shows for the direction, e.g.
    "is duplicated by" for an inward duplicate link.
    """

    direction: Literal["outward", "inward"]
    description: str
    key: str
    summary: str = ""


@dataclass(frozen=True)
class Attachment:
    filename: str
    content_url: str
    size: int = 0

    @property
    def size_to_display(self) -> str:
        return format_size(self.size)


@dataclass(frozen=True)
class SourceVersion:
    """A Jira project version, used to create GitHub milestones."""

    name: str
    released: bool = False
    release_date: datetime | None = None
    description: str = ""


@dataclass(frozen=True)
class SourceIssue:
    """Immutable snapshot of a Jira issue, fetched once per run.

    ``fix_version`` and ``backport_versions`` are derived at load time from
    ``fix_versions`` by :func:`versions.split_releases`.
    """

    key: str
    summary: str
    created: datetime
    updated: datetime
    browse_base: str
    description: str = ""
    reporter: SourceUser | None = None
    assignee: SourceUser | None = None
    status: str = ""
    resolution: str | None = None
    issue_type: str = ""
    components: tuple[str, ...] = ()
    fix_versions: tuple[str, ...] = ()
    affects_versions: tuple[str, ...] = ()
    labels: tuple[str, ...] = ()
    links: tuple[IssueLink, ...] = ()
    parent: IssueRef | None = None
    subtasks: tuple[IssueRef, ...] = ()
    votes: int = 0
    watchers: int = 0
    attachments: tuple[Attachment, ...] = ()
    reference_url: str | None = None
    pull_request_url: str | None = None
    commit_urls: tuple[str, ...] = ()
    comments: tuple[SourceComment, ...] = ()
    is_public: bool = True
    fix_version: str | None = None
    backport_versions: tuple[str, ...] = ()

    @property
    def browser_url(self) -> str:
        return self.browser_url_for(self.key)

    def browser_url_for(self, key: str) -> str:
        """Return the Jira browse URL for ``key`` on this issue's server."""
        return f"{self.browse_base.rstrip('/')}/browse/{key}"


def to_iso(value: datetime) -> str:
    """Serialize a datetime the way the import API expects (UTC, ``Z`` suffix)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class TargetIssuePayload:
    """The ``issue`` object of a GitHub issue import request."""

    title: str
    body: str
    created_at: datetime
    updated_at: datetime | None = None
    closed_at: datetime | None = None
    closed: bool = False
    labels: list[str] = field(default_factory=list)
    milestone: int | None = None
    assignee: str | None = None

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "title": self.title,
            "body": self.body,
            "created_at": to_iso(self.created_at),
            "closed": self.closed,
            "labels": list(self.labels),
        }
        if self.updated_at is not None:
            data["updated_at"] = to_iso(self.updated_at)
        if self.closed_at is not None:
            data["closed_at"] = to_iso(self.closed_at)
        if self.milestone is not None:
            data["milestone"] = self.milestone
        if self.assignee is not None:
            data["assignee"] = self.assignee
        return data


@dataclass(frozen=True)
class ImportComment:
    body: str
    created_at: datetime

    def to_json(self) -> dict[str, Any]:
        return {"body": self.body, "created_at": to_iso(self.created_at)}


@dataclass(frozen=True)
class TargetMilestone:
    """A milestone as it exists in the GitHub repository."""

    number: int
    title: str
    state: Literal["open", "closed"] = "open"
    created_at: datetime | None = None
    due_on: datetime | None = None


@dataclass(frozen=True)
class ImportJob:
    """A submitted import request.

    ``source_key`` is the Jira key for primary issues, ``holder_for`` the
    milestone title for backport holder issues. Exactly one of them is set.
    """

    payload: TargetIssuePayload
    comments: tuple[ImportComment, ...]
    poll_url: str
    submitted_at: float
    source_key: str | None = None
    holder_for: str | None = None


@dataclass(frozen=True)
class ImportResult:
    """Terminal state of an import job."""

    issue_number: int | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.issue_number is not None
