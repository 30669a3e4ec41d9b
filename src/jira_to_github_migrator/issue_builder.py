"""Build GitHub import payloads from Jira issue data."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Final

from .models import ImportComment, TargetIssuePayload

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from .models import SourceIssue, SourceUser
    from .protocols import MarkupEngine

# Link types that add nothing over the plain list of linked issues
SUPPRESSED_LINK_TYPES: Final = frozenset({"relates to", "is related to"})

# Watchers are only worth mentioning from this count on, votes from 1
WATCHERS_DISPLAY_THRESHOLD: Final = 5


def issue_key_pattern(project_key: str) -> re.Pattern[str]:
    """Pattern matching keys of ``project_key`` issues in free text (e.g. ``SPR-1234``)."""
    return re.compile(rf"(?<![\w/-])({re.escape(project_key)}-[0-9]{{1,5}})(?![\w-])")


def replace_issue_keys(text: str, issue: SourceIssue, markup: MarkupEngine, pattern: re.Pattern[str]) -> str:
    """Turn Jira issue keys in ``text`` into links back to Jira."""
    return pattern.sub(lambda m: markup.link(m.group(1), issue.browser_url_for(m.group(1))), text)


def _user_link(user: SourceUser | None, markup: MarkupEngine) -> str:
    if user is None:
        return "Anonymous"
    if not user.browser_url:
        return user.display_name
    return markup.link(user.display_name, user.browser_url)


def build_details(issue: SourceIssue, markup: MarkupEngine, *, include_pull_requests: bool = True) -> str:
    """Build the Jira details section appended below the description.

    Args:
        issue: Source issue
        markup: Markup engine used to render links
        include_pull_requests: Link to the referenced pull request. Disabled
            for throwaway target repositories so real pull requests do not get
            timeline events.

    Returns:
        Details text, empty if the issue has nothing worth listing
    """
    details = ""
    if issue.affects_versions:
        details += "\n**Affects:** " + ", ".join(issue.affects_versions) + "\n"

    if issue.attachments:
        details += "\n**Attachments:**\n" + "\n".join(
            f"- {markup.link(a.filename, a.content_url)} (_{a.size_to_display}_)" for a in issue.attachments
        ) + "\n"

    if issue.parent is not None:
        details += f"\nThis issue is a sub-task of {markup.link(issue.parent.key, issue.browser_url_for(issue.parent.key))}\n"

    if issue.subtasks:
        details += "\n**Sub-tasks:**\n" + "\n".join(
            f"- {markup.link(s.key, issue.browser_url_for(s.key))} {s.summary}" for s in issue.subtasks
        ) + "\n"

    if issue.links:
        lines = []
        for link in issue.links:
            line = f"- {markup.link(link.key, issue.browser_url_for(link.key))} {link.summary}"
            if link.description not in SUPPRESSED_LINK_TYPES:
                line += f' (_**"{link.description}"**_)'
            lines.append(line)
        details += "\n**Issue Links:**\n" + "\n".join(lines) + "\n"

    references = []
    if issue.pull_request_url and include_pull_requests:
        references.append(f"pull request {issue.pull_request_url}")
    if issue.commit_urls:
        references.append("commits " + ", ".join(issue.commit_urls))
    if references:
        details += "\n**Referenced from:** " + ", and ".join(references) + "\n"

    if issue.backport_versions:
        details += "\n**Backported to:** " + ", ".join(issue.backport_versions) + "\n"

    if issue.votes > 0 or issue.watchers >= WATCHERS_DISPLAY_THRESHOLD:
        details += f"\n{issue.votes} votes, {issue.watchers} watchers\n"

    return details


def build_issue_body(
    issue: SourceIssue,
    markup: MarkupEngine,
    key_pattern: re.Pattern[str],
    *,
    include_pull_requests: bool = True,
) -> str:
    """Build the GitHub issue body with the Jira attribution header.

    Raises:
        MarkupConversionError: If the description cannot be converted
    """
    issue_link = markup.link(issue.key, f"{issue.browser_url}?redirect=false")
    body = f"**{_user_link(issue.reporter, markup)}** opened **{issue_link}** and commented\n"
    if issue.reference_url:
        body += f"\n_Reference URL:_\n{issue.reference_url}\n"
    if issue.description:
        body += "\n" + markup.convert(replace_issue_keys(issue.description, issue, markup, key_pattern))
    details = build_details(issue, markup, include_pull_requests=include_pull_requests)
    if details:
        body += "\n\n---\n" + details
    return body


def build_issue_payload(
    issue: SourceIssue,
    markup: MarkupEngine,
    key_pattern: re.Pattern[str],
    *,
    labels: Sequence[str] = (),
    milestone_number: int | None = None,
    user_mapping: Mapping[str, str] | None = None,
    include_pull_requests: bool = True,
) -> TargetIssuePayload:
    """Build the import payload for a primary issue.

    An issue is closed when its resolution is set, regardless of its status.
    The assignee is only set when the Jira user has a known GitHub login.
    """
    closed = issue.resolution is not None
    assignee = None
    if issue.assignee is not None and user_mapping:
        assignee = user_mapping.get(issue.assignee.key)

    return TargetIssuePayload(
        title=f"[{issue.key}] {issue.summary}",
        body=build_issue_body(issue, markup, key_pattern, include_pull_requests=include_pull_requests),
        created_at=issue.created,
        updated_at=issue.updated,
        closed=closed,
        closed_at=issue.updated if closed else None,
        labels=list(labels),
        milestone=milestone_number,
        assignee=assignee,
    )


def build_comments(issue: SourceIssue, markup: MarkupEngine, key_pattern: re.Pattern[str]) -> list[ImportComment]:
    """Convert the Jira comments of ``issue`` in their original order."""
    comments = []
    for comment in issue.comments:
        body = f"**{_user_link(comment.author, markup)}** commented\n\n"
        body += markup.convert(replace_issue_keys(comment.body, issue, markup, key_pattern))
        comments.append(ImportComment(body=body, created_at=comment.created))
    return comments
