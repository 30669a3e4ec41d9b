"""Protocols for the collaborators the migration engine depends on.

The engine only needs a narrow surface from the markup converter and from
the Jira client, so both are expressed as protocols. Tests substitute
simple fakes; production code uses :class:`markup.MarkdownEngine` and
:class:`jira_utils.JiraClient`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .models import SourceIssue, SourceUser, SourceVersion
    from .versions import PrereleasePolicy


class MarkupEngine(Protocol):
    """Converts Jira wiki markup to GitHub Markdown.

    Implementations are stateless apart from the user lookup, must escape
    ``@name`` tokens so the import does not notify GitHub users, and raise
    :class:`exceptions.MarkupConversionError` when text cannot be converted.
    """

    def convert(self, text: str) -> str:
        ...

    def link(self, label: str, url: str) -> str:
        """Render a link to ``url`` labelled ``label``."""
        ...

    def configure_user_lookup(self, users: Mapping[str, SourceUser]) -> None:
        """Register users so ``[~key]`` mentions render with display names."""
        ...


class IssueSource(Protocol):
    """Produces the immutable issue snapshots for one run."""

    def load_issues(self, jql: str, policy: PrereleasePolicy) -> list[SourceIssue]:
        """Return all issues matching ``jql`` in the tracker's key order."""
        ...

    def get_versions(self, project_key: str) -> list[SourceVersion]:
        ...
