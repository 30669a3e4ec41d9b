"""Cross-link comments between issues of the same run."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .import_client import JOB_ERRORS

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable

    from .github_utils import GitHubTarget
    from .ledger import MigrationLedger
    from .models import SourceIssue
    from .protocols import MarkupEngine

logger: logging.Logger = logging.getLogger(__name__)


def build_cross_link_comment(
    issue: SourceIssue,
    run_keys: Collection[str],
    ledger: MigrationLedger,
    markup: MarkupEngine,
) -> str | None:
    """Build the follow-up comment for the outward links of ``issue``.

    Only links to issues that are part of this run are listed. A linked issue
    that was imported is referenced as ``#N``; one that failed to import is
    linked back to Jira.

    Returns:
        The comment body, or None if the issue has no such links
    """
    lines = []
    for link in issue.links:
        if link.direction != "outward" or link.key not in run_keys:
            continue
        number = ledger.issue_number_for(link.key)
        reference = f"#{number}" if number is not None else markup.link(link.key, issue.browser_url_for(link.key))
        lines.append(f"- {link.description} {reference}")

    if not lines:
        return None
    return "**Related issues:**\n" + "\n".join(lines)


class CrossLinker:
    """Posts one cross-link comment per migrated issue with links inside the run.

    Posted comments are recorded in the ledger, so an interrupted or halted
    run posts the missing comments on the next run and never posts twice.
    """

    def __init__(self, target: GitHubTarget, ledger: MigrationLedger, markup: MarkupEngine) -> None:
        self.target = target
        self.ledger = ledger
        self.markup = markup

    def link_issues(self, issues: Iterable[SourceIssue], run_keys: Collection[str]) -> int:
        """Post the cross-link comments that are still missing.

        Args:
            issues: Issues of this run, imported now or by an earlier run
            run_keys: Keys of every issue in this run

        Returns:
            Number of comments created
        """
        created = 0
        for issue in issues:
            number = self.ledger.issue_number_for(issue.key)
            if number is None or self.ledger.is_linked(issue.key):
                continue
            body = build_cross_link_comment(issue, run_keys, self.ledger, self.markup)
            if body is None:
                continue
            try:
                self.target.create_comment(number, body)
            except JOB_ERRORS as e:
                message = f"=> {issue.key} [cross-link comment on #{number} failed: {e}]"
                logger.error(message)
                self.ledger.add_failure_message(message)
                continue
            self.ledger.record_link(issue.key, number)
            created += 1
            logger.debug(f"Cross-linked {issue.key} (#{number})")
        return created
