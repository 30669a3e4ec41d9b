"""Backport holder issues.

An issue fixed in several release lines is imported once, under the
milestone of its primary release. For every other (backport) release that
has a GitHub milestone, one holder issue titled ``<milestone> Backport
Issues`` lists the already imported issues by their GitHub numbers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .import_client import JOB_ERRORS
from .models import TargetIssuePayload

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from .import_client import ImportJobClient
    from .ledger import MigrationLedger
    from .models import ImportJob, SourceIssue, TargetMilestone

logger: logging.Logger = logging.getLogger(__name__)


@dataclass
class BackportGroup:
    milestone: TargetMilestone
    issues: list[SourceIssue] = field(default_factory=list)


def group_backports(issues: Iterable[SourceIssue], milestones: Mapping[str, TargetMilestone]) -> list[BackportGroup]:
    """Group issues by backport milestone, in order of first appearance.

    Backport releases without a GitHub milestone (e.g. skipped pseudo
    versions) are ignored.
    """
    groups: dict[str, BackportGroup] = {}
    for issue in issues:
        for version in issue.backport_versions:
            milestone = milestones.get(version)
            if milestone is None:
                logger.debug(f"{issue.key}: no milestone for backport version {version}")
                continue
            groups.setdefault(milestone.title, BackportGroup(milestone)).issues.append(issue)
    return list(groups.values())


def build_holder_payload(group: BackportGroup, ledger: MigrationLedger) -> TargetIssuePayload | None:
    """Build the holder issue for one milestone.

    Issues missing from the ledger are reported in the failure log and left
    out. Returns None if no issue of the group could be resolved.
    """
    lines = []
    for issue in group.issues:
        number = ledger.issue_number_for(issue.key)
        if number is None:
            message = f"{issue.key} is backported to {group.milestone.title} but has no GitHub issue number"
            logger.error(message)
            ledger.add_failure_message(message)
            continue
        lines.append(f"**#{number}** - {issue.summary}")

    if not lines:
        return None

    milestone = group.milestone
    closed = milestone.state == "closed"
    created_at = milestone.created_at or min(issue.created for issue in group.issues)
    return TargetIssuePayload(
        title=f"{milestone.title} Backport Issues",
        body="\n".join(lines),
        created_at=created_at,
        closed=closed,
        closed_at=(milestone.due_on or created_at) if closed else None,
        milestone=milestone.number,
    )


class BackportConsolidator:
    """Creates one holder issue per backport milestone."""

    def __init__(self, client: ImportJobClient, ledger: MigrationLedger) -> None:
        self.client = client
        self.ledger = ledger

    def consolidate(self, issues: Iterable[SourceIssue], milestones: Mapping[str, TargetMilestone]) -> list[ImportJob]:
        """Submit holder issues for all backport milestones without one.

        Submission failures are recorded against the milestone title and do
        not stop the remaining holders.

        Returns:
            The submitted jobs, to be awaited by the caller
        """
        jobs: list[ImportJob] = []
        for group in group_backports(issues, milestones):
            title = group.milestone.title
            if self.ledger.holder_number_for(title) is not None:
                logger.info(f"Backport holder for {title} already exists, skipping")
                continue

            payload = build_holder_payload(group, self.ledger)
            if payload is None:
                continue

            try:
                jobs.append(self.client.submit(payload, holder_for=title))
            except JOB_ERRORS as e:
                logger.error(f"Failed to submit backport holder for {title}: {e}")
                self.ledger.record_holder(title, failure=f"submission failed: {e}")
        return jobs
