"""Migration orchestrator driving a run from Jira snapshots to GitHub issues.

States
------
A run moves through these states, in order::

    COLLECT_USERS -> RESOLVE_MILESTONES -> BUILD_PAYLOADS -> IMPORT_PRIMARY
        -> CONSOLIDATE_BACKPORTS -> CROSS_LINK_ISSUES -> DONE

COLLECT_USERS
    Drop restricted issues and register every reporter, assignee and
    comment author with the markup engine so ``[~user]`` mentions render
    with display names.
RESOLVE_MILESTONES
    Use the milestones created by :meth:`MigrationOrchestrator.prepare`, or
    read them from the repository.
BUILD_PAYLOADS
    Build payloads for the issues the ledger reports as remaining. An issue
    whose markup cannot be converted is recorded as failed. A primary
    release without a milestone is a data-integrity failure: it is logged
    and the issue is imported without a milestone.
IMPORT_PRIMARY
    Submit payloads in checkpoint batches and await every job of a batch
    before submitting the next one. Each result is recorded in the ledger
    as soon as it is known.
CONSOLIDATE_BACKPORTS
    Only entered when no primary import failed in this run, because holder
    issues reference primary issue numbers. Otherwise the run ends in
    HALTED.
CROSS_LINK_ISSUES
    Post a comment on every migrated issue of the run that links to other
    issues of the run, unless the ledger shows it was already posted. This
    also covers issues imported by an earlier run that halted.

Failures of single issues never abort the run. Ledger errors and errors
reading the repository milestones propagate.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from .backports import BackportConsolidator
from .exceptions import MarkupConversionError
from .import_client import JOB_ERRORS
from .issue_builder import build_comments, build_issue_payload, issue_key_pattern
from .relationships import CrossLinker

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from .github_utils import GitHubTarget
    from .import_client import ImportJobClient
    from .ledger import MigrationLedger
    from .models import ImportComment, ImportJob, SourceIssue, SourceUser, SourceVersion, TargetIssuePayload, TargetMilestone
    from .profiles import MigrationProfile
    from .protocols import MarkupEngine

logger = logging.getLogger(__name__)

DEFAULT_CHECKPOINT_SIZE: Final = 50


class MigrationState(enum.Enum):
    COLLECT_USERS = "collect_users"
    RESOLVE_MILESTONES = "resolve_milestones"
    BUILD_PAYLOADS = "build_payloads"
    IMPORT_PRIMARY = "import_primary"
    CONSOLIDATE_BACKPORTS = "consolidate_backports"
    CROSS_LINK_ISSUES = "cross_link_issues"
    DONE = "done"
    HALTED = "halted"


@dataclass
class MigrationStats:
    """Statistics collected during one run."""

    issues_total: int = 0
    issues_restricted: int = 0
    issues_already_migrated: int = 0
    primary_succeeded: int = 0
    primary_failed: int = 0
    holders_succeeded: int = 0
    holders_failed: int = 0
    cross_links_created: int = 0
    data_integrity_failures: int = 0


@dataclass
class MigrationResult:
    state: MigrationState
    stats: MigrationStats = field(default_factory=MigrationStats)
    halted_reason: str | None = None
    ledger_summary: str = ""

    @property
    def completed(self) -> bool:
        return self.state is MigrationState.DONE

    def summary(self) -> str:
        s = self.stats
        lines = [
            f"Ledger: {self.ledger_summary}",
            f"Primary issues: {s.primary_succeeded} succeeded, {s.primary_failed} failed "
            f"({s.issues_already_migrated} already migrated, {s.issues_restricted} restricted skipped)",
            f"Backport holders: {s.holders_succeeded} succeeded, {s.holders_failed} failed",
            f"Cross-link comments: {s.cross_links_created}",
        ]
        if s.data_integrity_failures:
            lines.append(f"Data-integrity problems: {s.data_integrity_failures} (see failure log)")
        if self.halted_reason:
            lines.append(f"Halted: {self.halted_reason}")
        return "\n".join(lines)


@dataclass
class _PendingIssue:
    issue: SourceIssue
    payload: TargetIssuePayload
    comments: list[ImportComment]


class MigrationOrchestrator:
    """Runs one migration pass. Construct a new instance per run."""

    def __init__(
        self,
        *,
        client: ImportJobClient,
        ledger: MigrationLedger,
        profile: MigrationProfile,
        markup: MarkupEngine,
        project_key: str,
        target: GitHubTarget | None = None,
        label_mapping: Mapping[str, str] | None = None,
        user_mapping: Mapping[str, str] | None = None,
        checkpoint_size: int = DEFAULT_CHECKPOINT_SIZE,
        include_pull_requests: bool = True,
    ) -> None:
        self.client = client
        self.ledger = ledger
        self.profile = profile
        self.markup = markup
        self.target = target
        self.label_mapping = dict(label_mapping or {})
        self.user_mapping = dict(user_mapping or {})
        self.checkpoint_size = max(checkpoint_size, 1)
        self.include_pull_requests = include_pull_requests
        self.key_pattern: re.Pattern[str] = issue_key_pattern(project_key)
        self.milestones: dict[str, TargetMilestone] | None = None
        self.state = MigrationState.COLLECT_USERS
        self.stats = MigrationStats()

    def _enter(self, state: MigrationState) -> None:
        logger.info(f"Migration state: {self.state.name} -> {state.name}")
        self.state = state

    def prepare(self, versions: Iterable[SourceVersion]) -> dict[str, TargetMilestone]:
        """Create milestones for the Jira versions accepted by the profile."""
        if self.target is None:
            msg = "Creating milestones requires a GitHub target"
            raise ValueError(msg)
        self.milestones = self.target.create_milestones(versions, self.profile.accepts_version)
        return self.milestones

    def run(self, issues: Sequence[SourceIssue]) -> MigrationResult:
        """Migrate ``issues``, which must be in Jira key order."""
        self.state = MigrationState.COLLECT_USERS
        self.stats = MigrationStats(issues_total=len(issues))
        public = self._collect_users(issues)

        self._enter(MigrationState.RESOLVE_MILESTONES)
        milestones = self._resolve_milestones()

        self._enter(MigrationState.BUILD_PAYLOADS)
        remaining = self.ledger.remaining(public)
        self.stats.issues_already_migrated = len(public) - len(remaining)
        logger.info(f"{len(remaining)} of {len(public)} issues remaining to import")
        pending = self._build_payloads(remaining, milestones)

        self._enter(MigrationState.IMPORT_PRIMARY)
        self._import_primary(pending)

        if self.stats.primary_failed:
            reason = f"{self.stats.primary_failed} primary imports failed, backport holders and cross-links skipped"
            logger.error(reason)
            self._enter(MigrationState.HALTED)
            return MigrationResult(self.state, self.stats, reason, self.ledger.summary())

        self._enter(MigrationState.CONSOLIDATE_BACKPORTS)
        self._consolidate_backports(public, milestones)

        self._enter(MigrationState.CROSS_LINK_ISSUES)
        if self.target is not None:
            linker = CrossLinker(self.target, self.ledger, self.markup)
            self.stats.cross_links_created = linker.link_issues(public, {i.key for i in public})

        self._enter(MigrationState.DONE)
        return MigrationResult(self.state, self.stats, ledger_summary=self.ledger.summary())

    def _collect_users(self, issues: Sequence[SourceIssue]) -> list[SourceIssue]:
        public = [issue for issue in issues if issue.is_public]
        self.stats.issues_restricted = len(issues) - len(public)
        if self.stats.issues_restricted:
            logger.info(f"Skipping {self.stats.issues_restricted} restricted issues")

        users: dict[str, SourceUser] = {}
        for issue in public:
            for user in (issue.reporter, issue.assignee, *(c.author for c in issue.comments)):
                if user is not None:
                    users.setdefault(user.key, user)
        self.markup.configure_user_lookup(users)
        logger.debug(f"Collected {len(users)} users")
        return public

    def _resolve_milestones(self) -> dict[str, TargetMilestone]:
        if self.milestones is None:
            self.milestones = self.target.get_milestones() if self.target is not None else {}
        return self.milestones

    def _data_integrity_failure(self, message: str) -> None:
        logger.warning(message)
        self.ledger.add_failure_message(message)
        self.stats.data_integrity_failures += 1

    def _build_payloads(
        self, issues: Sequence[SourceIssue], milestones: Mapping[str, TargetMilestone]
    ) -> list[_PendingIssue]:
        pending = []
        for issue in issues:
            milestone_number = None
            if issue.fix_version is not None:
                milestone = milestones.get(issue.fix_version)
                if milestone is not None:
                    milestone_number = milestone.number
                elif self.profile.accepts_version(issue.fix_version):
                    self._data_integrity_failure(
                        f"{issue.key}: fix version '{issue.fix_version}' has no milestone, importing without one"
                    )

            rule_labels = self.profile.label_rules.labels_for(issue)
            labels = [self.label_mapping.get(name, name) for name in rule_labels]
            try:
                payload = build_issue_payload(
                    issue,
                    self.markup,
                    self.key_pattern,
                    labels=labels,
                    milestone_number=milestone_number,
                    user_mapping=self.user_mapping,
                    include_pull_requests=self.include_pull_requests,
                )
                comments = build_comments(issue, self.markup, self.key_pattern)
            except MarkupConversionError as e:
                logger.error(f"{issue.key}: markup conversion failed: {e}")
                self.ledger.record(issue.key, failure=f"markup conversion failed: {e}")
                self.stats.primary_failed += 1
                continue

            self.profile.process_payload(issue, payload, rule_labels)
            pending.append(_PendingIssue(issue, payload, comments))
        return pending

    def _import_primary(self, pending: Sequence[_PendingIssue]) -> None:
        for start in range(0, len(pending), self.checkpoint_size):
            batch = pending[start : start + self.checkpoint_size]
            jobs: list[ImportJob] = []
            for item in batch:
                try:
                    jobs.append(self.client.submit(item.payload, item.comments, source_key=item.issue.key))
                except JOB_ERRORS as e:
                    logger.error(f"Failed to submit import for {item.issue.key}: {e}")
                    self.ledger.record(item.issue.key, failure=f"submission failed: {e}")
                    self.stats.primary_failed += 1

            for job in jobs:
                key = job.source_key
                assert key is not None  # primary jobs always carry their key
                try:
                    result = self.client.wait_for(job)
                except JOB_ERRORS as e:
                    logger.error(f"Failed to poll import for {key}: {e}")
                    self.ledger.record(key, failure=f"poll failed: {e}")
                    self.stats.primary_failed += 1
                    continue

                if result.issue_number is not None:
                    self.ledger.record(key, issue_number=result.issue_number)
                    self.stats.primary_succeeded += 1
                    logger.debug(f"Imported {key} as #{result.issue_number}")
                else:
                    logger.error(f"Import of {key} failed: {result.error}")
                    self.ledger.record(key, failure=result.error)
                    self.stats.primary_failed += 1

            logger.info(f"Checkpoint: processed {min(start + len(batch), len(pending))} of {len(pending)} issues")

    def _consolidate_backports(self, issues: Sequence[SourceIssue], milestones: Mapping[str, TargetMilestone]) -> None:
        consolidator = BackportConsolidator(self.client, self.ledger)
        failed_before = self.ledger.counts.holders_failed
        jobs = consolidator.consolidate(issues, milestones)
        self.stats.holders_failed += self.ledger.counts.holders_failed - failed_before

        for job in jobs:
            title = job.holder_for
            assert title is not None  # holder jobs always carry their milestone
            try:
                result = self.client.wait_for(job)
            except JOB_ERRORS as e:
                logger.error(f"Failed to poll backport holder for {title}: {e}")
                self.ledger.record_holder(title, failure=f"poll failed: {e}")
                self.stats.holders_failed += 1
                continue

            if result.issue_number is not None:
                self.ledger.record_holder(title, issue_number=result.issue_number)
                self.stats.holders_succeeded += 1
                logger.info(f"Created backport holder for {title} as #{result.issue_number}")
            else:
                logger.error(f"Import of backport holder for {title} failed: {result.error}")
                self.ledger.record_holder(title, failure=result.error)
                self.stats.holders_failed += 1
