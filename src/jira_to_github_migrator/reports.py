"""
Pre-migration report.

Reads the Jira project without touching GitHub and lists what a migration
would run into: the project's components, versions and issue types, the
backport holder issues that would be created, the assignees with and
without a GitHub login, and fix versions that would have no milestone.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import requests

from .backports import group_backports
from .exceptions import MigrationError
from .jira_utils import JiraClient
from .models import TargetMilestone
from .profiles import get_profile

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from .config import MigrationConfig
    from .models import SourceIssue, SourceUser, SourceVersion
    from .profiles import MigrationProfile
    from .protocols import IssueSource

logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssigneeCount:
    user: SourceUser
    issues: int
    github_login: str | None = None


@dataclass
class MigrationReport:
    project_key: str
    issues_total: int = 0
    issues_restricted: int = 0
    components: list[str] = field(default_factory=list)
    versions: list[str] = field(default_factory=list)
    issue_types: list[str] = field(default_factory=list)
    backport_counts: dict[str, int] = field(default_factory=dict)
    assignees: list[AssigneeCount] = field(default_factory=list)
    versions_without_milestone: dict[str, list[str]] = field(default_factory=dict)

    @property
    def estimated_backport_count(self) -> int:
        return sum(self.backport_counts.values())

    @property
    def unmapped_assignees(self) -> list[AssigneeCount]:
        return [a for a in self.assignees if a.github_login is None]

    def render(self) -> str:
        lines = [
            f"Jira project {self.project_key}: {self.issues_total} issues ({self.issues_restricted} restricted, skipped)",
        ]
        for title, names in (
            ("Components", self.components),
            ("Versions", self.versions),
            ("Issue types", self.issue_types),
        ):
            if names:
                lines.append(f"{title}: {', '.join(names)}")

        lines.append(
            f"Estimated backport holder issues: {len(self.backport_counts)} "
            f"(listing {self.estimated_backport_count} backports)"
        )
        lines.extend(f"  {title}: {count} issues" for title, count in self.backport_counts.items())

        lines.append(f"Assignees: {len(self.assignees)} ({len(self.unmapped_assignees)} without GitHub login)")
        for a in self.assignees:
            login = a.github_login or "no GitHub login"
            lines.append(f"  {a.user.key} ({a.user.display_name}) [{a.issues}] -> {login}")

        if self.versions_without_milestone:
            lines.append("Fix versions without a milestone:")
            lines.extend(
                f"  {version}: {', '.join(keys)}" for version, keys in self.versions_without_milestone.items()
            )
        return "\n".join(lines)


def _names(project: Mapping[str, Any] | None, field_name: str) -> list[str]:
    if not project:
        return []
    return [item["name"] for item in project.get(field_name) or () if item.get("name")]


def build_report(
    project_key: str,
    issues: Sequence[SourceIssue],
    versions: Sequence[SourceVersion],
    profile: MigrationProfile,
    user_mapping: Mapping[str, str] | None = None,
    project: Mapping[str, Any] | None = None,
) -> MigrationReport:
    """Summarize what migrating ``issues`` with ``profile`` would produce.

    Milestones are assumed to exist for every project version the profile
    accepts, which is what a migration run creates.
    """
    user_mapping = user_mapping or {}
    public = [issue for issue in issues if issue.is_public]
    milestones = {
        v.name: TargetMilestone(0, v.name, "closed" if v.released else "open")
        for v in versions
        if profile.accepts_version(v.name)
    }

    backport_counts = {group.milestone.title: len(group.issues) for group in group_backports(public, milestones)}

    users: dict[str, SourceUser] = {}
    counts: Counter[str] = Counter()
    for issue in public:
        if issue.assignee is not None:
            users.setdefault(issue.assignee.key, issue.assignee)
            counts[issue.assignee.key] += 1
    assignees = [
        AssigneeCount(users[key], count, user_mapping.get(key)) for key, count in counts.most_common()
    ]

    without_milestone: dict[str, list[str]] = {}
    for issue in public:
        for version in (issue.fix_version, *issue.backport_versions):
            if version is not None and version not in milestones and profile.accepts_version(version):
                without_milestone.setdefault(version, []).append(issue.key)
    for version, keys in without_milestone.items():
        logger.warning(f"Fix version '{version}' of {len(keys)} issues has no Jira project version")

    return MigrationReport(
        project_key=project_key,
        issues_total=len(issues),
        issues_restricted=len(issues) - len(public),
        components=_names(project, "components"),
        versions=[v.name for v in versions],
        issue_types=_names(project, "issueTypes"),
        backport_counts=backport_counts,
        assignees=assignees,
        versions_without_milestone=without_milestone,
    )


def generate_report(config: MigrationConfig, *, source: IssueSource | None = None) -> MigrationReport:
    """Load the configured issues from Jira and build the report. No GitHub token is needed.

    Raises:
        ConfigurationError: If the configuration is unusable
        MigrationError: If Jira cannot be read
    """
    config.validate(require_github_token=False)
    profile = get_profile(config.profile, config.prerelease_policy)
    user_mapping = config.load_user_mapping()

    project = None
    try:
        if source is None:
            client = JiraClient(config.jira_base_url, config.jira_credentials, fetch_votes_and_commits=False)
            project = client.find_project(config.jira_project)
            source = client
        versions = source.get_versions(config.jira_project)
        issues = source.load_issues(config.query, profile.prerelease_policy)
    except requests.RequestException as e:
        msg = f"Report failed: {e}"
        raise MigrationError(msg) from e

    logger.info(f"Building report for {len(issues)} issues of {config.jira_project}")
    return build_report(config.jira_project, issues, versions, profile, user_mapping, project)
