"""
Per-project migration profiles.

A profile bundles the label rules, the Jira versions that must not become
milestones, the pre-release policy for choosing an issue's primary release,
and payload processors that adjust an import payload just before it is
submitted.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final, TypeAlias

from .exceptions import ConfigurationError
from .labels import HAS_LABEL, IN_LABEL, STATUS_LABEL, TYPE_LABEL, FieldType, LabelRuleSet, LabelSpec
from .versions import PrereleasePolicy

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from .models import SourceIssue, TargetIssuePayload

    # Receives the label names produced by the rules, before any translation
    PayloadProcessor: TypeAlias = Callable[[SourceIssue, TargetIssuePayload, Sequence[str]], None]

VOTES_LABEL_THRESHOLD: Final = 10


@dataclass(frozen=True)
class MigrationProfile:
    name: str
    label_rules: LabelRuleSet
    skip_versions: frozenset[str] = frozenset()
    prerelease_policy: PrereleasePolicy = PrereleasePolicy.GA_PRIMARY
    payload_processors: tuple[PayloadProcessor, ...] = field(default=())

    def accepts_version(self, version_name: str) -> bool:
        """Return False for pseudo versions that must not become milestones."""
        return version_name not in self.skip_versions

    def process_payload(self, issue: SourceIssue, payload: TargetIssuePayload, labels: Sequence[str]) -> None:
        for processor in self.payload_processors:
            processor(issue, payload, labels)


def drop_assignee_when_unplanned(issue: SourceIssue, payload: TargetIssuePayload, labels: Sequence[str]) -> None:
    """Unassign issues parked in a backlog version or waiting for triage or contribution."""
    unplanned = {STATUS_LABEL("waiting-for-triage").name, STATUS_LABEL("ideal-for-contribution").name}
    in_backlog = issue.fix_version is not None and "Backlog" in issue.fix_version
    if in_backlog or unplanned.intersection(labels):
        payload.assignee = None


def _add_common_predicates(rules: LabelRuleSet) -> LabelRuleSet:
    return (
        rules.add_when(STATUS_LABEL("waiting-for-triage"), lambda i: i.resolution is None and i.fix_version is None)
        .add_when(HAS_LABEL("votes-jira"), lambda i: i.votes >= VOTES_LABEL_THRESHOLD)
        .add_when(HAS_LABEL("backports"), lambda i: bool(i.backport_versions))
    )


def _default_profile() -> MigrationProfile:
    rules = (
        LabelRuleSet()
        .map_field(FieldType.ISSUE_TYPE, "Bug", "bug")
        .map_field(FieldType.ISSUE_TYPE, "New Feature", "enhancement")
        .map_field(FieldType.ISSUE_TYPE, "Improvement", "enhancement")
        .map_field(FieldType.ISSUE_TYPE, "Task", "task")
        .map_field(FieldType.ISSUE_TYPE, "Sub-task", "task")
        .map_field(FieldType.RESOLUTION, "Won't Fix", "declined")
        .map_field(FieldType.RESOLUTION, "Duplicate", "duplicate")
        .map_field(FieldType.RESOLUTION, "Invalid", "invalid")
        .map_field(FieldType.LABEL, "Regression", "regression", TYPE_LABEL)
    )
    _add_common_predicates(rules).supersede("type: bug", "type: regression")
    return MigrationProfile(
        name="default",
        label_rules=rules,
        skip_versions=frozenset({"Waiting for Triage"}),
    )


def _spr_profile() -> MigrationProfile:
    rules = LabelRuleSet()
    for component, label in (
        ("Caching", "core"),
        ("Core", "core"),
        ("Core:AOP", "core"),
        ("Core:DI", "core"),
        ("Core:Environment", "core"),
        ("Core:SpEL", "core"),
        ("EJB", "core"),
        ("JMX", "core"),
        ("Task", "core"),
        ("Data", "data"),
        ("Data:JDBC", "data"),
        ("Data:ORM", "data"),
        ("OXM", "data"),
        ("Transaction", "data"),
        ("JMS", "messaging"),
        ("Messaging", "messaging"),
        ("Test", "test"),
        ("Messaging:WebSocket", "web"),
        ("Reactive", "web"),
        ("Remoting", "web"),
        ("Web", "web"),
        ("Web:Client", "web"),
        ("Web:Portlet", "web"),
    ):
        rules.map_field(FieldType.COMPONENT, component, label)
    rules.map_field(FieldType.COMPONENT, "[Documentation]", "documentation", TYPE_LABEL)

    for issue_type, label in (
        ("Bug", "bug"),
        ("New Feature", "enhancement"),
        ("Improvement", "enhancement"),
        ("Refactoring", "task"),
        ("Pruning", "task"),
        ("Task", "task"),
        ("Sub-task", "task"),
    ):
        rules.map_field(FieldType.ISSUE_TYPE, issue_type, label)

    for resolution, label in (
        ("Deferred", "declined"),
        ("Won't Do", "declined"),
        ("Won't Fix", "declined"),
        ("Works as Designed", "declined"),
        ("Duplicate", "duplicate"),
        ("Invalid", "invalid"),
    ):
        rules.map_field(FieldType.RESOLUTION, resolution, label)

    (
        rules.map_field(FieldType.STATUS, "Waiting for Feedback", "waiting-for-feedback")
        .map_field(FieldType.VERSION, "Waiting for Triage", "waiting-for-triage", STATUS_LABEL)
        .map_field(FieldType.VERSION, "Contributions Welcome", "ideal-for-contribution", STATUS_LABEL)
        .map_field(FieldType.LABEL, "Regression", "regression", TYPE_LABEL)
    )
    _add_common_predicates(rules).supersede("type: bug", "type: regression").supersede(
        "type: task", "type: documentation"
    )

    return MigrationProfile(
        name="spr",
        label_rules=rules,
        skip_versions=frozenset({"Contributions Welcome", "Pending Closure", "Waiting for Triage"}),
        prerelease_policy=PrereleasePolicy.GA_PRIMARY,
        payload_processors=(drop_assignee_when_unplanned,),
    )


def _int_profile() -> MigrationProfile:
    def component_label(name: str) -> LabelSpec:
        return LabelSpec(IN_LABEL(name).name, "27ddc8")

    def status_label(name: str) -> LabelSpec:
        return LabelSpec(STATUS_LABEL(name).name, "5319e7")

    rules = LabelRuleSet()
    for component, label in (
        ("Adapters", "core"),
        ("AMQP Support", "amqp"),
        ("Async HTTP Support", "http"),
        ("Build", "build"),
        ("Core", "core"),
        ("DSL", "dsl"),
        ("Event Support", "events"),
        ("Feed Support", "feed"),
        ("File Support", "file"),
        ("FTP/SFTP Support", "ftp"),
        ("GemFire Support", "gemfire"),
        ("Groovy Support", "groovy"),
        ("HTTP Support", "http"),
        ("JDBC Support", "jdbc"),
        ("JMS Support", "jms"),
        ("JMX Support", "jmx"),
        ("JPA Support", "jpa"),
        ("Mail Support", "mail"),
        ("MongoDB Support", "mongodb"),
        ("MQTT Support", "mqtt"),
        ("Pattern Catalog", "core"),
        ("R2DBC", "r2dbc"),
        ("Redis Support", "redis"),
        ("RMI Support", "rmi"),
        ("Scripting Support", "scripting"),
        ("Security", "security"),
        ("STOMP Support", "stomp"),
        ("Stream Support", "stream"),
        ("Syslog Support", "syslog"),
        ("TCP/UDP Support", "TCP/UDP"),
        ("Testing", "testing"),
        ("Twitter Support", "twitter"),
        ("Web Services", "ws"),
        ("WebFlux Support", "webflux"),
        ("WebSocket Support", "websocket"),
        ("XML", "xml"),
        ("XMPP Support", "xmpp"),
        ("Zookeeper Support", "zookeeper"),
    ):
        rules.map_field(FieldType.COMPONENT, component, label, component_label)
    rules.map_field(FieldType.COMPONENT, "Samples", "documentation", TYPE_LABEL)
    rules.map_field(FieldType.COMPONENT, "Documentation", "documentation", TYPE_LABEL)

    for issue_type, label in (
        ("Bug", "bug"),
        ("Defect", "bug"),
        ("New Feature", "enhancement"),
        ("Improvement", "enhancement"),
        ("Refactoring", "refactoring"),
        ("Pruning", "task"),
        ("Task", "task"),
        ("Sub-task", "task"),
        ("Story", "task"),
        ("Epic", "task"),
        ("Technical task", "task"),
        ("Support", "task"),
    ):
        rules.map_field(FieldType.ISSUE_TYPE, issue_type, label)

    for resolution, label in (
        ("Deferred", "declined"),
        ("Won't Do", "declined"),
        ("Won't Fix", "declined"),
        ("Works as Designed", "declined"),
        ("Duplicate", "duplicate"),
        ("Invalid", "invalid"),
        ("Incomplete", "invalid"),
        ("Cannot Reproduce", "invalid"),
    ):
        rules.map_field(FieldType.RESOLUTION, resolution, label, status_label)

    (
        rules.map_field(FieldType.STATUS, "Waiting for Feedback", "waiting-for-feedback", status_label)
        .map_field(FieldType.VERSION, "Waiting for Triage", "waiting-for-triage", status_label)
        .map_field(FieldType.VERSION, "Waiting For Diagnostics", "waiting-for-triage", status_label)
        .map_field(FieldType.LABEL, "Regression", "regression", TYPE_LABEL)
    )
    (
        _add_common_predicates(rules)
        .supersede("type: bug", "type: regression")
        .supersede("type: task", "type: documentation")
        .supersede("status: waiting-for-triage", "status: waiting-for-feedback")
        # Jira asks for a type up front, GitHub issues get typed during triage
        .remove_when("status: waiting-for-triage", lambda name: name.startswith("type: "))
        .remove_when("status: invalid", lambda name: name.startswith("type: "))
        .remove_when("status: declined", lambda name: name in {"type: bug", "type: regression"})
        .remove_when("status: duplicate", lambda name: name in {"type: bug", "type: regression"})
    )

    return MigrationProfile(
        name="int",
        label_rules=rules,
        skip_versions=frozenset({"Pending Closure", "Waiting for Triage"}),
        prerelease_policy=PrereleasePolicy.ANY_PRIMARY,
        payload_processors=(drop_assignee_when_unplanned,),
    )


_PROFILES: Final = {
    "default": _default_profile,
    "spr": _spr_profile,
    "int": _int_profile,
}

PROFILE_NAMES: Final = tuple(_PROFILES)


def get_profile(name: str, prerelease_policy: PrereleasePolicy | None = None) -> MigrationProfile:
    """Build the named profile, optionally overriding its pre-release policy."""
    try:
        profile = _PROFILES[name.lower()]()
    except KeyError as e:
        msg = f"Unknown migration profile '{name}'. Available: {', '.join(PROFILE_NAMES)}"
        raise ConfigurationError(msg) from e
    if prerelease_policy is not None and prerelease_policy is not profile.prerelease_policy:
        profile = dataclasses.replace(profile, prerelease_policy=prerelease_policy)
    return profile
