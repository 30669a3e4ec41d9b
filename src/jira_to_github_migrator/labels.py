"""
Label derivation and label creation for Jira to GitHub.

Rules form a closed set of kinds evaluated by :func:`evaluate_labels`:

1. :class:`FieldMatchRule` and :class:`PredicateRule` each contribute
   candidate labels independently of one another.
2. :class:`SupersedeRule` drops the general label when the specific one is
   also a candidate.
3. :class:`RemovalRule` drops surviving labels matching a predicate when its
   trigger label survived step 2.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final, TypeAlias

from github import GithubException

from .exceptions import MigrationError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from github.Repository import Repository as GithubRepository

    from .models import SourceIssue
    from .rate_limit import RateLimitedTransport

logger: logging.Logger = logging.getLogger(__name__)

_PATTERN_SEPARATOR: Final = re.compile(r":(?! )")


@dataclass(frozen=True)
class LabelSpec:
    name: str
    color: str = "ededed"
    description: str = ""


def _factory(prefix: str, color: str) -> Callable[[str], LabelSpec]:
    def create(name: str) -> LabelSpec:
        return LabelSpec(f"{prefix}{name}", color)

    return create


TYPE_LABEL: Final = _factory("type: ", "000000")
STATUS_LABEL: Final = _factory("status: ", "f7e983")
IN_LABEL: Final = _factory("in: ", "008672")
HAS_LABEL: Final = _factory("has: ", "b8daf2")


class FieldType(enum.Enum):
    """Jira fields a :class:`FieldMatchRule` can match on, with their default label factory."""

    ISSUE_TYPE = "issue_type"
    RESOLUTION = "resolution"
    STATUS = "status"
    COMPONENT = "component"
    VERSION = "version"
    LABEL = "label"

    @property
    def default_factory(self) -> Callable[[str], LabelSpec] | None:
        return _DEFAULT_FACTORIES.get(self)

    def values_of(self, issue: SourceIssue) -> tuple[str, ...]:
        """Return the values of this field on ``issue``. VERSION is the primary fix version."""
        match self:
            case FieldType.ISSUE_TYPE:
                values: tuple[str | None, ...] = (issue.issue_type,)
            case FieldType.RESOLUTION:
                values = (issue.resolution,)
            case FieldType.STATUS:
                values = (issue.status,)
            case FieldType.COMPONENT:
                values = issue.components
            case FieldType.VERSION:
                values = (issue.fix_version,)
            case FieldType.LABEL:
                values = issue.labels
        return tuple(v for v in values if v)


_DEFAULT_FACTORIES: Final = {
    FieldType.ISSUE_TYPE: TYPE_LABEL,
    FieldType.RESOLUTION: STATUS_LABEL,
    FieldType.STATUS: STATUS_LABEL,
    FieldType.COMPONENT: IN_LABEL,
}


@dataclass(frozen=True)
class FieldMatchRule:
    """Adds ``label`` when ``field`` has ``value`` (case-insensitive)."""

    field: FieldType
    value: str
    label: LabelSpec


@dataclass(frozen=True)
class PredicateRule:
    """Adds ``label`` when ``predicate(issue)`` holds."""

    label: LabelSpec
    predicate: Callable[[SourceIssue], bool]


@dataclass(frozen=True)
class SupersedeRule:
    """Drops ``general`` when ``specific`` is also present."""

    general: str
    specific: str


@dataclass(frozen=True)
class RemovalRule:
    """Drops every label matching ``matches`` (other than ``trigger``) when ``trigger`` is present."""

    trigger: str
    matches: Callable[[str], bool]


LabelRule: TypeAlias = FieldMatchRule | PredicateRule | SupersedeRule | RemovalRule


def evaluate_labels(rules: Sequence[LabelRule], issue: SourceIssue) -> list[str]:
    """Derive the label names for ``issue``.

    The result keeps the order in which labels were first produced, without
    duplicates.
    """
    field_values: dict[FieldType, set[str]] = {}
    candidates: dict[str, None] = {}

    # Candidates, each rule unaware of the others
    for rule in rules:
        if isinstance(rule, FieldMatchRule):
            if rule.field not in field_values:
                field_values[rule.field] = {v.lower() for v in rule.field.values_of(issue)}
            if rule.value.lower() in field_values[rule.field]:
                candidates[rule.label.name] = None
        elif isinstance(rule, PredicateRule) and rule.predicate(issue):
            candidates[rule.label.name] = None

    for rule in rules:
        if isinstance(rule, SupersedeRule) and rule.general in candidates and rule.specific in candidates:
            del candidates[rule.general]

    for rule in rules:
        if isinstance(rule, RemovalRule) and rule.trigger in candidates:
            for name in [n for n in candidates if n != rule.trigger and rule.matches(n)]:
                del candidates[name]

    return list(candidates)


class LabelRuleSet:
    """Ordered label rules for one migration target, built fluently."""

    def __init__(self, rules: Iterable[LabelRule] = ()) -> None:
        self.rules: list[LabelRule] = list(rules)

    def map_field(
        self,
        field: FieldType,
        value: str,
        label_name: str,
        factory: Callable[[str], LabelSpec] | None = None,
    ) -> LabelRuleSet:
        factory = factory or field.default_factory
        if factory is None:
            msg = f"No default label factory for {field.name}"
            raise ValueError(msg)
        self.rules.append(FieldMatchRule(field, value, factory(label_name)))
        return self

    def add_when(self, label: LabelSpec, predicate: Callable[[SourceIssue], bool]) -> LabelRuleSet:
        self.rules.append(PredicateRule(label, predicate))
        return self

    def supersede(self, general: str, specific: str) -> LabelRuleSet:
        self.rules.append(SupersedeRule(general, specific))
        return self

    def remove_when(self, trigger: str, matches: Callable[[str], bool]) -> LabelRuleSet:
        self.rules.append(RemovalRule(trigger, matches))
        return self

    def all_labels(self) -> list[LabelSpec]:
        """Every label the rules can produce, first definition wins."""
        specs: dict[str, LabelSpec] = {}
        for rule in self.rules:
            if isinstance(rule, (FieldMatchRule, PredicateRule)):
                specs.setdefault(rule.label.name, rule.label)
        return list(specs.values())

    def labels_for(self, issue: SourceIssue) -> list[str]:
        return evaluate_labels(self.rules, issue)


def _is_already_exists_error(exc: GithubException) -> bool:
    """Check if a GithubException is a 422 'already_exists' validation error."""
    if not isinstance(exc.data, dict):
        return False
    errors: object = exc.data.get("errors")  # pyright: ignore[reportUnknownVariableType]
    if not isinstance(errors, list):
        return False
    return any(isinstance(e, dict) and e.get("code") == "already_exists" for e in errors)  # pyright: ignore[reportUnknownArgumentType,reportUnknownVariableType]


class LabelTranslator:
    """Handles label translation patterns."""

    def __init__(self, patterns: Sequence[str] | None) -> None:
        self.patterns: list[tuple[str, str]] = []

        for pattern in patterns or []:
            # Label prefixes such as "type: " contain a colon followed by a space
            parts = _PATTERN_SEPARATOR.split(pattern, maxsplit=1)
            if len(parts) != 2:
                msg = f"Invalid pattern format: {pattern}"
                raise ValueError(msg)
            source, target = parts
            self.patterns.append((source, target))

    def translate(self, label_name: str) -> str:
        """Translate a label name using configured patterns."""
        for source_pattern, target_pattern in self.patterns:
            if "*" in source_pattern:
                regex_pattern = re.escape(source_pattern).replace(r"\*", "(.*)")
                match = re.match(f"^{regex_pattern}$", label_name)
                if match:
                    return target_pattern.replace("*", match.group(1))
            elif source_pattern == label_name:
                return target_pattern
        return label_name


def create_labels(
    github_repo: GithubRepository,
    label_specs: Iterable[LabelSpec],
    transport: RateLimitedTransport,
    translator: LabelTranslator | None = None,
) -> dict[str, str]:
    """Create the labels the rule set can produce.

    Matching with existing GitHub labels is case-insensitive (GitHub treats
    "Bug" and "bug" as the same label). When a translated label matches an
    existing label, the existing label's name is used in the mapping.

    Returns:
        Mapping from rule label names to GitHub label names

    Raises:
        MigrationError: If a label cannot be created
    """
    translator = translator or LabelTranslator(None)
    label_mapping: dict[str, str] = {}

    try:
        existing: dict[str, str] = {
            label.name.lower(): label.name for label in transport.call(lambda: list(github_repo.get_labels()))
        }

        for spec in label_specs:
            translated_name = translator.translate(spec.name)

            existing_label = existing.get(translated_name.lower())
            if existing_label is not None:
                label_mapping[spec.name] = existing_label
                logger.info(f"Using existing label: {spec.name} -> {existing_label}")
                continue

            try:
                github_label = transport.call(
                    lambda name=translated_name, s=spec: github_repo.create_label(
                        name=name, color=s.color, description=s.description
                    )
                )
                label_mapping[spec.name] = github_label.name
                existing[github_label.name.lower()] = github_label.name
                logger.info(f"Created label: {spec.name} -> {translated_name}")
            except GithubException as e:
                if e.status == 422 and _is_already_exists_error(e):
                    # Label appeared between get_labels() and create_label()
                    found = transport.call(lambda name=translated_name: github_repo.get_label(name))
                    label_mapping[spec.name] = found.name
                    logger.debug(f"Label already existed: {spec.name} -> {found.name}")
                else:
                    msg = f"Failed to create label {translated_name}"
                    raise MigrationError(msg) from e

    except GithubException as e:
        msg = f"Failed to create labels: {e}"
        raise MigrationError(msg) from e

    logger.info(f"Prepared {len(label_mapping)} labels")
    return label_mapping
