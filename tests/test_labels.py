from unittest.mock import Mock

import pytest
from github import GithubException

from jira_to_github_migrator.exceptions import MigrationError
from jira_to_github_migrator.labels import (
    HAS_LABEL,
    STATUS_LABEL,
    TYPE_LABEL,
    FieldMatchRule,
    FieldType,
    LabelRuleSet,
    LabelSpec,
    LabelTranslator,
    PredicateRule,
    RemovalRule,
    SupersedeRule,
    create_labels,
    evaluate_labels,
)
from jira_to_github_migrator.rate_limit import RateLimitedTransport


@pytest.mark.unit
class TestEvaluateLabels:
    def test_field_match_is_case_insensitive(self, make_issue) -> None:
        rules = [FieldMatchRule(FieldType.ISSUE_TYPE, "bug", TYPE_LABEL("bug"))]
        assert evaluate_labels(rules, make_issue(issue_type="Bug")) == ["type: bug"]

    def test_component_matches_any_component(self, make_issue) -> None:
        rules = LabelRuleSet().map_field(FieldType.COMPONENT, "Web", "web").rules
        issue = make_issue(components=("Core", "Web"))
        assert evaluate_labels(rules, issue) == ["in: web"]

    def test_version_uses_primary_fix_version(self, make_issue) -> None:
        rules = LabelRuleSet().map_field(FieldType.VERSION, "Waiting for Triage", "waiting-for-triage", STATUS_LABEL).rules
        assert evaluate_labels(rules, make_issue(fix_version="Waiting for Triage")) == ["status: waiting-for-triage"]
        assert evaluate_labels(rules, make_issue(fix_versions=("Waiting for Triage",), fix_version="5.0")) == []

    def test_predicate_rule(self, make_issue) -> None:
        rules = [PredicateRule(HAS_LABEL("votes-jira"), lambda i: i.votes >= 10)]
        assert evaluate_labels(rules, make_issue(votes=12)) == ["has: votes-jira"]
        assert evaluate_labels(rules, make_issue(votes=3)) == []

    def test_order_follows_rules_without_duplicates(self, make_issue) -> None:
        rules = (
            LabelRuleSet()
            .map_field(FieldType.ISSUE_TYPE, "Bug", "bug")
            .map_field(FieldType.LABEL, "Regression", "regression", TYPE_LABEL)
            .map_field(FieldType.ISSUE_TYPE, "Defect", "bug")
            .rules
        )
        issue = make_issue(issue_type="Bug", labels=("regression",))
        assert evaluate_labels(rules, issue) == ["type: bug", "type: regression"]

    def test_supersede_drops_general_label(self, make_issue) -> None:
        rules = [
            FieldMatchRule(FieldType.ISSUE_TYPE, "Bug", TYPE_LABEL("bug")),
            FieldMatchRule(FieldType.LABEL, "Regression", TYPE_LABEL("regression")),
            SupersedeRule("type: bug", "type: regression"),
        ]
        assert evaluate_labels(rules, make_issue(labels=("Regression",))) == ["type: regression"]
        assert evaluate_labels(rules, make_issue()) == ["type: bug"]

    def test_removal_applies_after_supersede(self, make_issue) -> None:
        rules = [
            FieldMatchRule(FieldType.ISSUE_TYPE, "Bug", TYPE_LABEL("bug")),
            FieldMatchRule(FieldType.RESOLUTION, "Duplicate", STATUS_LABEL("duplicate")),
            RemovalRule("status: duplicate", lambda name: name == "type: bug"),
        ]
        assert evaluate_labels(rules, make_issue(resolution="Duplicate")) == ["status: duplicate"]

    def test_removal_keeps_its_trigger(self, make_issue) -> None:
        rules = [
            FieldMatchRule(FieldType.STATUS, "Open", STATUS_LABEL("waiting-for-triage")),
            RemovalRule("status: waiting-for-triage", lambda name: name.startswith("status: ")),
        ]
        assert evaluate_labels(rules, make_issue(status="Open")) == ["status: waiting-for-triage"]

    def test_superseded_trigger_does_not_remove(self, make_issue) -> None:
        rules = [
            FieldMatchRule(FieldType.ISSUE_TYPE, "Bug", TYPE_LABEL("bug")),
            PredicateRule(STATUS_LABEL("waiting-for-triage"), lambda i: True),
            FieldMatchRule(FieldType.STATUS, "Waiting for Feedback", STATUS_LABEL("waiting-for-feedback")),
            SupersedeRule("status: waiting-for-triage", "status: waiting-for-feedback"),
            RemovalRule("status: waiting-for-triage", lambda name: name.startswith("type: ")),
        ]
        issue = make_issue(status="Waiting for Feedback")
        assert evaluate_labels(rules, issue) == ["type: bug", "status: waiting-for-feedback"]


@pytest.mark.unit
class TestLabelRuleSet:
    def test_all_labels_first_definition_wins(self) -> None:
        rules = (
            LabelRuleSet()
            .map_field(FieldType.ISSUE_TYPE, "Bug", "bug")
            .map_field(FieldType.ISSUE_TYPE, "Defect", "bug")
            .add_when(LabelSpec("has: backports", "b8daf2"), lambda i: True)
            .supersede("type: bug", "type: regression")
        )
        assert [spec.name for spec in rules.all_labels()] == ["type: bug", "has: backports"]

    def test_field_without_default_factory(self) -> None:
        with pytest.raises(ValueError, match="No default label factory"):
            LabelRuleSet().map_field(FieldType.LABEL, "Regression", "regression")


@pytest.mark.unit
class TestCreateLabels:
    """Test create_labels function."""

    def setup_method(self) -> None:
        self.transport = RateLimitedTransport(min_interval=0, clock=Mock(time=Mock(return_value=0.0)))
        self.github_repo = Mock()

    def _github_label(self, name: str) -> Mock:
        label = Mock()
        label.name = name
        return label

    def test_creates_missing_labels(self) -> None:
        self.github_repo.get_labels.return_value = []
        self.github_repo.create_label.side_effect = lambda name, color, description: self._github_label(name)

        mapping = create_labels(self.github_repo, [TYPE_LABEL("bug"), STATUS_LABEL("declined")], self.transport)

        assert mapping == {"type: bug": "type: bug", "status: declined": "status: declined"}
        self.github_repo.create_label.assert_any_call(name="type: bug", color="000000", description="")

    def test_existing_label_matched_case_insensitively(self) -> None:
        self.github_repo.get_labels.return_value = [self._github_label("Type: Bug")]

        mapping = create_labels(self.github_repo, [TYPE_LABEL("bug")], self.transport)

        assert mapping == {"type: bug": "Type: Bug"}
        self.github_repo.create_label.assert_not_called()

    def test_translated_names(self) -> None:
        self.github_repo.get_labels.return_value = [self._github_label("bug")]
        translator = LabelTranslator(["type: *:*"])

        mapping = create_labels(self.github_repo, [TYPE_LABEL("bug")], self.transport, translator)

        assert mapping == {"type: bug": "bug"}

    def test_already_exists_error_is_handled(self) -> None:
        """When create_label raises 422 already_exists, use the existing label instead of crashing."""
        # GitHub repo returns no labels initially (race condition: default labels not yet provisioned)
        self.github_repo.get_labels.return_value = []
        self.github_repo.create_label.side_effect = GithubException(
            422,
            {"message": "Validation Failed", "errors": [{"resource": "Label", "code": "already_exists"}]},
            headers={},
        )
        self.github_repo.get_label.return_value = self._github_label("type: bug")

        mapping = create_labels(self.github_repo, [TYPE_LABEL("bug")], self.transport)

        assert mapping["type: bug"] == "type: bug"

    def test_other_errors_raise_migration_error(self) -> None:
        self.github_repo.get_labels.return_value = []
        self.github_repo.create_label.side_effect = GithubException(
            422, {"message": "Validation Failed", "errors": [{"code": "invalid"}]}, headers={}
        )

        with pytest.raises(MigrationError, match="Failed to create label"):
            create_labels(self.github_repo, [TYPE_LABEL("bug")], self.transport)


@pytest.mark.unit
class TestLabelTranslator:
    """Test label translation functionality."""

    def test_simple_translation(self) -> None:
        translator = LabelTranslator(["type: bug:bug", "status: declined:wontfix"])
        assert translator.translate("type: bug") == "bug"
        assert translator.translate("status: declined") == "wontfix"
        assert translator.translate("unknown") == "unknown"

    def test_wildcard_translation(self) -> None:
        translator = LabelTranslator(["in: *:component: *"])
        assert translator.translate("in: web") == "component: web"
        assert translator.translate("type: bug") == "type: bug"

    def test_wildcard_source_with_regex_characters(self) -> None:
        translator = LabelTranslator(["in: TCP/UDP*:net*"])
        assert translator.translate("in: TCP/UDP") == "net"

    def test_invalid_pattern(self) -> None:
        with pytest.raises(ValueError, match="Invalid pattern format"):
            LabelTranslator(["invalid_pattern"])
