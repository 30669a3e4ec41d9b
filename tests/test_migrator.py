"""
Tests for the migrator wiring.
"""

from unittest.mock import MagicMock, Mock, patch

import pytest
from github import GithubException

from jira_to_github_migrator import ConfigurationError, JiraToGitHubMigrator, MigrationConfig, MigrationError
from jira_to_github_migrator.ledger import MigrationLedger
from jira_to_github_migrator.models import SourceVersion
from jira_to_github_migrator.orchestrator import MigrationResult, MigrationState
from jira_to_github_migrator.versions import PrereleasePolicy


@pytest.mark.unit
class TestJiraToGitHubMigrator:
    def setup_method(self) -> None:
        self.source = Mock()
        self.source.get_versions.return_value = [SourceVersion("5.0.9", released=True)]
        self.source.load_issues.return_value = []
        self.github_client = Mock()

    def _migrator(self, tmp_path, **overrides) -> JiraToGitHubMigrator:
        values = {
            "jira_base_url": "https://jira.example.org",
            "jira_project": "SPR",
            "github_repo": "owner/repo",
            "github_token": "token",
            "ledger_dir": tmp_path,
        }
        values.update(overrides)
        return JiraToGitHubMigrator(MigrationConfig(**values), source=self.source, github_client=self.github_client)

    def test_invalid_configuration_rejected(self, tmp_path) -> None:
        with pytest.raises(ConfigurationError):
            self._migrator(tmp_path, github_token=None)

    def test_reset_refused_when_ledger_has_entries(self, tmp_path) -> None:
        migrator = self._migrator(tmp_path, delete_create_repository=True)
        with MigrationLedger.open(tmp_path) as ledger:
            ledger.record("SPR-1", 11)

        with MigrationLedger.open(tmp_path) as ledger, pytest.raises(ConfigurationError, match="Refusing to recreate"):
            migrator.reset_repository(ledger)
        self.github_client.get_repo.assert_not_called()

    @patch("jira_to_github_migrator.migrator.MigrationOrchestrator")
    @patch("jira_to_github_migrator.migrator.create_labels", return_value={"type: bug": "type: bug"})
    def test_migrate_runs_orchestrator(
        self, mock_create_labels: MagicMock, mock_orchestrator_class: MagicMock, tmp_path
    ) -> None:
        mock_orchestrator_class.return_value.run.return_value = MigrationResult(MigrationState.DONE)
        migrator = self._migrator(tmp_path, profile="int")

        result = migrator.migrate()

        assert result.completed
        kwargs = mock_orchestrator_class.call_args.kwargs
        assert kwargs["label_mapping"] == {"type: bug": "type: bug"}
        assert kwargs["project_key"] == "SPR"
        assert kwargs["include_pull_requests"]
        mock_orchestrator_class.return_value.prepare.assert_called_once_with(self.source.get_versions.return_value)
        self.source.load_issues.assert_called_once_with(
            "project = 'SPR' ORDER BY key ASC", PrereleasePolicy.ANY_PRIMARY
        )

    @patch("jira_to_github_migrator.migrator.MigrationOrchestrator")
    @patch("jira_to_github_migrator.migrator.create_labels")
    def test_github_errors_abort_the_run(
        self, mock_create_labels: MagicMock, mock_orchestrator_class: MagicMock, tmp_path
    ) -> None:
        mock_create_labels.side_effect = GithubException(500, {"message": "Server Error"}, {})
        migrator = self._migrator(tmp_path)

        with pytest.raises(MigrationError, match="Migration failed"):
            migrator.migrate()
        mock_orchestrator_class.assert_not_called()
