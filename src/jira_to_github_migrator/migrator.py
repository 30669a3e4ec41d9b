"""
Main migration class for Jira to GitHub migration.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import requests
from github import GithubException

from . import github_utils as ghu
from .exceptions import ConfigurationError, MigrationError
from .import_client import ImportJobClient
from .jira_utils import JiraClient
from .labels import LabelTranslator, create_labels
from .ledger import MigrationLedger
from .markup import MarkdownEngine
from .orchestrator import MigrationOrchestrator
from .profiles import get_profile
from .rate_limit import RateLimitedTransport

if TYPE_CHECKING:
    from github import Github

    from .config import MigrationConfig
    from .orchestrator import MigrationResult
    from .protocols import IssueSource
    from .rate_limit import Clock

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)


class JiraToGitHubMigrator:
    """Wires the Jira source, the GitHub target and the ledger into one run."""

    def __init__(
        self,
        config: MigrationConfig,
        *,
        source: IssueSource | None = None,
        github_client: Github | None = None,
        clock: Clock | None = None,
    ) -> None:
        config.validate()
        self.config = config
        self.profile = get_profile(config.profile, config.prerelease_policy)
        self.user_mapping: dict[str, str] = config.load_user_mapping()

        self.jira_client: JiraClient | None = None
        if source is None:
            self.jira_client = JiraClient(config.jira_base_url, config.jira_credentials)
            source = self.jira_client
        self.source: IssueSource = source

        self.github_client: Github = github_client or ghu.get_client(config.github_token)
        self.transport = RateLimitedTransport(
            min_interval=config.min_interval, abuse_base_delay=config.abuse_base_delay, clock=clock
        )
        self.target = ghu.GitHubTarget(self.github_client, config.github_repo, self.transport)
        self.label_translator = LabelTranslator(config.label_translations)

        logger.info(
            f"Initialized migrator for {config.jira_project} -> {config.github_repo} (profile {self.profile.name})"
        )

    def _project_description(self) -> str | None:
        if self.jira_client is None:
            return None
        try:
            project = self.jira_client.find_project(self.config.jira_project)
        except requests.RequestException as e:
            msg = f"Jira project {self.config.jira_project} not found: {e}"
            raise ConfigurationError(msg) from e
        return project.get("description")

    def reset_repository(self, ledger: MigrationLedger) -> None:
        """Delete and recreate the target repository for a dry run.

        Raises:
            ConfigurationError: If the ledger already maps issues to the repository
        """
        if not ledger.is_empty:
            msg = (
                f"Refusing to recreate {self.config.github_repo}: the ledger in {ledger.directory} "
                "already records imported issues"
            )
            raise ConfigurationError(msg)
        self.target.delete_repository()
        self.target.create_repository(self._project_description())

    def migrate(self) -> MigrationResult:
        """Execute the complete migration process.

        Raises:
            ConfigurationError: If the configuration is unusable
            LedgerError: If the ledger files cannot be read or written
            MigrationError: If milestones, labels or issues cannot be prepared
        """
        logger.info("Starting Jira to GitHub migration")
        with MigrationLedger.open(self.config.ledger_dir) as ledger:
            try:
                if self.config.delete_create_repository:
                    self.reset_repository(ledger)

                versions = self.source.get_versions(self.config.jira_project)
                label_mapping = create_labels(
                    self.target.repo,
                    self.profile.label_rules.all_labels(),
                    self.transport,
                    self.label_translator,
                )

                orchestrator = MigrationOrchestrator(
                    client=ImportJobClient(
                        self.github_client,
                        self.config.github_repo,
                        self.transport,
                        poll_interval=self.config.poll_interval,
                    ),
                    ledger=ledger,
                    profile=self.profile,
                    markup=MarkdownEngine(self.config.jira_base_url),
                    project_key=self.config.jira_project,
                    target=self.target,
                    label_mapping=label_mapping,
                    user_mapping=self.user_mapping,
                    checkpoint_size=self.config.checkpoint_size,
                    include_pull_requests=not self.config.delete_create_repository,
                )
                orchestrator.prepare(versions)

                issues = self.source.load_issues(self.config.query, self.profile.prerelease_policy)
                result = orchestrator.run(issues)

            except (GithubException, requests.RequestException) as e:
                msg = f"Migration failed: {e}"
                raise MigrationError(msg) from e

        logger.info(ledger.summary())
        if result.completed:
            logger.info("Migration completed successfully")
        else:
            logger.warning(f"Migration halted: {result.halted_reason}")
        return result
