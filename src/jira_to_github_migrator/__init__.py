"""
Jira to GitHub Migration Tool

Migrates Jira issues to GitHub through the issue import API, with labels,
milestones, backport holder issues and a resumable ledger of imported issues.
"""

from __future__ import annotations

from .cli import main
from .config import MigrationConfig
from .exceptions import ConfigurationError, LedgerError, MigrationError
from .labels import LabelTranslator
from .migrator import JiraToGitHubMigrator
from .reports import MigrationReport, generate_report
from .utils import setup_logging

# Package version
__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "JiraToGitHubMigrator",
    "LabelTranslator",
    "LedgerError",
    "MigrationConfig",
    "MigrationError",
    "MigrationReport",
    "generate_report",
    "main",
    "setup_logging",
]
