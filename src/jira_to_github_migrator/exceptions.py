"""
Custom exception classes for the Jira to GitHub migration tool.
"""

from __future__ import annotations


class MigrationError(Exception):
    """Base exception for migration errors."""


class ConfigurationError(MigrationError):
    """Raised when required configuration is missing or invalid. Aborts the run."""


class LedgerError(MigrationError):
    """Raised when the ledger files cannot be read or written. Aborts the run."""


class ImportJobError(MigrationError):
    """Raised when the import API returns a response that cannot be interpreted."""


class MarkupConversionError(MigrationError):
    """Raised when Jira markup cannot be converted to Markdown."""
