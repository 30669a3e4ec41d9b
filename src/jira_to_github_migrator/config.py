"""
Run configuration for the Jira to GitHub migration tool.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Final

from .exceptions import ConfigurationError
from .github_utils import validate_repo_path
from .jira_utils import default_jql
from .orchestrator import DEFAULT_CHECKPOINT_SIZE
from .profiles import PROFILE_NAMES
from .rate_limit import DEFAULT_ABUSE_BASE_DELAY, DEFAULT_MIN_INTERVAL

if TYPE_CHECKING:
    from .versions import PrereleasePolicy

logger: logging.Logger = logging.getLogger(__name__)

JIRA_URL_ENV_VAR: Final = "JIRA_BASE_URL"
DEFAULT_POLL_INTERVAL: Final = 1.0


@dataclass(frozen=True)
class MigrationConfig:
    jira_base_url: str
    jira_project: str
    github_repo: str
    github_token: str | None
    jql: str | None = None
    jira_credentials: tuple[str, str] | None = None
    profile: str = "default"
    prerelease_policy: PrereleasePolicy | None = None
    ledger_dir: Path = Path()
    checkpoint_size: int = DEFAULT_CHECKPOINT_SIZE
    min_interval: float = DEFAULT_MIN_INTERVAL
    abuse_base_delay: float = DEFAULT_ABUSE_BASE_DELAY
    poll_interval: float = DEFAULT_POLL_INTERVAL
    delete_create_repository: bool = False
    user_mapping_file: Path | None = None
    label_translations: list[str] = field(default_factory=list)

    @property
    def query(self) -> str:
        return self.jql or default_jql(self.jira_project)

    def validate(self, *, require_github_token: bool = True) -> None:
        """Check that the configuration can drive a run.

        The report mode only reads Jira and passes ``require_github_token=False``.

        Raises:
            ConfigurationError: On the first missing or invalid setting
        """
        if not self.jira_base_url:
            msg = f"No Jira URL given, use --jira-url or set {JIRA_URL_ENV_VAR}"
            raise ConfigurationError(msg)
        if not self.jira_project:
            msg = "No Jira project key given"
            raise ConfigurationError(msg)
        if require_github_token and not self.github_token:
            msg = "No GitHub token found, set GITHUB_TOKEN or use --github-pass-token"
            raise ConfigurationError(msg)
        validate_repo_path(self.github_repo)
        if self.profile.lower() not in PROFILE_NAMES:
            msg = f"Unknown migration profile '{self.profile}'. Available: {', '.join(PROFILE_NAMES)}"
            raise ConfigurationError(msg)
        if self.checkpoint_size < 1:
            msg = f"Checkpoint size must be positive, got {self.checkpoint_size}"
            raise ConfigurationError(msg)
        for name in ("min_interval", "abuse_base_delay", "poll_interval"):
            value = getattr(self, name)
            if value <= 0:
                msg = f"{name} must be positive, got {value}"
                raise ConfigurationError(msg)
        if self.user_mapping_file is not None and not self.user_mapping_file.is_file():
            msg = f"User mapping file not found: {self.user_mapping_file}"
            raise ConfigurationError(msg)

    def load_user_mapping(self) -> dict[str, str]:
        """Read ``jiraUserKey=githubLogin`` lines. Returns an empty mapping when no file is configured."""
        if self.user_mapping_file is None:
            return {}
        return load_user_mapping(self.user_mapping_file)


def load_user_mapping(path: Path) -> dict[str, str]:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        msg = f"Cannot read user mapping file {path}: {e}"
        raise ConfigurationError(msg) from e

    mapping: dict[str, str] = {}
    for line_number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith(("#", "!")):
            continue
        jira_user, sep, github_login = line.partition("=")
        if not sep or not jira_user.strip() or not github_login.strip():
            msg = f"Malformed line {line_number} in {path}: {raw!r}"
            raise ConfigurationError(msg)
        mapping[jira_user.strip()] = github_login.strip()
    logger.info(f"Loaded {len(mapping)} user mappings from {path}")
    return mapping
