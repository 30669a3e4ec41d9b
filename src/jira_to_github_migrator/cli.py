"""
Command-line interface for the Jira to GitHub migration tool.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from . import github_utils as ghu
from . import jira_utils
from .config import DEFAULT_CHECKPOINT_SIZE, DEFAULT_POLL_INTERVAL, JIRA_URL_ENV_VAR, MigrationConfig
from .exceptions import MigrationError
from .migrator import JiraToGitHubMigrator
from .profiles import PROFILE_NAMES
from .reports import generate_report
from .rate_limit import DEFAULT_ABUSE_BASE_DELAY, DEFAULT_MIN_INTERVAL
from .utils import PassError, setup_logging
from .versions import PrereleasePolicy

logger: logging.Logger = logging.getLogger(__name__)


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Migrate Jira issues to GitHub through the issue import API")

    # Positional arguments
    _ = parser.add_argument("jira_project", help="Jira project key (e.g. SPR)")
    _ = parser.add_argument("github_repo", help="GitHub repository path (owner/repo)")

    # Optional arguments with short forms
    _ = parser.add_argument(
        "--relabel",
        "-l",
        action="append",
        dest="label_translations",
        help='Label translation pattern (format: "source_pattern:target_pattern"). Can be specified multiple times.',
    )
    _ = parser.add_argument(
        "--jira-url", default=os.environ.get(JIRA_URL_ENV_VAR), help=f"Jira base URL (default: ${JIRA_URL_ENV_VAR})"
    )
    _ = parser.add_argument("--jql", help="JQL selecting the issues (default: all issues of the project by key)")
    _ = parser.add_argument("--profile", default="default", choices=PROFILE_NAMES, help="Migration profile")
    _ = parser.add_argument(
        "--prerelease-policy",
        choices=[p.value for p in PrereleasePolicy],
        help="Override the profile's handling of pre-release fix versions",
    )
    _ = parser.add_argument(
        "--ledger-dir", type=Path, default=Path(), help="Directory of the mappings and failures files (default: .)"
    )
    _ = parser.add_argument(
        "--checkpoint-size",
        type=int,
        default=DEFAULT_CHECKPOINT_SIZE,
        help=f"Issues submitted before awaiting their results (default: {DEFAULT_CHECKPOINT_SIZE})",
    )
    _ = parser.add_argument(
        "--min-interval",
        type=float,
        default=DEFAULT_MIN_INTERVAL,
        help=f"Minimum seconds between GitHub API calls (default: {DEFAULT_MIN_INTERVAL:g})",
    )
    _ = parser.add_argument(
        "--abuse-delay",
        type=float,
        default=DEFAULT_ABUSE_BASE_DELAY,
        help=f"Initial wait in seconds after a secondary rate limit (default: {DEFAULT_ABUSE_BASE_DELAY:g})",
    )
    _ = parser.add_argument(
        "--poll-interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL,
        help=f"Seconds between import status checks (default: {DEFAULT_POLL_INTERVAL:g})",
    )
    _ = parser.add_argument(
        "--delete-create-repo",
        action="store_true",
        help="Delete and recreate the GitHub repository first (dry runs only, refused if it has commits)",
    )
    _ = parser.add_argument(
        "--report",
        action="store_true",
        help="Only read Jira and print what a migration would create, without touching GitHub",
    )
    _ = parser.add_argument("--user-mapping", type=Path, help="File of jiraUserKey=githubLogin lines")
    _ = parser.add_argument(
        "--jira-pass-password", help="Path for the Jira password in pass utility (default: jira/cli/password)"
    )
    _ = parser.add_argument(
        "--github-pass-token", help="Path for GitHub token in pass utility (default: github/cli/token)"
    )
    _ = parser.add_argument(
        "--verbose", "-v", action="count", default=0, help="Show INFO output, repeat for DEBUG"
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> MigrationConfig:
    policy: str | None = args.prerelease_policy
    return MigrationConfig(
        jira_base_url=args.jira_url or "",
        jira_project=args.jira_project,
        github_repo=args.github_repo,
        github_token=ghu.get_token(args.github_pass_token),
        jql=args.jql,
        jira_credentials=jira_utils.get_credentials(args.jira_pass_password),
        profile=args.profile,
        prerelease_policy=PrereleasePolicy(policy) if policy else None,
        ledger_dir=args.ledger_dir,
        checkpoint_size=args.checkpoint_size,
        min_interval=args.min_interval,
        abuse_base_delay=args.abuse_delay,
        poll_interval=args.poll_interval,
        delete_create_repository=args.delete_create_repo,
        user_mapping_file=args.user_mapping,
        label_translations=args.label_translations or [],
    )


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_arguments(argv)
    setup_logging(verbosity=args.verbose)

    try:
        config = build_config(args)
        if args.report:
            output = generate_report(config).render()
        else:
            output = JiraToGitHubMigrator(config).migrate().summary()
    except (MigrationError, PassError, ValueError) as e:
        logger.exception("Migration failed")
        print(f"Migration failed: {e}", file=sys.stderr)
        sys.exit(1)

    print(output)
    sys.exit(0)
