from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Final

from github import Auth, Github, GithubException, UnknownObjectException
from github.AuthenticatedUser import AuthenticatedUser

from . import utils
from .exceptions import ConfigurationError, MigrationError
from .models import TargetMilestone

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from github.Milestone import Milestone
    from github.Organization import Organization
    from github.Repository import Repository

    from .models import SourceVersion
    from .rate_limit import RateLimitedTransport

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

_TOKEN_ENV_VAR: Final = "GITHUB_TOKEN"
_DEFAULT_TOKEN_PASS_PATH: Final = "github/cli/token"


def get_token(pass_path: str | None = None) -> str | None:
    """Get GitHub token from pass path, env var GITHUB_TOKEN, or default pass location."""
    if pass_path:
        return utils.get_pass_value(pass_path)

    token: str | None = os.environ.get(_TOKEN_ENV_VAR)
    if token:
        return token

    try:
        return utils.get_pass_value(_DEFAULT_TOKEN_PASS_PATH)
    except (ValueError, utils.PassError):
        logger.warning("No GitHub token specified nor found")
        return None


def get_client(token: str | None = None) -> Github:
    """Get a GitHub client using the token.

    PyGithub's own retry and request spacing are disabled; all calls go
    through a :class:`RateLimitedTransport` instead.
    """
    auth = Auth.Token(token) if token else None
    return Github(auth=auth, retry=None, seconds_between_requests=None, seconds_between_writes=None)


def validate_repo_path(repo_path: str) -> tuple[str, str]:
    """Split ``owner/repository`` into its parts."""
    parts = repo_path.strip().split("/")
    if len(parts) != 2 or not all(parts):
        msg = f"Invalid GitHub repository path '{repo_path}'. Expected format: 'owner/repository'"
        raise ConfigurationError(msg)
    return parts[0], parts[1]


def _milestone_from_github(milestone: Milestone) -> TargetMilestone:
    return TargetMilestone(
        number=milestone.number,
        title=milestone.title,
        state="closed" if milestone.state == "closed" else "open",
        created_at=milestone.created_at,
        due_on=milestone.due_on,
    )


class GitHubTarget:
    """State-changing operations on the target repository, all rate limited."""

    def __init__(self, client: Github, repo_path: str, transport: RateLimitedTransport) -> None:
        validate_repo_path(repo_path)
        self.client = client
        self.repo_path = repo_path
        self.transport = transport
        self._repo: Repository | None = None

    def get_repo(self) -> Repository | None:
        try:
            return self.transport.call(lambda: self.client.get_repo(self.repo_path))
        except UnknownObjectException as e:
            if e.status == 404:
                return None
            msg = f"Error checking repository existence: {e}"
            raise MigrationError(msg) from e

    @property
    def repo(self) -> Repository:
        if self._repo is None:
            repo = self.get_repo()
            if repo is None:
                msg = f"Repository {self.repo_path} does not exist"
                raise MigrationError(msg)
            self._repo = repo
        return self._repo

    def delete_repository(self) -> None:
        """Delete the target repository if it exists.

        Raises:
            MigrationError: If the repository has commits (it holds real work, not a migration dry run)
        """
        repo = self.get_repo()
        if repo is None:
            logger.info(f"Repository {self.repo_path} does not exist, nothing to delete")
            return

        try:
            has_commits = self.transport.call(lambda: repo.get_commits().totalCount) > 0
        except GithubException as e:
            # 409 Conflict: "Git Repository is empty"
            if e.status not in (404, 409):
                raise
            has_commits = False
        if has_commits:
            msg = f"Refusing to delete {self.repo_path}: the repository has commits"
            raise MigrationError(msg)

        self.transport.call(repo.delete)
        self._repo = None
        logger.info(f"Deleted repository {self.repo_path}")

    def create_repository(self, description: str | None = None) -> Repository:
        """Create the target repository under an organization or the authenticated user."""
        owner, repo_name = validate_repo_path(self.repo_path)

        if self.get_repo() is not None:
            msg = f"Repository {self.repo_path} already exists"
            raise MigrationError(msg)

        account: Organization | AuthenticatedUser
        try:
            account = self.transport.call(lambda: self.client.get_organization(owner))
        except UnknownObjectException as e:
            if e.status != 404:
                raise
            # Not an organization, validate it's the authenticated user
            authenticated_user = self.transport.call(self.client.get_user)
            assert isinstance(authenticated_user, AuthenticatedUser)  # always true
            if owner != authenticated_user.login:
                msg = (
                    f"Cannot create repository for '{owner}'. "
                    "The specified owner is not an organization and does not match "
                    f"the authenticated user '{authenticated_user.login}'."
                )
                raise MigrationError(msg) from None
            account = authenticated_user

        self._repo = self.transport.call(
            lambda: account.create_repo(name=repo_name, description=description or "", private=True, has_issues=True)
        )
        logger.info(f"Created repository {self.repo_path}")
        return self._repo

    def get_milestones(self) -> dict[str, TargetMilestone]:
        """Return all milestones of the repository keyed by title."""
        milestones = self.transport.call(lambda: list(self.repo.get_milestones(state="all")))
        return {m.title: _milestone_from_github(m) for m in milestones}

    def create_milestones(
        self,
        versions: Iterable[SourceVersion],
        accepts: Callable[[str], bool] = lambda _: True,
    ) -> dict[str, TargetMilestone]:
        """Create a milestone per Jira version, skipping existing titles and rejected versions.

        Returns:
            All milestones of the repository keyed by title
        """
        milestones = self.get_milestones()
        for version in versions:
            if version.name in milestones or not accepts(version.name):
                continue
            kwargs: dict[str, object] = {
                "title": version.name,
                "state": "closed" if version.released else "open",
                "description": version.description or "",
            }
            if version.release_date is not None:
                kwargs["due_on"] = version.release_date
            try:
                created = self.transport.call(lambda kw=kwargs: self.repo.create_milestone(**kw))
            except GithubException as e:
                msg = f"Failed to create milestone {version.name}: {e}"
                raise MigrationError(msg) from e
            milestones[version.name] = _milestone_from_github(created)
            logger.info(f"Created milestone {version.name} (#{created.number})")
        return milestones

    def create_comment(self, issue_number: int, body: str) -> None:
        self.transport.call(
            lambda: self.client.requester.requestJsonAndCheck(
                "POST", f"/repos/{self.repo_path}/issues/{issue_number}/comments", input={"body": body}
            )
        )
