"""Client for GitHub's asynchronous issue import API.

GitHub does not expose the import endpoints through PyGithub's object
model, so requests go through the client's requester (same auth and base
URL) wrapped in the :class:`RateLimitedTransport`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Final
from urllib.parse import urlparse

import requests
from github import GithubException

from .exceptions import ImportJobError
from .models import ImportJob, ImportResult

if TYPE_CHECKING:
    from collections.abc import Sequence

    from github import Github

    from .models import ImportComment, TargetIssuePayload
    from .rate_limit import Clock, RateLimitedTransport

logger: logging.Logger = logging.getLogger(__name__)

IMPORT_MEDIA_TYPE: Final = "application/vnd.github.golden-comet-preview+json"
STATUS_PENDING: Final = "pending"
STATUS_FAILED: Final = "failed"

# Errors that fail a single import job without aborting the run
JOB_ERRORS: Final = (GithubException, ImportJobError, requests.RequestException)


def parse_issue_number(issue_url: str) -> int:
    """Extract the issue number from the trailing path segment of an issue URL."""
    segments = [s for s in urlparse(issue_url).path.split("/") if s]
    try:
        return int(segments[-1])
    except (IndexError, ValueError) as e:
        msg = f"Cannot parse issue number from URL: {issue_url}"
        raise ImportJobError(msg) from e


class ImportJobClient:
    """Submits issues as import jobs and polls them to a terminal state."""

    def __init__(
        self,
        github_client: Github,
        repo_path: str,
        transport: RateLimitedTransport,
        *,
        poll_interval: float = 1.0,
        clock: Clock | None = None,
    ) -> None:
        self.github_client = github_client
        self.repo_path = repo_path
        self.transport = transport
        self.poll_interval = poll_interval
        self.clock: Clock = clock or transport.clock

    def _request(self, verb: str, url: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        headers = {"Accept": IMPORT_MEDIA_TYPE}
        _, data = self.transport.call(
            lambda: self.github_client.requester.requestJsonAndCheck(verb, url, headers=headers, input=payload)
        )
        if not isinstance(data, dict):
            msg = f"Unexpected response from {verb} {url}: {data!r}"
            raise ImportJobError(msg)
        return data

    def submit(
        self,
        payload: TargetIssuePayload,
        comments: Sequence[ImportComment] = (),
        *,
        source_key: str | None = None,
        holder_for: str | None = None,
    ) -> ImportJob:
        """Submit one issue and its comments as a single import request.

        Raises:
            GithubException: If the request is rejected
            ImportJobError: If the response carries no poll URL
        """
        body = {"issue": payload.to_json(), "comments": [c.to_json() for c in comments]}
        data = self._request("POST", f"/repos/{self.repo_path}/import/issues", body)

        poll_url = data.get("url")
        if not poll_url:
            msg = f"Import response for '{payload.title}' has no poll URL: {data}"
            raise ImportJobError(msg)

        logger.debug(f"Submitted import for '{payload.title}': {poll_url}")
        return ImportJob(
            payload=payload,
            comments=tuple(comments),
            poll_url=poll_url,
            submitted_at=self.clock.time(),
            source_key=source_key,
            holder_for=holder_for,
        )

    def wait_for(self, job: ImportJob) -> ImportResult:
        """Poll an import job until it succeeds or fails.

        There is no timeout: large imports can stay pending for hours. Errors
        from the transport (other than rate limits) propagate to the caller.
        """
        label = job.source_key or job.holder_for or job.poll_url
        while True:
            data = self._request("GET", job.poll_url)
            status = data.get("status")

            if status == STATUS_FAILED:
                return ImportResult(error=f"status: {data}")

            if status == STATUS_PENDING:
                logger.debug(f"{label} import still pending, waiting {self.poll_interval:g} seconds")
                self.clock.sleep(self.poll_interval)
                continue

            issue_url = data.get("issue_url")
            if not issue_url:
                return ImportResult(error=f"No URL for imported issue: {data}")

            try:
                return ImportResult(issue_number=parse_issue_number(issue_url))
            except ImportJobError as e:
                return ImportResult(error=str(e))
