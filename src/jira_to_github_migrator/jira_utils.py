"""Jira REST client producing immutable issue snapshots."""

from __future__ import annotations

import datetime as dt
import logging
import os
from typing import TYPE_CHECKING, Any, Final

import requests

from . import utils
from .models import Attachment, IssueLink, IssueRef, SourceComment, SourceIssue, SourceUser, SourceVersion
from .versions import PrereleasePolicy, split_releases

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

logger: logging.Logger = logging.getLogger(__name__)

_USER_ENV_VAR: Final = "JIRA_USER"
_PASSWORD_ENV_VAR: Final = "JIRA_PASSWORD"
_DEFAULT_PASSWORD_PASS_PATH: Final = "jira/cli/password"

PAGE_SIZE: Final = 1000
REQUEST_TIMEOUT: Final = 30
FIELD_NAMES: Final = (
    "summary,comment,assignee,components,created,creator,description,versions,fixVersions,issuetype,"
    "reporter,resolution,status,issuelinks,updated,parent,subtasks,labels,attachment,watches,"
    "customfield_10120,customfield_10684,security"
)
REFERENCE_URL_FIELD: Final = "customfield_10120"
PULL_REQUEST_URL_FIELD: Final = "customfield_10684"
BACKPORT_ISSUE_TYPE: Final = "Backport"
PUBLIC_SECURITY_LEVEL: Final = "Public"


def default_jql(project_key: str) -> str:
    return f"project = '{project_key}' ORDER BY key ASC"


def get_credentials(pass_path: str | None = None) -> tuple[str, str] | None:
    """Get Jira credentials from env vars JIRA_USER/JIRA_PASSWORD or pass.

    Anonymous access (None) is fine for public Jira instances.
    """
    user = os.environ.get(_USER_ENV_VAR)
    if not user:
        return None
    if pass_path:
        return user, utils.get_pass_value(pass_path)
    password = os.environ.get(_PASSWORD_ENV_VAR)
    if password:
        return user, password
    try:
        return user, utils.get_pass_value(_DEFAULT_PASSWORD_PASS_PATH)
    except (ValueError, utils.PassError):
        logger.warning(f"{_USER_ENV_VAR} is set but no Jira password was found, using anonymous access")
        return None


def parse_datetime(value: str | None) -> dt.datetime | None:
    """Parse Jira timestamps such as ``2016-03-01T10:15:02.000+0000``."""
    if not value:
        return None
    for fmt in ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%d"):
        try:
            parsed = dt.datetime.strptime(value, fmt)
        except ValueError:
            continue
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=dt.UTC)
    return dt.datetime.fromisoformat(value)


def _name(value: Mapping[str, Any] | None) -> str | None:
    return value.get("name") if value else None


def browse_base_of(self_url: str) -> str:
    """Derive the Jira base URL from an issue's REST ``self`` link."""
    base, sep, _ = self_url.partition("/rest/")
    return base if sep else self_url.rstrip("/")


def parse_user(raw: Mapping[str, Any] | None, browse_base: str) -> SourceUser | None:
    if not raw:
        return None
    key = raw.get("key") or raw.get("name") or raw.get("accountId") or ""
    return SourceUser(
        key=key,
        display_name=raw.get("displayName") or key,
        browser_url=f"{browse_base}/secure/ViewProfile.jspa?name={key}",
    )


def _parse_link(raw: Mapping[str, Any]) -> IssueLink | None:
    link_type = raw.get("type") or {}
    if "outwardIssue" in raw:
        other = raw["outwardIssue"]
        return IssueLink("outward", link_type.get("outward", ""), other["key"], other.get("fields", {}).get("summary", ""))
    if "inwardIssue" in raw:
        other = raw["inwardIssue"]
        return IssueLink("inward", link_type.get("inward", ""), other["key"], other.get("fields", {}).get("summary", ""))
    return None


def _parse_ref(raw: Mapping[str, Any]) -> IssueRef:
    fields = raw.get("fields") or {}
    return IssueRef(key=raw["key"], summary=fields.get("summary", ""), issue_type=_name(fields.get("issuetype")) or "")


def parse_issue(
    raw: Mapping[str, Any],
    *,
    votes: int = 0,
    commit_urls: tuple[str, ...] = (),
    extra_fix_versions: tuple[str, ...] = (),
    policy: PrereleasePolicy = PrereleasePolicy.GA_PRIMARY,
) -> SourceIssue:
    """Build a :class:`SourceIssue` from a Jira search result entry.

    Args:
        raw: One element of the ``issues`` array of a search response
        votes: Vote count, fetched separately
        commit_urls: Linked commit URLs, fetched separately
        extra_fix_versions: Fix versions of "Backport" sub-tasks, aggregated into the parent
        policy: Pre-release policy used to derive primary and backport releases
    """
    fields = raw.get("fields") or {}
    browse_base = browse_base_of(raw.get("self", ""))

    fix_versions = tuple(v["name"] for v in fields.get("fixVersions") or ())
    primary, backports = split_releases(fix_versions + extra_fix_versions, policy)

    comments = tuple(
        SourceComment(
            author=parse_user(c.get("author"), browse_base) or SourceUser("anonymous", "Anonymous"),
            body=c.get("body") or "",
            created=parse_datetime(c.get("created")),
        )
        for c in (fields.get("comment") or {}).get("comments", ())
    )
    links = tuple(link for link in map(_parse_link, fields.get("issuelinks") or ()) if link is not None)
    attachments = tuple(
        Attachment(filename=a["filename"], content_url=a["content"], size=a.get("size", 0))
        for a in fields.get("attachment") or ()
    )
    security = _name(fields.get("security"))

    return SourceIssue(
        key=raw["key"],
        summary=fields.get("summary") or "",
        created=parse_datetime(fields.get("created")),
        updated=parse_datetime(fields.get("updated")),
        browse_base=browse_base,
        description=fields.get("description") or "",
        reporter=parse_user(fields.get("reporter") or fields.get("creator"), browse_base),
        assignee=parse_user(fields.get("assignee"), browse_base),
        status=_name(fields.get("status")) or "",
        resolution=_name(fields.get("resolution")),
        issue_type=_name(fields.get("issuetype")) or "",
        components=tuple(c["name"] for c in fields.get("components") or ()),
        fix_versions=fix_versions,
        affects_versions=tuple(v["name"] for v in fields.get("versions") or ()),
        labels=tuple(fields.get("labels") or ()),
        links=links,
        parent=_parse_ref(fields["parent"]) if fields.get("parent") else None,
        subtasks=tuple(_parse_ref(s) for s in fields.get("subtasks") or ()),
        votes=votes,
        watchers=(fields.get("watches") or {}).get("watchCount", 0),
        attachments=attachments,
        reference_url=fields.get(REFERENCE_URL_FIELD),
        pull_request_url=fields.get(PULL_REQUEST_URL_FIELD),
        commit_urls=commit_urls,
        comments=comments,
        is_public=security is None or security == PUBLIC_SECURITY_LEVEL,
        fix_version=primary,
        backport_versions=backports,
    )


def extract_commit_urls(detail: Mapping[str, Any]) -> tuple[str, ...]:
    """Extract commit URLs from a dev-status detail response."""
    for entry in detail.get("detail") or ():
        for repository in entry.get("repositories") or ():
            return tuple(c["url"] for c in repository.get("commits") or () if c.get("url"))
    return ()


class JiraClient:
    """Read-only Jira REST API client."""

    def __init__(
        self,
        base_url: str,
        credentials: tuple[str, str] | None = None,
        *,
        session: requests.Session | None = None,
        fetch_votes_and_commits: bool = True,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        if credentials:
            self.session.auth = credentials
        self.session.headers.setdefault("Accept", "application/json")
        self.fetch_votes_and_commits = fetch_votes_and_commits

    def _get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        response = self.session.get(f"{self.base_url}{path}", params=params, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        return response.json()

    def find_project(self, project_key: str) -> dict[str, Any]:
        return self._get(f"/rest/api/2/project/{project_key}")

    def get_versions(self, project_key: str) -> list[SourceVersion]:
        """Return the versions of a project, used to create milestones."""
        versions = []
        for raw in self._get(f"/rest/api/2/project/{project_key}/versions"):
            versions.append(
                SourceVersion(
                    name=raw["name"],
                    released=bool(raw.get("released")),
                    release_date=parse_datetime(raw.get("releaseDate")),
                    description=raw.get("description") or "",
                )
            )
        return versions

    def search(self, jql: str) -> Iterator[dict[str, Any]]:
        """Yield raw issues matching ``jql``, page by page."""
        start_at = 0
        while True:
            logger.debug(f"Loading issues {start_at}-{start_at + PAGE_SIZE}")
            page = self._get(
                "/rest/api/2/search",
                {"jql": jql, "startAt": start_at, "maxResults": PAGE_SIZE, "fields": FIELD_NAMES},
            )
            issues = page.get("issues") or []
            yield from issues
            start_at += len(issues)
            if not issues or start_at >= page.get("total", 0):
                break

    def get_votes(self, issue_id: str) -> int:
        return int(self._get(f"/rest/api/2/issue/{issue_id}/votes").get("votes", 0))

    def get_commit_urls(self, issue_id: str) -> tuple[str, ...]:
        # Not an official API, it is what the Jira UI uses
        detail = self._get(
            "/rest/dev-status/1.0/issue/detail",
            {"issueId": issue_id, "applicationType": "github", "dataType": "repository"},
        )
        return extract_commit_urls(detail)

    def load_issues(self, jql: str, policy: PrereleasePolicy = PrereleasePolicy.GA_PRIMARY) -> list[SourceIssue]:
        """Load all issues matching ``jql`` as immutable snapshots, in key order.

        Fix versions of "Backport" sub-tasks are aggregated into their parent
        so holder issues refer to every backport.
        """
        logger.info(f"Loading issues, query: \"{jql}\"")
        raw_issues = list(self.search(jql))
        logger.info(f"{len(raw_issues)} issues loaded")

        backport_versions: dict[str, tuple[str, ...]] = {
            raw["key"]: tuple(v["name"] for v in raw["fields"].get("fixVersions") or ())
            for raw in raw_issues
            if _name(raw["fields"].get("issuetype")) == BACKPORT_ISSUE_TYPE
        }

        issues = []
        for index, raw in enumerate(raw_issues, start=1):
            extra = tuple(
                version
                for subtask in raw["fields"].get("subtasks") or ()
                for version in backport_versions.get(subtask["key"], ())
            )
            votes, commits = 0, ()
            if self.fetch_votes_and_commits:
                votes = self.get_votes(raw["id"])
                commits = self.get_commit_urls(raw["id"])
            issues.append(parse_issue(raw, votes=votes, commit_urls=commits, extra_fix_versions=extra, policy=policy))
            if index % 100 == 0:
                logger.info(f"Loaded details for {index} of {len(raw_issues)} issues")
        return issues
