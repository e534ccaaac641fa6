"""Jira Cloud REST v3 source reader."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Final

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .exceptions import JiraError
from .models import SourceAttachment, SourceComment, SourceIssue, SourceLink, SourceUser

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

EPIC_LINK_FIELD: Final[str] = "customfield_10014"
_PAGE_SIZE: Final[int] = 100
_DEFAULT_TIMEOUT: Final[float] = 30.0


def parse_timestamp(value: Any) -> dt.datetime | None:  # noqa: ANN401 - raw JSON
    """Parse a Jira timestamp such as ``2024-01-15T10:30:45.123+0000``."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return dt.datetime.fromisoformat(value)
    except ValueError:
        logger.debug(f"Unparseable Jira timestamp {value!r}")
        return None


def _user(raw: Any) -> SourceUser | None:  # noqa: ANN401 - raw JSON
    if not isinstance(raw, dict) or not raw.get("accountId"):
        return None
    return SourceUser(account_id=raw["accountId"], display_name=raw.get("displayName", ""))


def _name(raw: Any) -> str | None:  # noqa: ANN401 - raw JSON
    return raw.get("name") if isinstance(raw, dict) else None


def _link(raw: dict[str, Any]) -> SourceLink | None:
    link_type = raw.get("type") or {}
    for direction in ("outward", "inward"):
        other = raw.get(f"{direction}Issue")
        if isinstance(other, dict) and other.get("key"):
            return SourceLink(
                direction=direction,
                phrase=str(link_type.get(direction, "")),
                other_key=other["key"],
                other_created=parse_timestamp((other.get("fields") or {}).get("created")),
            )
    return None


def _comment(raw: dict[str, Any]) -> SourceComment:
    return SourceComment(
        id=str(raw.get("id", "")),
        body=raw.get("body"),
        author=_user(raw.get("author")),
        created=parse_timestamp(raw.get("created")),
        created_raw=raw.get("created") or "",
    )


def _attachment(raw: dict[str, Any]) -> SourceAttachment:
    return SourceAttachment(
        id=str(raw.get("id", "")),
        filename=raw.get("filename", ""),
        content_url=raw.get("content", ""),
        mime_type=raw.get("mimeType") or "application/octet-stream",
        author=_user(raw.get("author")),
    )


def issue_from_json(raw: dict[str, Any], comments: list[dict[str, Any]] | None = None) -> SourceIssue:
    """Normalize a Jira issue JSON object.

    Args:
        raw: Issue as returned by the search or issue endpoints
        comments: Complete comment list, when the embedded one was truncated
    """
    fields: dict[str, Any] = raw.get("fields") or {}
    parent = fields.get("parent") or {}
    epic_key = fields.get(EPIC_LINK_FIELD) or parent.get("key") or None

    links = tuple(link for link in (_link(item) for item in fields.get("issuelinks") or []) if link is not None)
    raw_comments = comments if comments is not None else (fields.get("comment") or {}).get("comments") or []

    return SourceIssue(
        key=raw["key"],
        issue_type=_name(fields.get("issuetype")) or "",
        status=_name(fields.get("status")) or "",
        summary=fields.get("summary") or "",
        description=fields.get("description"),
        priority=_name(fields.get("priority")),
        created=parse_timestamp(fields.get("created")),
        creator=_user(fields.get("creator")),
        assignee=_user(fields.get("assignee")),
        epic_key=epic_key if isinstance(epic_key, str) else None,
        links=links,
        comments=tuple(_comment(c) for c in raw_comments),
        attachments=tuple(_attachment(a) for a in fields.get("attachment") or []),
        watch_count=int((fields.get("watches") or {}).get("watchCount") or 0),
    )


def created_sort_key(issue: SourceIssue) -> tuple[int, dt.datetime, str]:
    """Sort oldest first; issues without a timestamp go last, ties by key."""
    if issue.created is None:
        return (1, dt.datetime.min.replace(tzinfo=dt.UTC), issue.key)
    created = issue.created if issue.created.tzinfo else issue.created.replace(tzinfo=dt.UTC)
    return (0, created, issue.key)


class JiraSource:
    """Reads issues, watchers and attachments from Jira Cloud."""

    def __init__(
        self,
        base_url: str,
        email: str,
        api_token: str,
        *,
        timeout: float = _DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.api_root: str = f"{base_url.rstrip('/')}/rest/api/3"
        self._timeout: float = timeout
        if session is None:
            session = requests.Session()
            session.auth = (email, api_token)
            session.headers["Accept"] = "application/json"
            retry = Retry(total=3, backoff_factor=0.5, status_forcelist=(429, 500, 502, 503, 504))
            session.mount("https://", HTTPAdapter(max_retries=retry))
        self._session: requests.Session = session

    def _get(self, url: str, params: dict[str, Any] | None = None) -> requests.Response:
        response = self._session.get(url, params=params, timeout=self._timeout)
        if response.status_code >= 400:
            msg = f"Jira GET {url} failed with {response.status_code}: {response.text[:200]}"
            raise JiraError(msg, status=response.status_code)
        return response

    def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:  # noqa: ANN401 - raw JSON
        return self._get(f"{self.api_root}{path}", params).json()

    def list_projects(self) -> list[tuple[str, str]]:
        projects: list[tuple[str, str]] = []
        start = 0
        while True:
            data = self._get_json("/project/search", {"startAt": start, "maxResults": _PAGE_SIZE})
            values = data.get("values", [])
            projects.extend((p["key"], p.get("name", "")) for p in values)
            if data.get("isLast", True) or not values:
                return projects
            start += len(values)

    def _all_comments(self, issue_key: str) -> list[dict[str, Any]]:
        comments: list[dict[str, Any]] = []
        start = 0
        while True:
            data = self._get_json(f"/issue/{issue_key}/comment", {"startAt": start, "maxResults": _PAGE_SIZE})
            batch = data.get("comments", [])
            comments.extend(batch)
            if not batch or len(comments) >= int(data.get("total", 0)):
                return comments
            start += len(batch)

    def list_issues(self, project_key: str, keys: list[str] | None = None) -> list[SourceIssue]:
        jql = f'project = "{project_key}"'
        if keys:
            jql += f" AND key in ({', '.join(keys)})"
        jql += " ORDER BY created ASC"

        issues: list[SourceIssue] = []
        next_page_token: str | None = None
        while True:
            params: dict[str, Any] = {"jql": jql, "fields": "*all", "maxResults": _PAGE_SIZE}
            if next_page_token:
                params["nextPageToken"] = next_page_token
            data = self._get_json("/search/jql", params)

            for raw in data.get("issues", []):
                embedded = (raw.get("fields") or {}).get("comment") or {}
                comments = None
                if int(embedded.get("total", 0)) > len(embedded.get("comments") or []):
                    comments = self._all_comments(raw["key"])
                issues.append(issue_from_json(raw, comments))

            next_page_token = data.get("nextPageToken")
            logger.debug(f"Fetched {len(issues)} issues from {project_key}")
            if not next_page_token or data.get("isLast", False):
                break

        issues.sort(key=created_sort_key)
        logger.info(f"Found {len(issues)} Jira issues in {project_key}")
        return issues

    def list_watchers(self, issue_key: str) -> list[SourceUser]:
        data = self._get_json(f"/issue/{issue_key}/watchers")
        return [user for user in (_user(w) for w in data.get("watchers", [])) if user is not None]

    def download_attachment(self, attachment: SourceAttachment) -> bytes:
        return self._get(attachment.content_url).content
