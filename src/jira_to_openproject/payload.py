"""Build OpenProject work package payloads and migrated comment bodies."""

from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass
from typing import Any, Final

COMMENT_MARKER_PATTERN: Final[re.Pattern[str]] = re.compile(r"<!-- jira-comment:([^\s>]+) -->")


def format_timestamp(iso_timestamp: str) -> str:
    """Format ISO 8601 timestamp to human-readable format.

    Args:
        iso_timestamp: ISO 8601 formatted timestamp string

    Returns:
        Formatted timestamp (e.g., "2024-01-15 10:30:45Z").
        Returns original value if parsing fails.
    """
    if not iso_timestamp:
        return iso_timestamp

    try:
        timestamp_dt = dt.datetime.fromisoformat(iso_timestamp)
        formatted = timestamp_dt.isoformat(sep=" ", timespec="seconds")
        return formatted.replace("+00:00", "Z")
    except (ValueError, AttributeError):
        return iso_timestamp


def comment_marker(comment_id: str) -> str:
    """Return the marker identifying a migrated Jira comment."""
    return f"<!-- jira-comment:{comment_id} -->"


def extract_comment_markers(text: str) -> set[str]:
    """Return the Jira comment ids referenced by markers in ``text``."""
    return set(COMMENT_MARKER_PATTERN.findall(text or ""))


def build_comment_body(comment_id: str, author_name: str, created: str, markup: str) -> str:
    """Build the migrated comment: attribution header, rendered body, marker."""
    author = author_name or "Unknown user"
    header = f"{author} wrote on {format_timestamp(created)}:" if created else f"{author} wrote:"
    return f"{header}\n{markup}\n\n{comment_marker(comment_id)}"


def _link(resource: str, resource_id: int | str) -> dict[str, str]:
    return {"href": f"/api/v3/{resource}/{resource_id}"}


@dataclass(frozen=True)
class WorkPackagePayload:
    """The fields written to a work package.

    ``None`` on ``assignee_id`` / ``responsible_id`` means the field is
    absent from the payload, leaving whatever OpenProject has.
    """

    subject: str
    description: str
    type_id: int
    status_id: int
    priority_id: int
    project_id: int
    correlation_field: str
    correlation_key: str
    assignee_id: int | None = None
    responsible_id: int | None = None

    def to_json(self, *, for_update: bool = False) -> dict[str, Any]:
        """Serialize to the OpenProject HAL payload.

        Updates omit ``_type`` and the project link; the caller adds the
        ``lockVersion``.
        """
        links: dict[str, dict[str, str]] = {
            "type": _link("types", self.type_id),
            "status": _link("statuses", self.status_id),
            "priority": _link("priorities", self.priority_id),
        }
        if not for_update:
            links["project"] = _link("projects", self.project_id)
        if self.assignee_id is not None:
            links["assignee"] = _link("users", self.assignee_id)
        if self.responsible_id is not None:
            links["responsible"] = _link("users", self.responsible_id)

        data: dict[str, Any] = {
            "subject": self.subject,
            "description": {"raw": self.description},
            self.correlation_field: self.correlation_key,
            "_links": links,
        }
        if not for_update:
            data["_type"] = "WorkPackage"
        return data


def description_payload(description: str) -> dict[str, Any]:
    """Payload for a description-only update."""
    return {"description": {"raw": description}}


def parent_payload(parent_id: int) -> dict[str, Any]:
    """Payload setting the structural parent of a work package."""
    return {"_links": {"parent": _link("work_packages", parent_id)}}
