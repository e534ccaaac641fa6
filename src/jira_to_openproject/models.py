"""Data models exchanged between the Jira source, the OpenProject target and the migrator.

Source records are frozen: they are fetched once and never modified during a
run. Target records mirror the subset of the OpenProject HAL resources the
migrator actually reads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Literal


@dataclass(frozen=True)
class SourceUser:
    """A Jira account reference."""

    account_id: str
    display_name: str = ""


@dataclass(frozen=True)
class SourceLink:
    """One side of a Jira issue link as seen from the issue that owns it.

    ``phrase`` is the direction-specific wording Jira shows on this side
    (e.g. "blocks" for outward links, "is blocked by" for inward ones).
    ``other_created`` is only known when Jira embedded the linked issue's
    ``created`` field in the link payload.
    """

    direction: Literal["outward", "inward"]
    phrase: str
    other_key: str
    other_created: datetime | None = None


@dataclass(frozen=True)
class SourceComment:
    """A Jira comment with its ADF body."""

    id: str
    body: Any
    author: SourceUser | None = None
    created: datetime | None = None
    created_raw: str = ""


@dataclass(frozen=True)
class SourceAttachment:
    """Attachment metadata; bytes are downloaded on demand."""

    id: str
    filename: str
    content_url: str
    mime_type: str = "application/octet-stream"
    author: SourceUser | None = None


@dataclass(frozen=True)
class SourceIssue:
    """A Jira issue normalized for migration."""

    key: str
    issue_type: str
    status: str
    summary: str
    description: Any = None
    priority: str | None = None
    created: datetime | None = None
    creator: SourceUser | None = None
    assignee: SourceUser | None = None
    epic_key: str | None = None
    links: tuple[SourceLink, ...] = ()
    comments: tuple[SourceComment, ...] = ()
    attachments: tuple[SourceAttachment, ...] = ()
    watch_count: int = 0


@dataclass
class WorkPackage:
    """The parts of an OpenProject work package the migrator relies on."""

    id: int
    lock_version: int
    subject: str = ""
    correlation_key: str | None = None
    parent_id: int | None = None
    description: str = ""


@dataclass(frozen=True)
class Artifact:
    """An attachment stored in OpenProject."""

    id: int
    filename: str
    content_type: str = ""

    @property
    def href(self) -> str:
        return f"/api/v3/attachments/{self.id}/content"

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")


@dataclass(frozen=True)
class Activity:
    """A work package journal entry; only comment-bearing ones matter here."""

    id: int
    comment: str = ""


@dataclass(frozen=True)
class VocabularyEntry:
    """A type, status or priority resource in OpenProject."""

    id: int
    name: str
    is_default: bool = False


@dataclass(frozen=True)
class RelationDeclaration:
    """A directed relationship to realize between two Jira keys.

    Hashable by value so that deferred declarations deduplicate naturally.
    """

    from_key: str
    to_key: str
    relation_type: str

    def __str__(self) -> str:
        return f"{self.from_key} {self.relation_type} {self.to_key}"


class SyncState(StrEnum):
    """Terminal states of a single issue synchronization."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERRORED = "errored"


@dataclass
class SyncOutcome:
    """Result of synchronizing one issue."""

    key: str
    state: SyncState
    work_package_id: int | None = None
    error: str | None = None
    attachments_uploaded: int = 0
    comments_posted: int = 0
    watchers_added: int = 0
    unknown_status: bool = False
    comment_journals: list[tuple[int, str]] = field(default_factory=list)
