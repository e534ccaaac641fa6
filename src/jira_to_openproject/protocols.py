"""Protocols defining the contracts for source and target systems.

The migration architecture separates concerns into three components:

1. SourceReader: Extracts issues from the source (Jira)
2. TargetWriter: Creates and updates work packages in the target (OpenProject)
3. EntitySynchronizer / RelationshipResolver: Orchestrate the flow, keep the
   identity map and transform content

This separation allows:
- Testing the migration logic with in-memory fakes
- Running a dry run by wrapping the real target (see ``dry_run.DryRunTarget``)
- Clear boundaries for system-specific API quirks
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .models import Activity, Artifact, SourceAttachment, SourceIssue, SourceUser, VocabularyEntry, WorkPackage


class SourceReader(Protocol):
    """Protocol for reading issues from the source system."""

    def list_projects(self) -> list[tuple[str, str]]:
        """Return ``(key, name)`` for every visible project."""
        ...

    def list_issues(self, project_key: str, keys: list[str] | None = None) -> list[SourceIssue]:
        """Return the project's issues ordered oldest first.

        Args:
            project_key: Jira project key
            keys: Restrict the result to these issue keys
        """
        ...

    def list_watchers(self, issue_key: str) -> list[SourceUser]:
        """Return the users watching an issue."""
        ...

    def download_attachment(self, attachment: SourceAttachment) -> bytes:
        """Download the bytes of an attachment."""
        ...


class TargetWriter(Protocol):
    """Protocol for reading and writing work packages in the target system.

    Every method that changes state returns a value that the dry-run wrapper
    can synthesize, so the migration code never branches on dry-run mode.
    """

    correlation_field: str
    """Name of the custom field holding the Jira key (e.g. ``customField1``)."""

    def list_projects(self) -> list[tuple[int, str]]:
        """Return ``(id, name)`` for every visible project."""
        ...

    def list_types(self) -> list[VocabularyEntry]: ...

    def list_statuses(self) -> list[VocabularyEntry]: ...

    def list_priorities(self) -> list[VocabularyEntry]: ...

    def get_work_package(self, work_package_id: int) -> WorkPackage: ...

    def find_work_package(self, correlation_key: str, project_id: int | None) -> WorkPackage | None:
        """Find the work package carrying ``correlation_key``, in one project or (``None``) in any."""
        ...

    def list_work_packages_by_correlation_key(self, project_id: int) -> dict[str, WorkPackage]:
        """Return all work packages of a project that carry a correlation key, keyed by it."""
        ...

    def create_work_package(self, project_id: int, payload: dict[str, Any]) -> WorkPackage: ...

    def update_work_package(self, work_package_id: int, payload: dict[str, Any], lock_version: int) -> WorkPackage:
        """Update a work package.

        Raises:
            LockVersionConflictError: If ``lock_version`` is stale
        """
        ...

    def set_parent(self, child_id: int, parent_id: int) -> None: ...

    def relation_exists(self, from_id: int, to_id: int, relation_type: str, *, symmetric: bool = False) -> bool:
        """Check for a relation in the declared direction (and the reverse if ``symmetric``)."""
        ...

    def create_relation(self, from_id: int, to_id: int, relation_type: str) -> bool:
        """Create a relation.

        Returns:
            True if created, False if OpenProject reports it already exists or
            would create a cycle (the desired end state already holds)
        """
        ...

    def list_attachments(self, work_package_id: int) -> list[Artifact]: ...

    def upload_attachment(
        self, work_package_id: int, content: bytes, filename: str, *, as_user: int | None = None
    ) -> Artifact: ...

    def list_activities(self, work_package_id: int) -> list[Activity]: ...

    def add_comment(self, work_package_id: int, markup: str, *, as_user: int | None = None) -> int | None:
        """Post a comment and return the id of the created activity, if known."""
        ...

    def add_watcher(self, work_package_id: int, user_id: int) -> bool:
        """Add a watcher; returns False if the user was already watching."""
        ...


class IdentityResolver(Protocol):
    """Maps source accounts to target users."""

    def map_identity(self, account_id: str) -> int | None: ...
