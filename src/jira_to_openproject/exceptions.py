"""
Custom exception classes for the Jira to OpenProject migration tool.
"""

from __future__ import annotations


class MigrationError(Exception):
    """Base exception for migration errors."""


class JiraError(MigrationError):
    """Raised when the Jira REST API returns an error response."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status: int | None = status


class OpenProjectError(MigrationError):
    """Raised when the OpenProject API returns an error response.

    ``messages`` holds the human-readable messages of the embedded error
    resources (OpenProject nests multiple validation errors under
    ``_embedded.errors``).
    """

    def __init__(self, message: str, status: int | None = None, messages: list[str] | None = None) -> None:
        super().__init__(message)
        self.status: int | None = status
        self.messages: list[str] = messages or []


class LockVersionConflictError(OpenProjectError):
    """Raised when an update is rejected because the lockVersion is stale."""


class DuplicateMappingError(MigrationError):
    """Raised when a Jira key is mapped to a second work package."""


class IdentityMapFrozenError(MigrationError):
    """Raised when the identity map is modified after relationship resolution started."""
