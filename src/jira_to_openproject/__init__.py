"""
Jira to OpenProject Migration Tool

Migrates Jira issues to OpenProject work packages with their comments,
attachments, watchers and issue links. Runs are idempotent: work packages are
matched to Jira issues by key, so a migration can be resumed or repeated.
"""

from __future__ import annotations

from .cli import main
from .exceptions import MigrationError
from .identity_map import IdentityMap
from .orchestrator import MigrationResult, Migrator, ProjectPair
from .relationships import RelationshipResolver
from .synchronizer import EntitySynchronizer, SyncOptions
from .utils import setup_logging

# Package version
__version__ = "0.1.0"

__all__ = [
    "EntitySynchronizer",
    "IdentityMap",
    "MigrationError",
    "MigrationResult",
    "Migrator",
    "ProjectPair",
    "RelationshipResolver",
    "SyncOptions",
    "main",
    "setup_logging",
]
