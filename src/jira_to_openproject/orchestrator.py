"""Migration orchestrator that coordinates Jira and OpenProject.

The Migrator runs a migration in phases:

Phase 1: Preparation
    - Fetch the OpenProject type, status and priority vocabularies once.
      Failing here aborts the run before anything is written.

Phase 2: Issues (per project)
    - In incremental mode, seed the identity map with every work package of
      the OpenProject project that already carries a Jira key.
    - Fetch the project's issues and synchronize them oldest first
      (see ``synchronizer.EntitySynchronizer``).
    - A project whose issues cannot be listed is reported and skipped.

Phase 3: Relationships
    - Freeze the identity map and resolve the links of every issue of every
      project in one pass, so cross-project links resolve too
      (see ``relationships.RelationshipResolver``).

The identity map is shared by all projects of a run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import requests

from .exceptions import DuplicateMappingError, MigrationError
from .identity_map import IdentityMap
from .relationships import RelationshipResolver, ResolutionReport
from .synchronizer import EntitySynchronizer, SyncOptions, SyncReport
from .vocabulary import Vocabularies

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .models import SourceIssue
    from .protocols import IdentityResolver, SourceReader, TargetWriter

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectPair:
    """A Jira project and the OpenProject project it migrates into."""

    jira_key: str
    openproject_id: int


@dataclass
class MigrationResult:
    """Result of a migration run."""

    sync: SyncReport
    relationships: ResolutionReport | None
    identity_map: dict[str, int]
    project_errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.sync.errored == 0 and not self.project_errors


def match_projects(
    jira_projects: Sequence[tuple[str, str]], openproject_projects: Sequence[tuple[int, str]]
) -> list[ProjectPair]:
    """Pair each Jira project with the OpenProject project named like its key (case-insensitive)."""
    by_name = {name.upper(): project_id for project_id, name in openproject_projects}
    pairs: list[ProjectPair] = []
    for key, _name in jira_projects:
        project_id = by_name.get(key.upper())
        if project_id is None:
            logger.warning(f"No matching OpenProject project found for {key}, skipping")
            continue
        pairs.append(ProjectPair(jira_key=key, openproject_id=project_id))
    return pairs


class Migrator:
    """Orchestrates migration from Jira to OpenProject.

    Usage:
        source = JiraSource(url, email, token)
        target = OpenProjectClient(url, api_key)
        migrator = Migrator(source, target, UserMapping.from_file("user-mapping.json"))
        result = migrator.migrate([ProjectPair("PROJ", 3)])
    """

    def __init__(
        self,
        source: SourceReader,
        target: TargetWriter,
        users: IdentityResolver,
        *,
        incremental: bool = False,
        map_responsible: bool = False,
        hierarchy_as_parent: bool = False,
        include_relationships: bool = True,
        vocabulary_overrides: dict[str, dict[str, str]] | None = None,
    ) -> None:
        self._source = source
        self._target = target
        self._users = users
        self._incremental = incremental
        self._map_responsible = map_responsible
        self._hierarchy_as_parent = hierarchy_as_parent
        self._include_relationships = include_relationships
        self._vocabulary_overrides = vocabulary_overrides

    def migrate(self, projects: Sequence[ProjectPair], *, issue_keys: list[str] | None = None) -> MigrationResult:
        """Execute the migration of ``projects``.

        Args:
            projects: Projects to migrate, in order
            issue_keys: Restrict the migration to these Jira keys

        Raises:
            MigrationError: If the OpenProject vocabularies cannot be loaded
        """
        vocabularies = Vocabularies.load(self._target, self._vocabulary_overrides)
        identity_map = IdentityMap()
        result = MigrationResult(sync=SyncReport(), relationships=None, identity_map={})
        all_issues: list[SourceIssue] = []

        for project in projects:
            logger.info(f"Migrating Jira project {project.jira_key} -> OpenProject project {project.openproject_id}")
            try:
                if self._incremental:
                    self._seed_identity_map(identity_map, project.openproject_id)
                issues = self._source.list_issues(project.jira_key, issue_keys)
            except (MigrationError, requests.RequestException) as e:
                logger.exception(f"Migration of project {project.jira_key} failed")
                result.project_errors.append(f"{project.jira_key}: {e}")
                continue

            options = SyncOptions(
                project_id=project.openproject_id,
                incremental=self._incremental,
                map_responsible=self._map_responsible,
            )
            synchronizer = EntitySynchronizer(
                self._source, self._target, self._users, vocabularies, identity_map, options
            )
            result.sync.merge(synchronizer.sync_all(issues))
            all_issues.extend(issues)

        if self._include_relationships:
            resolver = RelationshipResolver(self._target, hierarchy_as_parent=self._hierarchy_as_parent)
            result.relationships = resolver.reconcile(all_issues, identity_map)
        else:
            identity_map.freeze()
            logger.info("Skipping relationships")

        result.identity_map = identity_map.as_dict()
        return result

    def _seed_identity_map(self, identity_map: IdentityMap, project_id: int) -> None:
        existing = self._target.list_work_packages_by_correlation_key(project_id)
        for key, work_package in existing.items():
            try:
                identity_map.set(key, work_package.id)
            except DuplicateMappingError as e:
                logger.warning(f"Keeping the first work package for {key}: {e}")
        logger.info(f"Identity map seeded with {len(existing)} work packages of project {project_id}")
