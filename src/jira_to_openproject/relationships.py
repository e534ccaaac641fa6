"""Issue relationship detection and reconciliation.

Relationships are resolved in two explicit phases:

Phase 1 (``resolve_declared``)
    For every issue, in migration order, derive the directed relation
    declarations from its Jira links and epic/parent field. Declarations whose
    endpoints are both in the identity map are realized immediately; the
    others are returned as deferred. Unresolved endpoints are expected: links
    may point outside the migrated batch.

Phase 2 (``retry_deferred``)
    A single sweep over the deferred declarations. Endpoints missing from the
    identity map are looked up once in OpenProject by their Jira key (they may
    have been migrated by an earlier run or from another project). Whatever is
    still unresolved is reported, never retried again.

Direction is preserved exactly as declared: "A is child of B" becomes
``A partof B``, never ``B partof A``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Final

import requests

from .exceptions import MigrationError
from .jira_source import created_sort_key
from .models import RelationDeclaration

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

    from .identity_map import IdentityMap
    from .models import SourceIssue, SourceLink
    from .protocols import TargetWriter

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_RELATION: Final[str] = "relates"

OUTWARD_RELATIONS: Final[dict[str, str]] = {
    "blocks": "blocks",
    "relates to": "relates",
    "is parent of": "includes",
    "duplicates": "duplicates",
    "precedes": "precedes",
    "clones": "relates",
}

INWARD_RELATIONS: Final[dict[str, str]] = {
    "is blocked by": "blocked",
    "relates to": "relates",
    "is child of": "partof",
    "is duplicated by": "duplicated",
    "follows": "follows",
    "is cloned by": "relates",
}

# Relation type seen from the other endpoint.
INVERSE_RELATIONS: Final[dict[str, str]] = {
    "blocks": "blocked",
    "blocked": "blocks",
    "includes": "partof",
    "partof": "includes",
    "duplicates": "duplicated",
    "duplicated": "duplicates",
    "precedes": "follows",
    "follows": "precedes",
    "relates": "relates",
}

HIERARCHY_RELATIONS: Final[frozenset[str]] = frozenset({"partof", "includes"})
SYMMETRIC_RELATIONS: Final[frozenset[str]] = frozenset({"relates"})
DUPLICATE_RELATIONS: Final[frozenset[str]] = frozenset({"duplicates", "duplicated"})


class RelationOutcome(StrEnum):
    CREATED = "created"
    EXISTING = "existing"
    DEFERRED = "deferred"
    FAILED = "failed"


@dataclass(frozen=True)
class RelationResult:
    declaration: RelationDeclaration
    outcome: RelationOutcome
    error: str | None = None


@dataclass
class RetryResult:
    """Outcome of the retry sweep."""

    results: list[RelationResult]
    unresolved: list[RelationDeclaration]


@dataclass
class ResolutionReport:
    """Relationship statistics for a run."""

    created: int = 0
    already_existing: int = 0
    suppressed: int = 0
    deferred: int = 0
    resolved_on_retry: int = 0
    failed: list[str] = field(default_factory=list)
    unresolved: list[RelationDeclaration] = field(default_factory=list)

    def record(self, result: RelationResult) -> None:
        match result.outcome:
            case RelationOutcome.CREATED:
                self.created += 1
            case RelationOutcome.EXISTING:
                self.already_existing += 1
            case RelationOutcome.FAILED:
                self.failed.append(f"{result.declaration}: {result.error}")
            case RelationOutcome.DEFERRED:
                pass


def relation_type_for(link: SourceLink) -> str:
    """Map a Jira link phrase to an OpenProject relation type (``relates`` if unknown)."""
    table = OUTWARD_RELATIONS if link.direction == "outward" else INWARD_RELATIONS
    return table.get(link.phrase.strip().lower(), DEFAULT_RELATION)


def is_earlier(key: str, created: datetime | None, other_key: str, other_created: datetime | None) -> bool:
    """Whether ``key`` was created before ``other_key``.

    Equal or unknown timestamps fall back to lexical key order so that
    exactly one side of a pair wins.
    """
    if created is not None and other_created is not None and created != other_created:
        return created < other_created
    return key < other_key


def declarations_for(
    issue: SourceIssue, created_index: dict[str, datetime | None] | None = None
) -> tuple[list[RelationDeclaration], int]:
    """Derive the relation declarations of one issue.

    A duplicate link is suppressed only when the linked issue is part of the
    batch and therefore declares the same pair itself. Links to issues outside
    the batch are always declared; the existence check on the inverse type
    keeps them from being created twice.

    Args:
        issue: The issue owning the links
        created_index: Creation timestamps of the batch by key

    Returns:
        Tuple of (declarations in link order without duplicates, number of
        duplicate-pair occurrences suppressed)
    """
    created_index = created_index or {}
    declarations: dict[RelationDeclaration, None] = {}
    suppressed = 0

    if issue.epic_key:
        declarations[RelationDeclaration(issue.key, issue.epic_key, "partof")] = None

    for link in issue.links:
        relation_type = relation_type_for(link)
        if relation_type in DUPLICATE_RELATIONS and link.other_key in created_index:
            other_created = created_index[link.other_key] or link.other_created
            if not is_earlier(issue.key, issue.created, link.other_key, other_created):
                logger.debug(f"Skipping duplicate link {issue.key} -> {link.other_key}, realized from the other side")
                suppressed += 1
                continue
        declarations[RelationDeclaration(issue.key, link.other_key, relation_type)] = None

    return list(declarations), suppressed


class RelationshipResolver:
    """Creates OpenProject relations for the Jira links of migrated issues."""

    def __init__(self, target: TargetWriter, *, hierarchy_as_parent: bool = False) -> None:
        self._target = target
        self._hierarchy_as_parent = hierarchy_as_parent
        self._looked_up: dict[str, int | None] = {}

    def reconcile(self, issues: Sequence[SourceIssue], identity_map: IdentityMap) -> ResolutionReport:
        """Run both phases over ``issues`` and return the statistics.

        The identity map is frozen first; nothing may be mapped once
        relationships are being created.
        """
        identity_map.freeze()
        report = ResolutionReport()
        logger.info(f"Creating relationships for {len(issues)} issues...")

        deferred = self.resolve_declared(issues, identity_map, report)
        report.deferred = len(deferred)

        retry = self.retry_deferred(deferred, identity_map)
        for result in retry.results:
            report.record(result)
            if result.outcome in (RelationOutcome.CREATED, RelationOutcome.EXISTING):
                report.resolved_on_retry += 1
        report.unresolved = retry.unresolved

        for declaration in retry.unresolved:
            logger.warning(f"Could not resolve relationship {declaration}: work package not found")
        logger.info(
            f"Relationships: {report.created} created, {report.already_existing} already existing, "
            f"{report.suppressed} suppressed, {len(report.unresolved)} unresolved, {len(report.failed)} failed"
        )
        return report

    def resolve_declared(
        self,
        issues: Sequence[SourceIssue],
        identity_map: IdentityMap,
        report: ResolutionReport | None = None,
    ) -> list[RelationDeclaration]:
        """Phase 1: realize every declaration whose endpoints are mapped.

        Returns:
            The deferred declarations, deduplicated, in first-seen order
        """
        report = report if report is not None else ResolutionReport()
        created_index: dict[str, datetime | None] = {issue.key: issue.created for issue in issues}
        attempted: set[RelationDeclaration] = set()
        deferred: dict[RelationDeclaration, None] = {}

        for issue in sorted(issues, key=created_sort_key):
            declarations, suppressed = declarations_for(issue, created_index)
            report.suppressed += suppressed
            for declaration in declarations:
                if declaration in attempted:
                    continue
                attempted.add(declaration)
                from_id = identity_map.get(declaration.from_key)
                result = self._realize(declaration, from_id, identity_map.get(declaration.to_key))
                if result.outcome is RelationOutcome.DEFERRED:
                    logger.info(f"Relationship {declaration} not resolvable yet, will retry later")
                    deferred[declaration] = None
                else:
                    report.record(result)

        return list(deferred)

    def retry_deferred(self, deferred: Iterable[RelationDeclaration], identity_map: IdentityMap) -> RetryResult:
        """Phase 2: one more attempt per deferred declaration."""
        pending = list(dict.fromkeys(deferred))
        if pending:
            logger.info(f"Retrying {len(pending)} missing relationships...")

        results: list[RelationResult] = []
        unresolved: list[RelationDeclaration] = []
        for declaration in pending:
            from_id = self._resolve(declaration.from_key, identity_map)
            to_id = self._resolve(declaration.to_key, identity_map)
            result = self._realize(declaration, from_id, to_id)
            if result.outcome is RelationOutcome.DEFERRED:
                logger.debug(f"Still missing work package for relationship {declaration}")
                unresolved.append(declaration)
            else:
                results.append(result)
        return RetryResult(results=results, unresolved=unresolved)

    def _resolve(self, key: str, identity_map: IdentityMap) -> int | None:
        work_package_id = identity_map.get(key)
        if work_package_id is not None:
            return work_package_id
        if key not in self._looked_up:
            try:
                work_package = self._target.find_work_package(key, None)
            except (MigrationError, requests.RequestException) as e:
                logger.warning(f"Lookup of work package for {key} failed: {e}")
                work_package = None
            self._looked_up[key] = work_package.id if work_package is not None else None
        return self._looked_up[key]

    def _realize(self, declaration: RelationDeclaration, from_id: int | None, to_id: int | None) -> RelationResult:
        if from_id is None or to_id is None:
            return RelationResult(declaration, RelationOutcome.DEFERRED)
        try:
            if self._exists(from_id, to_id, declaration.relation_type):
                logger.debug(f"Relationship {declaration} already exists")
                return RelationResult(declaration, RelationOutcome.EXISTING)
            if self._create(from_id, to_id, declaration.relation_type):
                logger.info(f"Created relationship {declaration} ({from_id} -> {to_id})")
                return RelationResult(declaration, RelationOutcome.CREATED)
            return RelationResult(declaration, RelationOutcome.EXISTING)
        except (MigrationError, requests.RequestException) as e:
            logger.error(f"Failed to create relationship {declaration}: {e}")  # noqa: TRY400
            return RelationResult(declaration, RelationOutcome.FAILED, error=str(e))

    @staticmethod
    def _hierarchy_roles(from_id: int, to_id: int, relation_type: str) -> tuple[int, int]:
        """Return ``(child, parent)`` for a hierarchy relation."""
        return (from_id, to_id) if relation_type == "partof" else (to_id, from_id)

    def _exists(self, from_id: int, to_id: int, relation_type: str) -> bool:
        if relation_type in HIERARCHY_RELATIONS:
            child_id, parent_id = self._hierarchy_roles(from_id, to_id, relation_type)
            if self._target.get_work_package(child_id).parent_id == parent_id:
                return True
            if self._hierarchy_as_parent:
                return False

        symmetric = relation_type in SYMMETRIC_RELATIONS
        if self._target.relation_exists(from_id, to_id, relation_type, symmetric=symmetric):
            return True
        inverse = INVERSE_RELATIONS.get(relation_type)
        if symmetric or inverse is None:
            return False
        return self._target.relation_exists(to_id, from_id, inverse)

    def _create(self, from_id: int, to_id: int, relation_type: str) -> bool:
        if self._hierarchy_as_parent and relation_type in HIERARCHY_RELATIONS:
            child_id, parent_id = self._hierarchy_roles(from_id, to_id, relation_type)
            self._target.set_parent(child_id, parent_id)
            return True
        return self._target.create_relation(from_id, to_id, relation_type)
