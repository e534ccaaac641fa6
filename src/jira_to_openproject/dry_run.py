"""Dry-run wrapper around a target writer.

Reads go to the real target; every write is logged, recorded and answered
with a synthetic (negative) id so that the migration runs exactly the same
steps it would in a live run. Faked relations and parents are remembered and
layered over the real reads, so a later existence check sees them the way it
would see a real write.
"""

from __future__ import annotations

import dataclasses
import logging
import mimetypes
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .models import Activity, Artifact, WorkPackage

if TYPE_CHECKING:
    from .models import VocabularyEntry
    from .protocols import TargetWriter

logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Mutation:
    """A write the dry run did not perform."""

    name: str
    work_package_id: int | None
    detail: str = ""


class DryRunTarget:
    """``TargetWriter`` that never writes."""

    def __init__(self, target: TargetWriter) -> None:
        self._target = target
        self._next_id: int = -1
        self._synthetic: dict[int, WorkPackage] = {}
        self._relations: set[tuple[int, int, str]] = set()
        self._parents: dict[int, int] = {}
        self.mutations: list[Mutation] = []

    @property
    def correlation_field(self) -> str:
        return self._target.correlation_field

    def _synthesize_id(self) -> int:
        value = self._next_id
        self._next_id -= 1
        return value

    def _record(self, name: str, work_package_id: int | None, detail: str = "") -> None:
        self.mutations.append(Mutation(name, work_package_id, detail))
        logger.info(f"[dry-run] {name} {work_package_id if work_package_id is not None else ''} {detail}".rstrip())

    def list_projects(self) -> list[tuple[int, str]]:
        return self._target.list_projects()

    def list_types(self) -> list[VocabularyEntry]:
        return self._target.list_types()

    def list_statuses(self) -> list[VocabularyEntry]:
        return self._target.list_statuses()

    def list_priorities(self) -> list[VocabularyEntry]:
        return self._target.list_priorities()

    def get_work_package(self, work_package_id: int) -> WorkPackage:
        if work_package_id in self._synthetic:
            work_package = self._synthetic[work_package_id]
        else:
            work_package = self._target.get_work_package(work_package_id)
        if work_package_id in self._parents:
            return dataclasses.replace(work_package, parent_id=self._parents[work_package_id])
        return work_package

    def find_work_package(self, correlation_key: str, project_id: int | None) -> WorkPackage | None:
        return self._target.find_work_package(correlation_key, project_id)

    def list_work_packages_by_correlation_key(self, project_id: int) -> dict[str, WorkPackage]:
        return self._target.list_work_packages_by_correlation_key(project_id)

    def create_work_package(self, project_id: int, payload: dict[str, Any]) -> WorkPackage:
        work_package = WorkPackage(
            id=self._synthesize_id(),
            lock_version=0,
            subject=payload.get("subject", ""),
            correlation_key=payload.get(self.correlation_field),
        )
        self._synthetic[work_package.id] = work_package
        self._record("create_work_package", None, f"in project {project_id}: {work_package.subject}")
        return work_package

    def update_work_package(self, work_package_id: int, payload: dict[str, Any], lock_version: int) -> WorkPackage:
        self._record("update_work_package", work_package_id, f"fields {sorted(payload)} at lockVersion {lock_version}")
        return self.get_work_package(work_package_id)

    def set_parent(self, child_id: int, parent_id: int) -> None:
        self._record("set_parent", child_id, f"parent {parent_id}")
        self._parents[child_id] = parent_id

    def relation_exists(self, from_id: int, to_id: int, relation_type: str, *, symmetric: bool = False) -> bool:
        if (from_id, to_id, relation_type) in self._relations:
            return True
        if symmetric and (to_id, from_id, relation_type) in self._relations:
            return True
        if from_id < 0 or to_id < 0:
            return False
        return self._target.relation_exists(from_id, to_id, relation_type, symmetric=symmetric)

    def create_relation(self, from_id: int, to_id: int, relation_type: str) -> bool:
        self._record("create_relation", from_id, f"{relation_type} {to_id}")
        key = (from_id, to_id, relation_type)
        if key in self._relations:
            return False
        self._relations.add(key)
        return True

    def list_attachments(self, work_package_id: int) -> list[Artifact]:
        return [] if work_package_id < 0 else self._target.list_attachments(work_package_id)

    def upload_attachment(
        self, work_package_id: int, content: bytes, filename: str, *, as_user: int | None = None
    ) -> Artifact:
        self._record("upload_attachment", work_package_id, f"{filename} ({len(content)} bytes) as {as_user}")
        content_type = mimetypes.guess_type(filename)[0] or ""
        return Artifact(id=self._synthesize_id(), filename=filename, content_type=content_type)

    def list_activities(self, work_package_id: int) -> list[Activity]:
        return [] if work_package_id < 0 else self._target.list_activities(work_package_id)

    def add_comment(self, work_package_id: int, markup: str, *, as_user: int | None = None) -> int | None:
        self._record("add_comment", work_package_id, f"as {as_user}")
        return self._synthesize_id()

    def add_watcher(self, work_package_id: int, user_id: int) -> bool:
        self._record("add_watcher", work_package_id, f"user {user_id}")
        return True
