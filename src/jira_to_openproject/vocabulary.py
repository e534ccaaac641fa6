"""Jira type/status/priority to OpenProject vocabulary mapping.

The OpenProject vocabularies are fetched once at the start of a run and
passed explicitly to whoever needs them.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Final

from .exceptions import MigrationError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .models import VocabularyEntry
    from .protocols import TargetWriter

logger: logging.Logger = logging.getLogger(__name__)

TYPE_MAPPING: Final[dict[str, str]] = {
    "Task": "Task",
    "Sub-task": "Task",
    "Subtask": "Task",
    "Story": "User story",
    "Bug": "Bug",
    "Epic": "Epic",
    "Feature": "Feature",
    "Milestone": "Milestone",
}

STATUS_MAPPING: Final[dict[str, str]] = {
    "To Do": "To Do",
    "Open": "New",
    "In Progress": "In Progress",
    "In Review": "In Review",
    "Done": "Done",
    "Closed": "Closed",
    "Resolved": "Done",
    "Live": "Closed",
}

PRIORITY_MAPPING: Final[dict[str, str]] = {
    "Highest": "Critical",
    "High": "High",
    "Medium": "Normal",
    "Low": "Low",
    "Lowest": "Trivial",
}

UNKNOWN_STATUS_NAME: Final[str] = "Unknown"


def _find(entries: Sequence[VocabularyEntry], name: str) -> VocabularyEntry | None:
    wanted = name.lower()
    return next((e for e in entries if e.name.lower() == wanted), None)


@dataclass(frozen=True)
class StatusResolution:
    """A mapped status id and whether it fell into the unknown bucket."""

    id: int
    is_unknown: bool


@dataclass
class Vocabularies:
    """OpenProject vocabularies together with the Jira name mapping tables."""

    types: list[VocabularyEntry]
    statuses: list[VocabularyEntry]
    priorities: list[VocabularyEntry]
    type_mapping: dict[str, str] = field(default_factory=lambda: dict(TYPE_MAPPING))
    status_mapping: dict[str, str] = field(default_factory=lambda: dict(STATUS_MAPPING))
    priority_mapping: dict[str, str] = field(default_factory=lambda: dict(PRIORITY_MAPPING))
    unknown_status_name: str = UNKNOWN_STATUS_NAME

    @classmethod
    def load(cls, target: TargetWriter, overrides: dict[str, dict[str, str]] | None = None) -> Vocabularies:
        """Fetch the vocabularies from OpenProject.

        Raises:
            MigrationError: If any vocabulary is empty, since no work package
                could be created without it.
        """
        vocabularies = cls(
            types=target.list_types(),
            statuses=target.list_statuses(),
            priorities=target.list_priorities(),
        )
        for label, entries in (
            ("types", vocabularies.types),
            ("statuses", vocabularies.statuses),
            ("priorities", vocabularies.priorities),
        ):
            if not entries:
                msg = f"OpenProject returned no work package {label}"
                raise MigrationError(msg)
            logger.info(f"Loaded {len(entries)} OpenProject {label}: {', '.join(e.name for e in entries)}")

        if overrides:
            vocabularies.type_mapping.update(overrides.get("types", {}))
            vocabularies.status_mapping.update(overrides.get("statuses", {}))
            vocabularies.priority_mapping.update(overrides.get("priorities", {}))
        return vocabularies

    def type_id(self, jira_type: str) -> int:
        """Map a Jira issue type; unmapped or missing types use the first OpenProject type."""
        mapped = self.type_mapping.get(jira_type)
        entry = _find(self.types, mapped) if mapped else None
        if entry is None:
            logger.warning(f"No OpenProject type for Jira type {jira_type!r}, using {self.types[0].name}")
            return self.types[0].id
        return entry.id

    def status_id(self, jira_status: str) -> StatusResolution:
        """Map a Jira status; unmapped statuses go to the unknown bucket."""
        mapped = self.status_mapping.get(jira_status)
        entry = _find(self.statuses, mapped) if mapped else None
        if entry is not None:
            return StatusResolution(id=entry.id, is_unknown=False)

        logger.warning(f"No OpenProject status for Jira status {jira_status!r}, using {self.unknown_status_name}")
        unknown = _find(self.statuses, self.unknown_status_name)
        return StatusResolution(id=(unknown or self.statuses[0]).id, is_unknown=True)

    def priority_id(self, jira_priority: str | None) -> int:
        """Map a Jira priority; anything unmapped uses OpenProject's default priority."""
        mapped = self.priority_mapping.get(jira_priority) if jira_priority else None
        entry = _find(self.priorities, mapped) if mapped else None
        if entry is not None:
            return entry.id
        if jira_priority:
            logger.warning(f"No OpenProject priority for Jira priority {jira_priority!r}, using the default")
        default = next((p for p in self.priorities if p.is_default), self.priorities[0])
        return default.id


def load_mapping_overrides(path: str | Path) -> dict[str, dict[str, str]]:
    """Read vocabulary overrides from a JSON file with ``types``, ``statuses`` and ``priorities`` objects."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        msg = f"Failed to read mapping file {path}: {e}"
        raise MigrationError(msg) from e

    if not isinstance(data, dict):
        msg = f"Mapping file {path} must contain a JSON object"
        raise MigrationError(msg)

    overrides: dict[str, dict[str, str]] = {}
    for section in ("types", "statuses", "priorities"):
        values = data.get(section, {})
        if not isinstance(values, dict):
            msg = f"Mapping file section {section!r} must be an object"
            raise MigrationError(msg)
        overrides[section] = {str(k): str(v) for k, v in values.items()}
    return overrides
