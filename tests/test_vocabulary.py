"""Tests for type, status and priority mapping."""

import json
from pathlib import Path
from unittest.mock import Mock

import pytest

from jira_to_openproject.exceptions import MigrationError
from jira_to_openproject.models import VocabularyEntry
from jira_to_openproject.vocabulary import StatusResolution, Vocabularies, load_mapping_overrides


def make_target(
    types: list[VocabularyEntry] | None = None,
    statuses: list[VocabularyEntry] | None = None,
    priorities: list[VocabularyEntry] | None = None,
) -> Mock:
    target = Mock()
    target.list_types.return_value = (
        types if types is not None else [VocabularyEntry(1, "Task"), VocabularyEntry(2, "Bug")]
    )
    target.list_statuses.return_value = (
        statuses if statuses is not None else [VocabularyEntry(10, "New"), VocabularyEntry(12, "Unknown")]
    )
    target.list_priorities.return_value = (
        priorities
        if priorities is not None
        else [VocabularyEntry(20, "Low"), VocabularyEntry(21, "Normal", is_default=True)]
    )
    return target


@pytest.mark.unit
class TestVocabularies:
    def setup_method(self) -> None:
        self.vocabularies = Vocabularies.load(make_target())

    def test_vocabularies_are_fetched_once(self) -> None:
        target = make_target()
        Vocabularies.load(target)
        target.list_types.assert_called_once()
        target.list_statuses.assert_called_once()
        target.list_priorities.assert_called_once()

    def test_empty_vocabulary_is_fatal(self) -> None:
        with pytest.raises(MigrationError, match="statuses"):
            Vocabularies.load(make_target(statuses=[]))

    def test_type_mapping(self) -> None:
        assert self.vocabularies.type_id("Bug") == 2
        assert self.vocabularies.type_id("Sub-task") == 1

    def test_unmapped_type_uses_first_type(self) -> None:
        assert self.vocabularies.type_id("Spike") == 1

    def test_status_mapping(self) -> None:
        resolution = self.vocabularies.status_id("Open")
        assert resolution.id == 10
        assert not resolution.is_unknown

    def test_unmapped_status_uses_unknown_bucket(self) -> None:
        resolution = self.vocabularies.status_id("Waiting for customer")
        assert resolution.id == 12
        assert resolution.is_unknown

    def test_unknown_bucket_falls_back_to_first_status(self) -> None:
        vocabularies = Vocabularies.load(make_target(statuses=[VocabularyEntry(10, "New")]))
        resolution = vocabularies.status_id("Weird")
        assert resolution == StatusResolution(id=10, is_unknown=True)

    def test_priority_mapping(self) -> None:
        assert self.vocabularies.priority_id("Low") == 20
        assert self.vocabularies.priority_id("Medium") == 21

    def test_missing_priority_uses_default(self) -> None:
        assert self.vocabularies.priority_id(None) == 21
        assert self.vocabularies.priority_id("Blocker") == 21

    def test_overrides_are_merged(self) -> None:
        vocabularies = Vocabularies.load(make_target(), {"types": {"Spike": "Bug"}, "statuses": {}, "priorities": {}})
        assert vocabularies.type_id("Spike") == 2
        assert vocabularies.type_id("Task") == 1


@pytest.mark.unit
class TestLoadMappingOverrides:
    def test_reads_sections(self, tmp_path: Path) -> None:
        path = tmp_path / "mapping.json"
        path.write_text(json.dumps({"statuses": {"Backlog": "New"}}))
        assert load_mapping_overrides(path) == {"types": {}, "statuses": {"Backlog": "New"}, "priorities": {}}

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "mapping.json"
        path.write_text("{not json")
        with pytest.raises(MigrationError, match="Failed to read mapping file"):
            load_mapping_overrides(path)

    def test_section_must_be_object(self, tmp_path: Path) -> None:
        path = tmp_path / "mapping.json"
        path.write_text(json.dumps({"types": ["Task"]}))
        with pytest.raises(MigrationError, match="types"):
            load_mapping_overrides(path)
