"""Tests for the Jira account to OpenProject user mapping."""

import json
from pathlib import Path

import pytest

from jira_to_openproject.exceptions import MigrationError
from jira_to_openproject.users import UserMapping


@pytest.mark.unit
class TestUserMapping:
    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "user-mapping.json"
        path.write_text(json.dumps({"acc-1": 4, "acc-2": "5", "acc-3": "n/a"}))
        users = UserMapping.from_file(path)

        assert len(users) == 2
        assert users.map_identity("acc-1") == 4
        assert users.map_identity("acc-2") == 5
        assert users.map_identity("acc-3") is None

    def test_missing_file_maps_nobody(self, tmp_path: Path) -> None:
        users = UserMapping.from_file(tmp_path / "absent.json")
        assert users.map_identity("acc-1") is None

    def test_invalid_file(self, tmp_path: Path) -> None:
        path = tmp_path / "user-mapping.json"
        path.write_text("[1, 2]")
        with pytest.raises(MigrationError, match="JSON object"):
            UserMapping.from_file(path)

    def test_unmapped_accounts_are_tracked(self) -> None:
        users = UserMapping({"acc-1": 4})
        assert users.map_identity("acc-1") == 4
        assert users.map_identity("acc-9") is None
        assert users.unmapped_accounts == {"acc-9"}
