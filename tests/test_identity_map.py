"""Tests for the Jira key to work package mapping."""

import pytest

from jira_to_openproject.exceptions import DuplicateMappingError, IdentityMapFrozenError
from jira_to_openproject.identity_map import IdentityMap


@pytest.mark.unit
class TestIdentityMap:
    def setup_method(self) -> None:
        self.identity_map = IdentityMap({"PROJ-1": 101})

    def test_lookup(self) -> None:
        assert self.identity_map.get("PROJ-1") == 101
        assert self.identity_map.get("PROJ-2") is None
        assert self.identity_map.has("PROJ-1")
        assert "PROJ-2" not in self.identity_map

    def test_set_new_key(self) -> None:
        self.identity_map.set("PROJ-2", 102)
        assert self.identity_map.as_dict() == {"PROJ-1": 101, "PROJ-2": 102}
        assert len(self.identity_map) == 2

    def test_existing_key_is_never_remapped(self) -> None:
        with pytest.raises(DuplicateMappingError, match="PROJ-1"):
            self.identity_map.set("PROJ-1", 999)
        assert self.identity_map.get("PROJ-1") == 101

    def test_frozen_map_is_read_only(self) -> None:
        self.identity_map.freeze()
        assert self.identity_map.frozen
        with pytest.raises(IdentityMapFrozenError):
            self.identity_map.set("PROJ-2", 102)
        assert self.identity_map.get("PROJ-1") == 101

    def test_iteration(self) -> None:
        assert list(self.identity_map) == ["PROJ-1"]
        assert dict(self.identity_map.items()) == {"PROJ-1": 101}
