"""Tests for work package payloads and migrated comment bodies."""

import dataclasses

import pytest

from jira_to_openproject.payload import (
    WorkPackagePayload,
    build_comment_body,
    comment_marker,
    description_payload,
    extract_comment_markers,
    format_timestamp,
    parent_payload,
)


@pytest.mark.unit
class TestFormatTimestamp:
    def test_jira_timestamp(self) -> None:
        assert format_timestamp("2024-01-15T10:30:45.123+0000") == "2024-01-15 10:30:45Z"

    def test_other_timezone(self) -> None:
        assert format_timestamp("2024-01-15T10:30:45+05:30") == "2024-01-15 10:30:45+05:30"

    def test_invalid_is_returned_unchanged(self) -> None:
        assert format_timestamp("yesterday") == "yesterday"
        assert format_timestamp("") == ""


@pytest.mark.unit
class TestCommentBody:
    def test_body_has_header_markup_and_marker(self) -> None:
        body = build_comment_body("10001", "Jane Doe", "2024-01-15T10:30:45.000+0000", "Looks good")
        assert body == "Jane Doe wrote on 2024-01-15 10:30:45Z:\nLooks good\n\n<!-- jira-comment:10001 -->"

    def test_unknown_author_without_timestamp(self) -> None:
        assert build_comment_body("1", "", "", "x").startswith("Unknown user wrote:\nx")

    def test_markers_are_extracted(self) -> None:
        text = f"first {comment_marker('1')} and {comment_marker('22')}"
        assert extract_comment_markers(text) == {"1", "22"}
        assert extract_comment_markers("") == set()


@pytest.mark.unit
class TestWorkPackagePayload:
    def setup_method(self) -> None:
        self.payload = WorkPackagePayload(
            subject="Fix login",
            description="Body",
            type_id=1,
            status_id=10,
            priority_id=21,
            project_id=7,
            correlation_field="customField1",
            correlation_key="PROJ-1",
        )

    def test_create_payload(self) -> None:
        data = self.payload.to_json()
        assert data["_type"] == "WorkPackage"
        assert data["subject"] == "Fix login"
        assert data["description"] == {"raw": "Body"}
        assert data["customField1"] == "PROJ-1"
        assert data["_links"]["project"] == {"href": "/api/v3/projects/7"}
        assert data["_links"]["status"] == {"href": "/api/v3/statuses/10"}

    def test_unmapped_users_are_omitted(self) -> None:
        links = self.payload.to_json()["_links"]
        assert "assignee" not in links
        assert "responsible" not in links

    def test_mapped_users_are_linked(self) -> None:
        payload = dataclasses.replace(self.payload, assignee_id=4, responsible_id=5)
        links = payload.to_json()["_links"]
        assert links["assignee"] == {"href": "/api/v3/users/4"}
        assert links["responsible"] == {"href": "/api/v3/users/5"}

    def test_update_payload_has_no_type_or_project(self) -> None:
        data = self.payload.to_json(for_update=True)
        assert "_type" not in data
        assert "project" not in data["_links"]

    def test_partial_payloads(self) -> None:
        assert description_payload("x") == {"description": {"raw": "x"}}
        assert parent_payload(9) == {"_links": {"parent": {"href": "/api/v3/work_packages/9"}}}
