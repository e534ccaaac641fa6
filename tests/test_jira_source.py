"""Tests for reading issues from Jira."""

from __future__ import annotations

import datetime as dt
from typing import Any
from unittest.mock import Mock

import pytest

from jira_to_openproject.exceptions import JiraError
from jira_to_openproject.jira_source import JiraSource, created_sort_key, issue_from_json, parse_timestamp
from jira_to_openproject.models import SourceAttachment


def raw_issue(key: str = "PROJ-1", **fields: Any) -> dict[str, Any]:  # noqa: ANN401
    base: dict[str, Any] = {
        "summary": "Login fails",
        "issuetype": {"name": "Bug"},
        "status": {"name": "In Progress"},
        "priority": {"name": "High"},
        "created": "2024-01-15T10:30:45.123+0000",
        "creator": {"accountId": "acc-1", "displayName": "Creator"},
        "assignee": None,
    }
    return {"key": key, "fields": base | fields}


def ok(data: Any) -> Mock:  # noqa: ANN401
    response = Mock()
    response.status_code = 200
    response.json.return_value = data
    return response


@pytest.mark.unit
class TestIssueFromJson:
    def test_basic_fields(self) -> None:
        issue = issue_from_json(raw_issue())
        assert issue.key == "PROJ-1"
        assert issue.issue_type == "Bug"
        assert issue.status == "In Progress"
        assert issue.priority == "High"
        assert issue.created == dt.datetime(2024, 1, 15, 10, 30, 45, 123000, tzinfo=dt.UTC)
        assert issue.creator is not None
        assert issue.creator.account_id == "acc-1"
        assert issue.assignee is None
        assert issue.links == ()

    def test_epic_from_custom_field_or_parent(self) -> None:
        assert issue_from_json(raw_issue(customfield_10014="PROJ-9")).epic_key == "PROJ-9"
        assert issue_from_json(raw_issue(parent={"key": "PROJ-8"})).epic_key == "PROJ-8"

    def test_links_keep_direction_and_phrase(self) -> None:
        links = [
            {
                "type": {"name": "Blocks", "inward": "is blocked by", "outward": "blocks"},
                "outwardIssue": {"key": "PROJ-2", "fields": {"created": "2024-02-01T00:00:00.000+0000"}},
            },
            {
                "type": {"name": "Blocks", "inward": "is blocked by", "outward": "blocks"},
                "inwardIssue": {"key": "PROJ-3"},
            },
        ]
        issue = issue_from_json(raw_issue(issuelinks=links))
        assert [(link.direction, link.phrase, link.other_key) for link in issue.links] == [
            ("outward", "blocks", "PROJ-2"),
            ("inward", "is blocked by", "PROJ-3"),
        ]
        assert issue.links[0].other_created == dt.datetime(2024, 2, 1, tzinfo=dt.UTC)
        assert issue.links[1].other_created is None

    def test_comments_attachments_and_watches(self) -> None:
        raw_comment = {"id": "10", "body": None, "created": "2024-01-16T00:00:00.000+0000"}
        issue = issue_from_json(
            raw_issue(
                comment={"total": 1, "comments": [raw_comment]},
                attachment=[{"id": 5, "filename": "a.png", "content": "https://j/a.png", "size": 3}],
                watches={"watchCount": 2},
            )
        )
        assert issue.comments[0].id == "10"
        assert issue.comments[0].created_raw == "2024-01-16T00:00:00.000+0000"
        assert issue.attachments[0].filename == "a.png"
        assert issue.attachments[0].mime_type == "application/octet-stream"
        assert issue.watch_count == 2

    def test_explicit_comment_list_wins(self) -> None:
        issue = issue_from_json(raw_issue(comment={"total": 2, "comments": []}), comments=[{"id": "1"}, {"id": "2"}])
        assert [c.id for c in issue.comments] == ["1", "2"]


@pytest.mark.unit
class TestTimestamps:
    def test_parse_timestamp(self) -> None:
        assert parse_timestamp(None) is None
        assert parse_timestamp("garbage") is None

    def test_sort_key_puts_undated_last(self) -> None:
        dated = issue_from_json(raw_issue("P-2"))
        undated = issue_from_json(raw_issue("P-1", created=None))
        assert sorted([undated, dated], key=created_sort_key) == [dated, undated]


@pytest.mark.unit
class TestJiraSource:
    def setup_method(self) -> None:
        self.session = Mock()
        self.source = JiraSource("https://jira.example.com", "me@example.com", "token", session=self.session)

    def test_list_issues_follows_page_tokens(self) -> None:
        self.session.get.side_effect = [
            ok({"issues": [raw_issue("P-2", created="2024-03-01T00:00:00.000+0000")], "nextPageToken": "abc"}),
            ok({"issues": [raw_issue("P-1")], "isLast": True}),
        ]
        issues = self.source.list_issues("P", ["P-1", "P-2"])

        assert [i.key for i in issues] == ["P-1", "P-2"]
        first_params = self.session.get.call_args_list[0].kwargs["params"]
        assert first_params["jql"] == 'project = "P" AND key in (P-1, P-2) ORDER BY created ASC'
        assert self.session.get.call_args_list[1].kwargs["params"]["nextPageToken"] == "abc"

    def test_truncated_comments_are_fetched(self) -> None:
        truncated = raw_issue("P-1", comment={"total": 2, "comments": [{"id": "1"}]})
        self.session.get.side_effect = [
            ok({"issues": [truncated], "isLast": True}),
            ok({"total": 2, "comments": [{"id": "1"}, {"id": "2"}]}),
        ]
        issues = self.source.list_issues("P")
        assert [c.id for c in issues[0].comments] == ["1", "2"]
        assert self.session.get.call_args_list[1].args[0].endswith("/rest/api/3/issue/P-1/comment")

    def test_list_projects(self) -> None:
        self.session.get.return_value = ok({"values": [{"key": "P", "name": "Project"}], "isLast": True})
        assert self.source.list_projects() == [("P", "Project")]

    def test_watchers(self) -> None:
        self.session.get.return_value = ok({"watchers": [{"accountId": "a"}, {"displayName": "no id"}]})
        assert [w.account_id for w in self.source.list_watchers("P-1")] == ["a"]

    def test_download_error(self) -> None:
        failed = Mock(status_code=404, text="gone")
        self.session.get.return_value = failed
        attachment = SourceAttachment(id="1", filename="a.png", content_url="https://j/a.png")
        with pytest.raises(JiraError) as exc_info:
            self.source.download_attachment(attachment)
        assert exc_info.value.status == 404
