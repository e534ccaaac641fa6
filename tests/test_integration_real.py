"""
Integration tests against real Jira and OpenProject instances.

All runs are dry runs: they read from both systems and write nothing.

Required environment: JIRA_URL, JIRA_EMAIL, JIRA_API_TOKEN (or pass),
OPENPROJECT_URL, OPENPROJECT_API_KEY (or pass), JIRA_TEST_PROJECT and
OPENPROJECT_TEST_PROJECT_ID.
"""

import os

import pytest

from jira_to_openproject.config import Settings
from jira_to_openproject.dry_run import DryRunTarget
from jira_to_openproject.jira_source import JiraSource
from jira_to_openproject.openproject import OpenProjectClient
from jira_to_openproject.orchestrator import Migrator, ProjectPair
from jira_to_openproject.users import UserMapping
from jira_to_openproject.vocabulary import Vocabularies


@pytest.mark.integration
class TestRealInstances:
    def setup_method(self) -> None:
        settings = Settings.from_env()
        self.source = JiraSource(settings.jira_url, settings.jira_email, settings.jira_api_token)
        self.client = OpenProjectClient(
            settings.openproject_url,
            settings.openproject_api_key,
            correlation_field_id=settings.correlation_field_id,
        )
        self.project = ProjectPair(
            jira_key=os.environ["JIRA_TEST_PROJECT"],
            openproject_id=int(os.environ["OPENPROJECT_TEST_PROJECT_ID"]),
        )

    def test_vocabularies_load(self) -> None:
        vocabularies = Vocabularies.load(self.client)
        assert vocabularies.types
        assert vocabularies.statuses
        assert vocabularies.priorities

    def test_jira_issues_are_ordered(self) -> None:
        issues = self.source.list_issues(self.project.jira_key)
        created = [i.created for i in issues if i.created is not None]
        assert created == sorted(created)

    def test_dry_run_migration(self) -> None:
        target = DryRunTarget(self.client)
        result = Migrator(self.source, target, UserMapping()).migrate([self.project])

        assert result.sync.errored == 0
        assert len(result.identity_map) == result.sync.created + result.sync.updated + result.sync.skipped
