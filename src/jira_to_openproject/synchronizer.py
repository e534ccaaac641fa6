"""Synchronize Jira issues into OpenProject work packages.

Each issue goes through the same steps, in order:

1. Existence check by Jira key (identity map, then OpenProject)
2. Create the work package, or update it with a fresh ``lockVersion``
3. Upload attachments, reusing those already present by filename
4. Rewrite ``ATTACH{...}`` placeholders in the description once the
   attachments exist
5. Post comments that were not migrated before (detected by marker)
6. Add watchers

A failure in any step marks the issue as errored and the run moves on to the
next issue. Steps 3-6 only add what is missing, so re-running converges.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import requests

from .document import render, substitute_attachments
from .exceptions import MigrationError
from .jira_source import created_sort_key
from .models import SyncOutcome, SyncState
from .payload import WorkPackagePayload, build_comment_body, description_payload, extract_comment_markers

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .identity_map import IdentityMap
    from .models import Artifact, SourceIssue, SourceUser, WorkPackage
    from .protocols import IdentityResolver, SourceReader, TargetWriter
    from .vocabulary import Vocabularies

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncOptions:
    """Per-project synchronization options.

    ``incremental`` skips issues that already have a work package instead of
    updating them. ``map_responsible`` sets the accountable user from the
    Jira creator.
    """

    project_id: int
    incremental: bool = False
    map_responsible: bool = False


@dataclass
class SyncReport:
    """Counters and per-issue outcomes of a synchronization run."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    errored: int = 0
    unknown_statuses: int = 0
    attachments_uploaded: int = 0
    comments_posted: int = 0
    watchers_added: int = 0
    outcomes: list[SyncOutcome] = field(default_factory=list)

    def record(self, outcome: SyncOutcome) -> None:
        self.outcomes.append(outcome)
        match outcome.state:
            case SyncState.CREATED:
                self.created += 1
            case SyncState.UPDATED:
                self.updated += 1
            case SyncState.SKIPPED:
                self.skipped += 1
            case SyncState.ERRORED:
                self.errored += 1
        self.unknown_statuses += int(outcome.unknown_status)
        self.attachments_uploaded += outcome.attachments_uploaded
        self.comments_posted += outcome.comments_posted
        self.watchers_added += outcome.watchers_added

    def merge(self, other: SyncReport) -> None:
        for outcome in other.outcomes:
            self.record(outcome)

    @property
    def errors(self) -> list[str]:
        return [f"{o.key}: {o.error}" for o in self.outcomes if o.state is SyncState.ERRORED]

    @property
    def comment_journals(self) -> list[dict[str, int | str]]:
        """Posted comment activities with the original Jira comment timestamps."""
        return [
            {"journal_id": journal_id, "created_at": created_at}
            for outcome in self.outcomes
            for journal_id, created_at in outcome.comment_journals
        ]


class EntitySynchronizer:
    """Creates or updates one work package per Jira issue."""

    def __init__(
        self,
        source: SourceReader,
        target: TargetWriter,
        users: IdentityResolver,
        vocabularies: Vocabularies,
        identity_map: IdentityMap,
        options: SyncOptions,
    ) -> None:
        self._source = source
        self._target = target
        self._users = users
        self._vocabularies = vocabularies
        self._identity_map = identity_map
        self._options = options

    def sync_all(self, issues: Iterable[SourceIssue]) -> SyncReport:
        """Synchronize ``issues`` oldest first."""
        ordered = sorted(issues, key=created_sort_key)
        report = SyncReport()
        for index, issue in enumerate(ordered, start=1):
            logger.info(f"[{index}/{len(ordered)}] Processing {issue.key}: {issue.summary}")
            report.record(self.sync_issue(issue))
        logger.info(
            f"Synchronized {len(ordered)} issues: {report.created} created, {report.updated} updated, "
            f"{report.skipped} skipped, {report.errored} errored"
        )
        return report

    def sync_issue(self, issue: SourceIssue) -> SyncOutcome:
        """Synchronize a single issue; never raises for API or mapping failures."""
        outcome = SyncOutcome(key=issue.key, state=SyncState.ERRORED)
        try:
            existing = self._find_existing(issue.key)
            if existing is not None and self._options.incremental:
                logger.info(f"Skipping {issue.key}, already migrated as work package {existing.id}")
                self._remember(issue.key, existing.id)
                outcome.state = SyncState.SKIPPED
                outcome.work_package_id = existing.id
                return outcome

            payload, outcome.unknown_status = self._build_payload(issue)
            if existing is None:
                work_package = self._target.create_work_package(self._options.project_id, payload.to_json())
                outcome.state = SyncState.CREATED
                logger.info(f"Created work package {work_package.id} for {issue.key}")
            else:
                lock_version = self._target.get_work_package(existing.id).lock_version
                work_package = self._target.update_work_package(
                    existing.id, payload.to_json(for_update=True), lock_version
                )
                outcome.state = SyncState.UPDATED
                logger.info(f"Updated work package {work_package.id} for {issue.key}")
            outcome.work_package_id = work_package.id
            self._remember(issue.key, work_package.id)

            artifacts = self._sync_attachments(issue, work_package.id, outcome)
            self._finalize_description(work_package.id, payload.description, artifacts)
            self._sync_comments(issue, work_package.id, artifacts, outcome)
            self._sync_watchers(issue, work_package.id, outcome)
        except (MigrationError, requests.RequestException, OSError) as e:
            logger.exception(f"Failed to migrate {issue.key}")
            outcome.state = SyncState.ERRORED
            outcome.error = str(e)
        return outcome

    def _find_existing(self, key: str) -> WorkPackage | None:
        work_package_id = self._identity_map.get(key)
        if work_package_id is not None:
            return self._target.get_work_package(work_package_id)
        if self._options.incremental:
            # The identity map was seeded with every keyed work package of the project.
            return None
        return self._target.find_work_package(key, self._options.project_id)

    def _remember(self, key: str, work_package_id: int) -> None:
        if not self._identity_map.has(key):
            self._identity_map.set(key, work_package_id)

    def _map_user(self, user: SourceUser | None) -> int | None:
        return self._users.map_identity(user.account_id) if user is not None else None

    def _build_payload(self, issue: SourceIssue) -> tuple[WorkPackagePayload, bool]:
        status = self._vocabularies.status_id(issue.status)
        payload = WorkPackagePayload(
            subject=issue.summary,
            description=render(issue.description),
            type_id=self._vocabularies.type_id(issue.issue_type),
            status_id=status.id,
            priority_id=self._vocabularies.priority_id(issue.priority),
            project_id=self._options.project_id,
            correlation_field=self._target.correlation_field,
            correlation_key=issue.key,
            assignee_id=self._map_user(issue.assignee),
            responsible_id=self._map_user(issue.creator) if self._options.map_responsible else None,
        )
        return payload, status.is_unknown

    def _sync_attachments(self, issue: SourceIssue, work_package_id: int, outcome: SyncOutcome) -> dict[str, Artifact]:
        """Upload missing attachments and return every artifact by filename."""
        if not issue.attachments:
            return {}

        artifacts: dict[str, Artifact] = {a.filename: a for a in self._target.list_attachments(work_package_id)}
        for attachment in issue.attachments:
            if attachment.filename in artifacts:
                logger.debug(f"Attachment {attachment.filename} already present on work package {work_package_id}")
                continue
            content = self._source.download_attachment(attachment)
            if not content:
                logger.warning(f"Attachment {attachment.filename} of {issue.key} is empty, skipping")
                continue
            artifact = self._target.upload_attachment(
                work_package_id, content, attachment.filename, as_user=self._map_user(attachment.author)
            )
            artifacts[attachment.filename] = artifact
            outcome.attachments_uploaded += 1
            logger.info(f"Uploaded attachment {attachment.filename} ({len(content)} bytes) for {issue.key}")
        return artifacts

    def _finalize_description(self, work_package_id: int, description: str, artifacts: dict[str, Artifact]) -> None:
        finalized = substitute_attachments(description, artifacts)
        if finalized == description:
            return
        lock_version = self._target.get_work_package(work_package_id).lock_version
        self._target.update_work_package(work_package_id, description_payload(finalized), lock_version)
        logger.debug(f"Replaced attachment placeholders in description of work package {work_package_id}")

    def _sync_comments(
        self, issue: SourceIssue, work_package_id: int, artifacts: dict[str, Artifact], outcome: SyncOutcome
    ) -> None:
        if not issue.comments:
            return

        migrated: set[str] = set()
        for activity in self._target.list_activities(work_package_id):
            migrated |= extract_comment_markers(activity.comment)

        for comment in issue.comments:
            if comment.id in migrated:
                logger.debug(f"Comment {comment.id} of {issue.key} already migrated")
                continue
            markup = substitute_attachments(render(comment.body), artifacts)
            if not markup.strip():
                logger.debug(f"Comment {comment.id} of {issue.key} is empty, skipping")
                continue
            author_name = comment.author.display_name if comment.author is not None else ""
            body = build_comment_body(comment.id, author_name, comment.created_raw, markup)
            journal_id = self._target.add_comment(work_package_id, body, as_user=self._map_user(comment.author))
            migrated.add(comment.id)
            outcome.comments_posted += 1
            if journal_id is not None:
                outcome.comment_journals.append((journal_id, comment.created_raw))

        logger.info(f"Posted {outcome.comments_posted} comments for {issue.key}")

    def _sync_watchers(self, issue: SourceIssue, work_package_id: int, outcome: SyncOutcome) -> None:
        if issue.watch_count <= 0:
            return
        for watcher in self._source.list_watchers(issue.key):
            user_id = self._map_user(watcher)
            if user_id is None:
                continue
            if self._target.add_watcher(work_package_id, user_id):
                outcome.watchers_added += 1
        logger.debug(f"Added {outcome.watchers_added} watchers to work package {work_package_id}")
