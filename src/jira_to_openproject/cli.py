"""
Command-line interface for the Jira to OpenProject migration tool.
"""

from __future__ import annotations

import argparse
import logging
import sys

import requests

from .config import Settings
from .dry_run import DryRunTarget
from .exceptions import MigrationError
from .jira_source import JiraSource
from .openproject import OpenProjectClient
from .orchestrator import MigrationResult, Migrator, ProjectPair, match_projects
from .users import UserMapping
from .utils import PassError, setup_logging, write_json
from .vocabulary import load_mapping_overrides

logger: logging.Logger = logging.getLogger(__name__)


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Migrate Jira issues to OpenProject work packages")

    # Positional arguments
    _ = parser.add_argument("jira_project", nargs="?", help="Jira project key (e.g. PROJ)")
    _ = parser.add_argument("openproject_project", nargs="?", type=int, help="OpenProject project id")

    _ = parser.add_argument(
        "--all-projects",
        action="store_true",
        help="Migrate every Jira project into the OpenProject project named like its key",
    )
    _ = parser.add_argument("--issues", help="Comma-separated Jira issue keys to migrate (default: all)")
    _ = parser.add_argument(
        "--skip-existing",
        action="store_true",
        help="Skip issues that already have a work package instead of updating them",
    )
    _ = parser.add_argument("--dry-run", action="store_true", help="Log the changes without writing to OpenProject")
    _ = parser.add_argument(
        "--map-responsible", action="store_true", help="Set the accountable user from the Jira creator"
    )
    _ = parser.add_argument(
        "--hierarchy-as-parent",
        action="store_true",
        help="Realize parent/child links as the work package parent instead of relations",
    )
    _ = parser.add_argument("--no-relationships", action="store_true", help="Do not migrate issue links")
    _ = parser.add_argument(
        "--user-mapping",
        default="user-mapping.json",
        help="JSON file mapping Jira accountIds to OpenProject user ids (default: user-mapping.json)",
    )
    _ = parser.add_argument("--mapping-file", help="JSON file overriding the type, status and priority mapping")
    _ = parser.add_argument(
        "--comment-timestamps",
        metavar="FILE",
        help="Write the activity ids of posted comments with their original timestamps to FILE",
    )
    _ = parser.add_argument(
        "--jira-pass-token", help="Path for the Jira API token in pass utility (default: jira/api_token)"
    )
    _ = parser.add_argument(
        "--openproject-pass-token",
        help="Path for the OpenProject API key in pass utility (default: openproject/api_key)",
    )
    _ = parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args(argv)
    if not args.all_projects and (args.jira_project is None or args.openproject_project is None):
        parser.error("JIRA_PROJECT and OPENPROJECT_PROJECT are required unless --all-projects is given")
    return args


def _issue_keys(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    keys = [key.strip().upper() for key in raw.split(",") if key.strip()]
    return keys or None


def print_summary(result: MigrationResult, *, dry_run: bool = False) -> None:
    """Print the run summary for the operator."""
    sync = result.sync
    title = "Migration summary (dry run)" if dry_run else "Migration summary"
    print(f"\n{title}")
    print(f"  Created:              {sync.created}")
    print(f"  Updated:              {sync.updated}")
    print(f"  Skipped:              {sync.skipped}")
    print(f"  Errored:              {sync.errored}")
    print(f"  Unknown statuses:     {sync.unknown_statuses}")
    print(f"  Attachments uploaded: {sync.attachments_uploaded}")
    print(f"  Comments posted:      {sync.comments_posted}")
    print(f"  Watchers added:       {sync.watchers_added}")

    relationships = result.relationships
    if relationships is not None:
        print(f"  Relations created:    {relationships.created}")
        print(f"  Relations existing:   {relationships.already_existing}")
        print(f"  Duplicates skipped:   {relationships.suppressed}")
        print(f"  Resolved on retry:    {relationships.resolved_on_retry}")
        print(f"  Unresolved:           {len(relationships.unresolved)}")
        print(f"  Failed relations:     {len(relationships.failed)}")
        for declaration in relationships.unresolved:
            print(f"    unresolved: {declaration}")

    for error in [*result.project_errors, *sync.errors]:
        print(f"  ERROR {error}")


def run(args: argparse.Namespace) -> int:
    """Run the migration described by ``args`` and return the exit code."""
    settings = Settings.from_env(
        jira_token_pass_path=args.jira_pass_token,
        openproject_token_pass_path=args.openproject_pass_token,
    )
    source = JiraSource(settings.jira_url, settings.jira_email, settings.jira_api_token)
    client = OpenProjectClient(
        settings.openproject_url,
        settings.openproject_api_key,
        correlation_field_id=settings.correlation_field_id,
        user_api_keys=settings.user_api_keys,
    )
    target = DryRunTarget(client) if args.dry_run else client

    if args.all_projects:
        projects = match_projects(source.list_projects(), target.list_projects())
    else:
        projects = [ProjectPair(jira_key=args.jira_project.upper(), openproject_id=args.openproject_project)]

    migrator = Migrator(
        source,
        target,
        UserMapping.from_file(args.user_mapping),
        incremental=args.skip_existing,
        map_responsible=args.map_responsible,
        hierarchy_as_parent=args.hierarchy_as_parent,
        include_relationships=not args.no_relationships,
        vocabulary_overrides=load_mapping_overrides(args.mapping_file) if args.mapping_file else None,
    )
    result = migrator.migrate(projects, issue_keys=_issue_keys(args.issues))

    if args.comment_timestamps:
        journals = result.sync.comment_journals
        write_json(args.comment_timestamps, journals)
        logger.info(f"Wrote {len(journals)} comment timestamps to {args.comment_timestamps}")

    print_summary(result, dry_run=args.dry_run)
    return 0 if result.success else 1


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_arguments(argv)
    setup_logging(verbose=args.verbose)

    try:
        exit_code = run(args)
    except (MigrationError, PassError, requests.RequestException, OSError):
        logger.exception("Migration failed")
        sys.exit(1)
    sys.exit(exit_code)
