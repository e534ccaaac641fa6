"""Jira account to OpenProject user mapping."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from .exceptions import MigrationError

if TYPE_CHECKING:
    from collections.abc import Mapping

logger: logging.Logger = logging.getLogger(__name__)


class UserMapping:
    """Resolves Jira ``accountId`` values to OpenProject user ids."""

    def __init__(self, mapping: Mapping[str, int] | None = None) -> None:
        self._mapping: dict[str, int] = dict(mapping or {})
        self._missing: set[str] = set()

    @classmethod
    def from_file(cls, path: str | Path) -> UserMapping:
        """Load a JSON object of ``{"<jira accountId>": <openproject user id>}``.

        A missing file yields an empty mapping: every user falls back to the
        default actor and optional user fields are left out.
        """
        file_path = Path(path)
        if not file_path.exists():
            logger.warning(f"User mapping {file_path} not found, no users will be mapped")
            return cls()
        try:
            data = json.loads(file_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            msg = f"Failed to read user mapping {file_path}: {e}"
            raise MigrationError(msg) from e
        if not isinstance(data, dict):
            msg = f"User mapping {file_path} must contain a JSON object"
            raise MigrationError(msg)

        mapping: dict[str, int] = {}
        for account_id, user_id in data.items():
            try:
                mapping[str(account_id)] = int(user_id)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid OpenProject user id {user_id!r} for Jira account {account_id}")
        logger.info(f"Loaded {len(mapping)} user mappings from {file_path}")
        return cls(mapping)

    def map_identity(self, account_id: str) -> int | None:
        user_id = self._mapping.get(account_id)
        if user_id is None and account_id not in self._missing:
            self._missing.add(account_id)
            logger.info(f"No OpenProject user mapping found for Jira account {account_id}")
        return user_id

    @property
    def unmapped_accounts(self) -> set[str]:
        return set(self._missing)

    def __len__(self) -> int:
        return len(self._mapping)
