"""Jira key to OpenProject work package id mapping."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .exceptions import DuplicateMappingError, IdentityMapFrozenError

if TYPE_CHECKING:
    from collections.abc import ItemsView, Iterator, Mapping

logger: logging.Logger = logging.getLogger(__name__)


class IdentityMap:
    """Maps each Jira key to at most one work package id.

    Entries are never overwritten. The map is frozen before relationship
    resolution starts, after which it is read-only.
    """

    def __init__(self, initial: Mapping[str, int] | None = None) -> None:
        self._entries: dict[str, int] = dict(initial or {})
        self._frozen: bool = False

    def get(self, key: str) -> int | None:
        return self._entries.get(key)

    def has(self, key: str) -> bool:
        return key in self._entries

    def set(self, key: str, work_package_id: int) -> None:
        if self._frozen:
            msg = f"Identity map is read-only, cannot map {key}"
            raise IdentityMapFrozenError(msg)
        existing = self._entries.get(key)
        if existing is not None:
            msg = f"{key} is already mapped to work package {existing}, refusing to map it to {work_package_id}"
            raise DuplicateMappingError(msg)
        self._entries[key] = work_package_id
        logger.debug(f"Mapped {key} -> work package {work_package_id}")

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def items(self) -> ItemsView[str, int]:
        return self._entries.items()

    def as_dict(self) -> dict[str, int]:
        return dict(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
