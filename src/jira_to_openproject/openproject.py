"""OpenProject API v3 client."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Final

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .exceptions import LockVersionConflictError, OpenProjectError
from .models import Activity, Artifact, VocabularyEntry, WorkPackage
from .payload import parent_payload

if TYPE_CHECKING:
    from collections.abc import Mapping

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

_PAGE_SIZE: Final[int] = 100
_DEFAULT_TIMEOUT: Final[float] = 30.0
_LAGGED_RELATION_TYPES: Final[frozenset[str]] = frozenset({"precedes", "follows"})


def create_session(api_key: str) -> requests.Session:
    """Create a session authenticated with an OpenProject API key.

    Idempotent requests are retried on throttling and gateway errors; writes
    are never retried to avoid duplicate work packages.
    """
    session = requests.Session()
    session.auth = ("apikey", api_key)
    session.headers["Accept"] = "application/hal+json"
    retry = Retry(
        total=3,
        backoff_factor=0.5,
        status_forcelist=(429, 502, 503, 504),
        allowed_methods=frozenset({"GET"}),
    )
    session.mount("https://", HTTPAdapter(max_retries=retry))
    session.mount("http://", HTTPAdapter(max_retries=retry))
    return session


def _error_messages(data: Any) -> list[str]:  # noqa: ANN401 - raw JSON
    if not isinstance(data, dict):
        return []
    embedded = data.get("_embedded")
    errors = embedded.get("errors") if isinstance(embedded, dict) else None
    if isinstance(errors, list) and errors:
        return [str(e.get("message", "")) for e in errors if isinstance(e, dict)]
    message = data.get("message")
    return [str(message)] if message else []


def is_already_exists_error(exc: OpenProjectError) -> bool:
    """Check if OpenProject rejected a relation because it already exists."""
    return any("already been taken" in m.lower() or "already exists" in m.lower() for m in exc.messages)


def is_circular_dependency_error(exc: OpenProjectError) -> bool:
    """Check if OpenProject rejected a relation because it would create a cycle."""
    return any("circular" in m.lower() for m in exc.messages)


def _id_from_href(href: Any) -> int | None:  # noqa: ANN401 - raw JSON
    if not isinstance(href, str) or not href:
        return None
    tail = href.rstrip("/").rsplit("/", 1)[-1]
    return int(tail) if tail.isdigit() else None


def _filter(name: str, *values: str, operator: str = "=") -> dict[str, Any]:
    return {name: {"operator": operator, "values": list(values)}}


class OpenProjectClient:
    """Thin OpenProject API v3 wrapper returning migration models.

    Writes can be performed as another user when an API key for that user is
    configured; otherwise they fall back to the default API key.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        correlation_field_id: int = 1,
        user_api_keys: Mapping[int, str] | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.api_root: str = f"{base_url.rstrip('/')}/api/v3"
        self.correlation_field: str = f"customField{correlation_field_id}"
        self._session: requests.Session = session or create_session(api_key)
        self._user_api_keys: dict[int, str] = dict(user_api_keys or {})
        self._user_sessions: dict[int, requests.Session] = {}
        self._timeout: float = timeout

    def _session_for(self, user_id: int | None) -> requests.Session:
        if user_id is None or user_id not in self._user_api_keys:
            return self._session
        if user_id not in self._user_sessions:
            self._user_sessions[user_id] = create_session(self._user_api_keys[user_id])
        return self._user_sessions[user_id]

    def _request(
        self,
        method: str,
        path: str,
        *,
        as_user: int | None = None,
        **kwargs: Any,  # noqa: ANN401
    ) -> Any:  # noqa: ANN401 - raw JSON
        response = self._session_for(as_user).request(method, f"{self.api_root}{path}", timeout=self._timeout, **kwargs)
        if response.status_code >= 400:
            try:
                data = response.json()
            except ValueError:
                data = None
            messages = _error_messages(data)
            detail = "; ".join(messages) or response.text[:200]
            msg = f"OpenProject {method} {path} failed with {response.status_code}: {detail}"
            raise OpenProjectError(msg, status=response.status_code, messages=messages)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def _collection(self, path: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Fetch every element of a paginated collection (``offset`` is a page number)."""
        elements: list[dict[str, Any]] = []
        page = 1
        while True:
            data = self._request("GET", path, params={**(params or {}), "offset": page, "pageSize": _PAGE_SIZE})
            batch = data.get("_embedded", {}).get("elements", [])
            elements.extend(batch)
            total = int(data.get("total", len(elements)))
            if not batch or len(elements) >= total:
                return elements
            page += 1

    def _work_package(self, data: dict[str, Any]) -> WorkPackage:
        links = data.get("_links", {})
        parent = links.get("parent") or {}
        description = data.get("description") or {}
        return WorkPackage(
            id=int(data["id"]),
            lock_version=int(data.get("lockVersion", 0)),
            subject=data.get("subject", ""),
            correlation_key=data.get(self.correlation_field) or None,
            parent_id=_id_from_href(parent.get("href")),
            description=description.get("raw") or "",
        )

    @staticmethod
    def _vocabulary(elements: list[dict[str, Any]]) -> list[VocabularyEntry]:
        return [
            VocabularyEntry(id=int(e["id"]), name=e.get("name", ""), is_default=bool(e.get("isDefault", False)))
            for e in elements
        ]

    def list_projects(self) -> list[tuple[int, str]]:
        return [(int(p["id"]), p.get("name", "")) for p in self._collection("/projects")]

    def list_types(self) -> list[VocabularyEntry]:
        return self._vocabulary(self._request("GET", "/types").get("_embedded", {}).get("elements", []))

    def list_statuses(self) -> list[VocabularyEntry]:
        return self._vocabulary(self._request("GET", "/statuses").get("_embedded", {}).get("elements", []))

    def list_priorities(self) -> list[VocabularyEntry]:
        return self._vocabulary(self._request("GET", "/priorities").get("_embedded", {}).get("elements", []))

    def get_work_package(self, work_package_id: int) -> WorkPackage:
        return self._work_package(self._request("GET", f"/work_packages/{work_package_id}"))

    def _work_package_filters(self, project_id: int | None, correlation_key: str | None = None) -> str:
        # The default work package query hides closed ones; "*" includes every status.
        filters: list[dict[str, Any]] = [_filter("status", operator="*")]
        if project_id is not None:
            filters.append(_filter("project", str(project_id)))
        if correlation_key is not None:
            filters.append(_filter(self.correlation_field, correlation_key))
        return json.dumps(filters)

    def find_work_package(self, correlation_key: str, project_id: int | None) -> WorkPackage | None:
        data = self._request(
            "GET",
            "/work_packages",
            params={"filters": self._work_package_filters(project_id, correlation_key), "pageSize": 1},
        )
        elements = data.get("_embedded", {}).get("elements", [])
        return self._work_package(elements[0]) if elements else None

    def list_work_packages_by_correlation_key(self, project_id: int) -> dict[str, WorkPackage]:
        logger.info(f"Caching work packages of OpenProject project {project_id}...")
        elements = self._collection(
            "/work_packages",
            {"filters": self._work_package_filters(project_id), "sortBy": json.dumps([["id", "asc"]])},
        )
        by_key: dict[str, WorkPackage] = {}
        for element in elements:
            work_package = self._work_package(element)
            if work_package.correlation_key:
                by_key.setdefault(work_package.correlation_key, work_package)
        logger.info(
            f"Found {len(elements)} work packages, {len(by_key)} with a Jira key in {self.correlation_field}"
        )
        return by_key

    def create_work_package(self, project_id: int, payload: dict[str, Any]) -> WorkPackage:
        links = {**payload.get("_links", {}), "project": {"href": f"/api/v3/projects/{project_id}"}}
        body = {**payload, "_links": links}
        return self._work_package(self._request("POST", "/work_packages", json=body))

    def update_work_package(self, work_package_id: int, payload: dict[str, Any], lock_version: int) -> WorkPackage:
        body = {key: value for key, value in payload.items() if key != "_type"}
        body["lockVersion"] = lock_version
        try:
            return self._work_package(self._request("PATCH", f"/work_packages/{work_package_id}", json=body))
        except OpenProjectError as e:
            if e.status == 409:
                msg = f"Work package {work_package_id} was modified concurrently (lockVersion {lock_version} is stale)"
                raise LockVersionConflictError(msg, status=e.status, messages=e.messages) from e
            raise

    def set_parent(self, child_id: int, parent_id: int) -> None:
        current = self.get_work_package(child_id)
        self.update_work_package(child_id, parent_payload(parent_id), current.lock_version)
        logger.debug(f"Set parent of work package {child_id} to {parent_id}")

    def _relation_count(self, from_id: int, to_id: int, relation_type: str) -> int:
        filters = [_filter("from", str(from_id)), _filter("to", str(to_id)), _filter("type", relation_type)]
        data = self._request("GET", "/relations", params={"filters": json.dumps(filters)})
        return int(data.get("total", 0))

    def relation_exists(self, from_id: int, to_id: int, relation_type: str, *, symmetric: bool = False) -> bool:
        if self._relation_count(from_id, to_id, relation_type) > 0:
            return True
        return symmetric and self._relation_count(to_id, from_id, relation_type) > 0

    def create_relation(self, from_id: int, to_id: int, relation_type: str) -> bool:
        payload: dict[str, Any] = {
            "type": relation_type,
            "description": "Created by Jira migration",
            "_links": {
                "from": {"href": f"/api/v3/work_packages/{from_id}"},
                "to": {"href": f"/api/v3/work_packages/{to_id}"},
            },
        }
        if relation_type in _LAGGED_RELATION_TYPES:
            payload["lag"] = 0
        try:
            self._request("POST", f"/work_packages/{from_id}/relations", json=payload)
        except OpenProjectError as e:
            if is_already_exists_error(e) or is_circular_dependency_error(e):
                logger.debug(f"Relation {from_id} {relation_type} {to_id} already holds: {'; '.join(e.messages)}")
                return False
            raise
        logger.debug(f"Created relation {from_id} {relation_type} {to_id}")
        return True

    def list_attachments(self, work_package_id: int) -> list[Artifact]:
        data = self._request("GET", f"/work_packages/{work_package_id}/attachments")
        return [
            Artifact(id=int(a["id"]), filename=a.get("fileName", ""), content_type=a.get("contentType", ""))
            for a in data.get("_embedded", {}).get("elements", [])
        ]

    def upload_attachment(
        self, work_package_id: int, content: bytes, filename: str, *, as_user: int | None = None
    ) -> Artifact:
        files = {
            "metadata": (None, json.dumps({"fileName": filename}), "application/json"),
            "file": (filename, content),
        }
        data = self._request("POST", f"/work_packages/{work_package_id}/attachments", files=files, as_user=as_user)
        return Artifact(
            id=int(data["id"]),
            filename=data.get("fileName", filename),
            content_type=data.get("contentType", ""),
        )

    def list_activities(self, work_package_id: int) -> list[Activity]:
        data = self._request("GET", f"/work_packages/{work_package_id}/activities")
        return [
            Activity(id=int(e["id"]), comment=(e.get("comment") or {}).get("raw") or "")
            for e in data.get("_embedded", {}).get("elements", [])
        ]

    def add_comment(self, work_package_id: int, markup: str, *, as_user: int | None = None) -> int | None:
        data = self._request(
            "POST",
            f"/work_packages/{work_package_id}/activities",
            json={"comment": {"raw": markup}},
            as_user=as_user,
        )
        return int(data["id"]) if data.get("id") is not None else None

    def add_watcher(self, work_package_id: int, user_id: int) -> bool:
        try:
            self._request(
                "POST",
                f"/work_packages/{work_package_id}/watchers",
                json={"user": {"href": f"/api/v3/users/{user_id}"}},
            )
        except OpenProjectError as e:
            if e.status == 409:
                logger.debug(f"User {user_id} is already watching work package {work_package_id}")
                return False
            raise
        return True
