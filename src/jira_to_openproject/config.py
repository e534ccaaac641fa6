"""Runtime configuration from the environment and the ``pass`` password manager."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from . import utils
from .exceptions import MigrationError

if TYPE_CHECKING:
    from collections.abc import Mapping

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

JIRA_TOKEN_ENV_VAR: Final[str] = "JIRA_API_TOKEN"  # noqa: S105
OPENPROJECT_TOKEN_ENV_VAR: Final[str] = "OPENPROJECT_API_KEY"  # noqa: S105
DEFAULT_JIRA_TOKEN_PASS_PATH: Final[str] = "jira/api_token"  # noqa: S105
DEFAULT_OPENPROJECT_TOKEN_PASS_PATH: Final[str] = "openproject/api_key"  # noqa: S105
DEFAULT_CORRELATION_FIELD_ID: Final[int] = 1

_USER_ENV_PATTERN: Final[re.Pattern[str]] = re.compile(r"OP_API_KEY_USER_(\d+)")


def get_token(
    pass_path: str | None,
    env_var: str,
    default_pass_path: str,
    environ: Mapping[str, str] | None = None,
) -> str | None:
    """Get a token from the given pass path, the environment, or the default pass location."""
    # An explicit pass path must work; its errors propagate
    if pass_path:
        return utils.get_pass_value(pass_path)

    environ = os.environ if environ is None else environ
    token = environ.get(env_var)
    if token:
        return token

    try:
        return utils.get_pass_value(default_pass_path)
    except (ValueError, utils.PassError):
        logger.warning(f"No token specified in {env_var} nor found in pass at {default_pass_path}")
        return None


@dataclass(frozen=True)
class UserCredential:
    """An OpenProject API key used to act as a specific user."""

    user_id: int
    api_key: str


def collect_user_credentials(environ: Mapping[str, str]) -> dict[int, UserCredential]:
    """Collect per-user API keys from ``OP_API_KEY_USER_<id>`` variables."""
    credentials: dict[int, UserCredential] = {}
    for name, value in environ.items():
        match = _USER_ENV_PATTERN.fullmatch(name)
        if match is None or not value:
            continue
        user_id = int(match.group(1))
        credentials[user_id] = UserCredential(user_id=user_id, api_key=value)
    return credentials


@dataclass(frozen=True)
class Settings:
    """Connection settings for both systems."""

    jira_url: str
    jira_email: str
    jira_api_token: str
    openproject_url: str
    openproject_api_key: str
    correlation_field_id: int = DEFAULT_CORRELATION_FIELD_ID
    user_credentials: dict[int, UserCredential] = field(default_factory=dict)

    @property
    def user_api_keys(self) -> dict[int, str]:
        return {user_id: credential.api_key for user_id, credential in self.user_credentials.items()}

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        jira_token_pass_path: str | None = None,
        openproject_token_pass_path: str | None = None,
    ) -> Settings:
        """Build the settings, failing with every missing variable named at once.

        Raises:
            MigrationError: If a required setting is missing or invalid
        """
        environ = os.environ if environ is None else environ

        jira_token = get_token(jira_token_pass_path, JIRA_TOKEN_ENV_VAR, DEFAULT_JIRA_TOKEN_PASS_PATH, environ)
        openproject_token = get_token(
            openproject_token_pass_path, OPENPROJECT_TOKEN_ENV_VAR, DEFAULT_OPENPROJECT_TOKEN_PASS_PATH, environ
        )

        values = {
            "JIRA_URL": environ.get("JIRA_URL", ""),
            "JIRA_EMAIL": environ.get("JIRA_EMAIL", ""),
            JIRA_TOKEN_ENV_VAR: jira_token or "",
            "OPENPROJECT_URL": environ.get("OPENPROJECT_URL", ""),
            OPENPROJECT_TOKEN_ENV_VAR: openproject_token or "",
        }
        missing = [name for name, value in values.items() if not value]
        if missing:
            msg = f"Missing required configuration: {', '.join(missing)}"
            raise MigrationError(msg)

        raw_field_id = environ.get("JIRA_ID_CUSTOM_FIELD") or str(DEFAULT_CORRELATION_FIELD_ID)
        try:
            correlation_field_id = int(raw_field_id)
        except ValueError as e:
            msg = f"JIRA_ID_CUSTOM_FIELD must be a number, got {raw_field_id!r}"
            raise MigrationError(msg) from e

        credentials = collect_user_credentials(environ)
        if credentials:
            logger.info(f"Found API keys for {len(credentials)} OpenProject users")

        return cls(
            jira_url=values["JIRA_URL"],
            jira_email=values["JIRA_EMAIL"],
            jira_api_token=values[JIRA_TOKEN_ENV_VAR],
            openproject_url=values["OPENPROJECT_URL"],
            openproject_api_key=values[OPENPROJECT_TOKEN_ENV_VAR],
            correlation_field_id=correlation_field_id,
            user_credentials=credentials,
        )
