"""Tests for configuration from the environment and pass."""

from unittest.mock import patch

import pytest

from jira_to_openproject.config import Settings, UserCredential, collect_user_credentials, get_token
from jira_to_openproject.exceptions import MigrationError
from jira_to_openproject.utils import InvalidPassPathError

ENVIRON = {
    "JIRA_URL": "https://example.atlassian.net",
    "JIRA_EMAIL": "me@example.com",
    "JIRA_API_TOKEN": "jira-token",
    "OPENPROJECT_URL": "https://op.example.com",
    "OPENPROJECT_API_KEY": "op-key",
}


@pytest.mark.unit
class TestGetToken:
    def test_explicit_pass_path_wins(self) -> None:
        with patch("jira_to_openproject.utils.get_pass_value", return_value="from-pass") as get_pass_value:
            token = get_token("custom/path", "JIRA_API_TOKEN", "jira/api_token", {"JIRA_API_TOKEN": "env"})
        assert token == "from-pass"
        get_pass_value.assert_called_once_with("custom/path")

    def test_environment_before_default_pass_path(self) -> None:
        with patch("jira_to_openproject.utils.get_pass_value") as get_pass_value:
            token = get_token(None, "JIRA_API_TOKEN", "jira/api_token", {"JIRA_API_TOKEN": "env"})
        assert token == "env"
        get_pass_value.assert_not_called()

    def test_default_pass_path(self) -> None:
        with patch("jira_to_openproject.utils.get_pass_value", return_value="default") as get_pass_value:
            assert get_token(None, "JIRA_API_TOKEN", "jira/api_token", {}) == "default"
        get_pass_value.assert_called_once_with("jira/api_token")

    def test_nothing_found(self) -> None:
        with patch("jira_to_openproject.utils.get_pass_value", side_effect=InvalidPassPathError("missing")):
            assert get_token(None, "JIRA_API_TOKEN", "jira/api_token", {}) is None


@pytest.mark.unit
class TestSettings:
    def test_from_env(self) -> None:
        environ = ENVIRON | {"JIRA_ID_CUSTOM_FIELD": "12", "OP_API_KEY_USER_4": "k4", "OP_LOGIN_USER_4": "jane"}
        settings = Settings.from_env(environ)
        assert settings.jira_api_token == "jira-token"
        assert settings.openproject_api_key == "op-key"
        assert settings.correlation_field_id == 12
        assert settings.user_api_keys == {4: "k4"}

    def test_default_correlation_field(self) -> None:
        assert Settings.from_env(ENVIRON).correlation_field_id == 1

    def test_missing_settings_are_listed(self) -> None:
        environ = {k: v for k, v in ENVIRON.items() if k not in ("JIRA_URL", "OPENPROJECT_API_KEY")}
        with (
            patch("jira_to_openproject.utils.get_pass_value", side_effect=InvalidPassPathError("missing")),
            pytest.raises(MigrationError, match="JIRA_URL, OPENPROJECT_API_KEY"),
        ):
            Settings.from_env(environ)

    def test_invalid_custom_field_id(self) -> None:
        with pytest.raises(MigrationError, match="JIRA_ID_CUSTOM_FIELD"):
            Settings.from_env(ENVIRON | {"JIRA_ID_CUSTOM_FIELD": "abc"})


@pytest.mark.unit
class TestCollectUserCredentials:
    def test_collects_api_keys_by_user_id(self) -> None:
        environ = {
            "OP_API_KEY_USER_4": "k4",
            "OP_API_KEY_USER_7": "k7",
            "OP_API_KEY_USER_9": "",
            "OP_API_KEY_USER_X": "ignored",
            "PATH": "/usr/bin",
        }
        assert collect_user_credentials(environ) == {
            4: UserCredential(user_id=4, api_key="k4"),
            7: UserCredential(user_id=7, api_key="k7"),
        }
