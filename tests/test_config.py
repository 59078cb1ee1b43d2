"""Tests for core.config."""
import copy

import pytest

from connectors.base import DeliveryMode
from core.config import TOKEN_ENV_VAR, load_settings, parse_settings
from core.errors import ConfigError

VALID = {
    "dynatrace": {
        "base_url": "https://abc.live.dynatrace.com",
        "tenant": "abc",
        "problem_selector": 'status("open")',
    },
    "polling": {"interval_seconds": 60},
    "database": {"path": "./data/relay.db"},
    "connectors": [
        {"name": "hook", "url": "https://hooks.example.com/x"},
        {
            "name": "bulk",
            "url": "http://tickets.local/bulk",
            "method": "put",
            "headers": {"Authorization": "${RELAY_TEST_TOKEN}", "X-Static": "yes"},
            "timeout_seconds": 5,
            "retry_attempts": 5,
            "verify_ssl": False,
            "batch_mode": True,
        },
    ],
    "logging": {"level": "debug", "format": "JSON"},
}

YAML = """
dynatrace:
  base_url: https://abc.live.dynatrace.com
  tenant: abc
polling:
  interval_seconds: 30
database:
  path: ./relay.db
connectors:
  - name: hook
    url: https://hooks.example.com/x
"""


def with_changes(**sections):
    data = copy.deepcopy(VALID)
    data.update(sections)
    return data


class TestParseSettings:
    def test_valid_document(self, monkeypatch):
        monkeypatch.setenv("RELAY_TEST_TOKEN", "Bearer abc")

        settings = parse_settings(copy.deepcopy(VALID), "dt0c01.token")

        assert settings.source.api_token == "dt0c01.token"
        assert settings.source.problem_selector == 'status("open")'
        assert settings.interval_seconds == 60
        assert settings.log_level == "DEBUG"
        assert settings.log_format == "json"

        hook, bulk = settings.connectors
        assert hook.method == "POST"
        assert hook.timeout_seconds == 30
        assert hook.retry_attempts == 3
        assert hook.verify_ssl is True
        assert hook.mode is DeliveryMode.INDIVIDUAL

        assert bulk.method == "PUT"
        assert bulk.headers == {"Authorization": "Bearer abc", "X-Static": "yes"}
        assert bulk.retry_attempts == 5
        assert bulk.verify_ssl is False
        assert bulk.mode is DeliveryMode.BATCH

    def test_unset_placeholder_is_left_alone(self, monkeypatch):
        monkeypatch.delenv("RELAY_TEST_TOKEN", raising=False)

        settings = parse_settings(copy.deepcopy(VALID), "t")

        assert settings.connectors[1].headers["Authorization"] == "${RELAY_TEST_TOKEN}"

    def test_missing_token(self):
        with pytest.raises(ConfigError, match=TOKEN_ENV_VAR):
            parse_settings(copy.deepcopy(VALID), None)

    @pytest.mark.parametrize(
        "data, message",
        [
            (with_changes(dynatrace={"base_url": "", "tenant": "abc"}), "base_url"),
            (with_changes(dynatrace={"base_url": "https://x", "tenant": ""}), "tenant"),
            (with_changes(polling={"interval_seconds": 0}), "interval_seconds"),
            (with_changes(connectors=[]), "At least one connector"),
            (with_changes(connectors=[{"name": "", "url": "https://x"}]), "name cannot be empty"),
            (with_changes(connectors=[{"name": "a", "url": "ftp://x"}]), "must start with http"),
            (with_changes(connectors=[{"name": "a", "url": "https://x", "method": "DELETE"}]), "method"),
            (with_changes(connectors=[{"name": "a", "url": "https://x", "retry_attempts": 0}]), "retry_attempts"),
            (with_changes(connectors=[{"name": "a", "url": "https://x", "verify_ssl": "false"}]), "verify_ssl"),
            (with_changes(connectors=[{"name": "a", "url": "https://x", "batch_mode": "false"}]), "batch_mode"),
            (with_changes(connectors=[{"name": "a", "url": "https://x", "batch_mode": 1}]), "batch_mode"),
            (with_changes(logging={"format": "xml"}), "logging.format"),
            (
                with_changes(connectors=[{"name": "a", "url": "https://x"}, {"name": "a", "url": "https://y"}]),
                "Duplicate",
            ),
        ],
    )
    def test_invalid_documents(self, data, message):
        with pytest.raises(ConfigError, match=message):
            parse_settings(data, "token")


class TestLoadSettings:
    def test_loads_yaml_and_token_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text(YAML, encoding="utf-8")
        monkeypatch.setenv(TOKEN_ENV_VAR, "dt0c01.env")

        settings = load_settings(path)

        assert settings.source.api_token == "dt0c01.env"
        assert settings.interval_seconds == 30
        assert [c.name for c in settings.connectors] == ["hook"]
        assert settings.log_format == "pretty"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "missing.yaml")

    def test_non_mapping_document(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        monkeypatch.setenv(TOKEN_ENV_VAR, "t")

        with pytest.raises(ConfigError, match="mapping"):
            load_settings(path)
