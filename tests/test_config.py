"""Tests for config.py and config_schema.py.

Tests YAML loading, environment overrides, validation error formatting,
the singleton, and conversion of RetryConfig into a RetryPolicy.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from outlook_mcp.config import get_config, load_config, reset_config, validate_config_file
from outlook_mcp.config_schema import AppConfig, GraphConfig, RetryConfig
from outlook_mcp.core.errors import ConfigLoadError, ConfigValidationError

pytestmark = pytest.mark.usefixtures("clean_env")


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


class TestSchemaDefaults:
    """Tests for schema defaults."""

    def test_minimal_config(self, sample_config: AppConfig) -> None:
        assert sample_config.auth.tenant_id == "test-tenant-id"
        assert sample_config.auth.redirect_port == 8400
        assert "Mail.Send" in sample_config.auth.scopes
        assert sample_config.graph.max_concurrent_requests == 4
        assert sample_config.graph.admission_poll_interval_seconds == 0.1
        assert sample_config.graph.window_seconds == 60.0
        assert sample_config.retry.max_attempts == 3
        assert sample_config.logging.json_output is True

    def test_auth_required(self) -> None:
        with pytest.raises(ValidationError):
            AppConfig()

    def test_retry_to_policy(self) -> None:
        policy = RetryConfig(
            max_attempts=5,
            initial_delay_seconds=0.5,
            backoff_multiplier=3.0,
            max_delay_seconds=10.0,
            jitter=0.2,
        ).to_policy()

        assert policy.max_attempts == 5
        assert policy.initial_delay == 0.5
        assert policy.backoff_multiplier == 3.0
        assert policy.max_delay == 10.0
        assert policy.jitter == 0.2

    def test_max_delay_below_initial_rejected(self) -> None:
        with pytest.raises(ValidationError, match="max_delay_seconds"):
            RetryConfig(initial_delay_seconds=10.0, max_delay_seconds=1.0)

    def test_base_url_must_be_https(self) -> None:
        with pytest.raises(ValidationError, match="https"):
            GraphConfig(base_url="http://graph.microsoft.com/v1.0")

    def test_base_url_trailing_slash_stripped(self) -> None:
        assert GraphConfig(base_url="https://graph.microsoft.com/beta/").base_url == (
            "https://graph.microsoft.com/beta"
        )

    def test_token_cache_path_traversal_rejected(self) -> None:
        with pytest.raises(ValidationError, match="path traversal"):
            AppConfig(auth={"client_id": "x", "token_cache_path": "../secrets.json"})


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config()."""

    def test_loads_yaml(self, config_file: Path) -> None:
        config = load_config(config_file)

        assert config.auth.client_id == "test-client-id"
        assert config.retry.max_attempts == 4
        assert config.retry.initial_delay_seconds == 0.5

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigLoadError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_missing_file_with_env_client_id(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """The environment alone is enough when AZURE_CLIENT_ID is set."""
        monkeypatch.setenv("AZURE_CLIENT_ID", "env-client")
        monkeypatch.setenv("AZURE_TENANT_ID", "env-tenant")

        config = load_config(tmp_path / "missing.yaml")

        assert config.auth.client_id == "env-client"
        assert config.auth.tenant_id == "env-tenant"

    def test_env_overrides_file(self, config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AZURE_CLIENT_ID", "override")

        config = load_config(config_file)

        assert config.auth.client_id == "override"
        assert config.auth.tenant_id == "test-tenant-id"

    def test_invalid_yaml(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "bad.yaml"
        path.write_text("auth: [unclosed")

        with pytest.raises(ConfigLoadError, match="Failed to parse YAML"):
            load_config(path)

    def test_non_mapping_yaml(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigLoadError, match="mapping"):
            load_config(path)

    def test_validation_errors_are_actionable(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "invalid.yaml"
        path.write_text("auth:\n  tenant_id: x\nretry:\n  max_attempts: 0\n")

        with pytest.raises(ConfigValidationError) as exc_info:
            load_config(path)

        message = str(exc_info.value)
        assert "Missing required field 'auth.client_id'" in message
        assert "retry.max_attempts" in message

    def test_newer_schema_version_rejected(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "future.yaml"
        path.write_text("schema_version: 99\nauth:\n  client_id: x\n")

        with pytest.raises(ConfigValidationError, match="newer than"):
            load_config(path)

    def test_empty_file_with_env(
        self, temp_config_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = temp_config_dir / "empty.yaml"
        path.write_text("")
        monkeypatch.setenv("AZURE_CLIENT_ID", "env-client")

        assert load_config(path).auth.client_id == "env-client"


class TestSingleton:
    """Tests for get_config() and reset_config()."""

    def test_cached_until_reset(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("OUTLOOK_MCP_CONFIG_PATH", str(config_file))

        first = get_config()
        assert get_config() is first

        reset_config()
        assert get_config() is not first


class TestValidateConfigFile:
    """Tests for validate_config_file()."""

    def test_valid(self, config_file: Path) -> None:
        is_valid, message = validate_config_file(config_file)

        assert is_valid
        assert "schema version 1" in message
        assert "4 attempts" in message

    def test_invalid(self, tmp_path: Path) -> None:
        is_valid, message = validate_config_file(tmp_path / "nope.yaml")

        assert not is_valid
        assert message.startswith("Load error")

    def test_validation_failure(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "bad.yaml"
        path.write_text("auth:\n  client_id: x\ngraph:\n  max_concurrent_requests: 0\n")

        is_valid, message = validate_config_file(path)

        assert not is_valid
        assert message.startswith("Validation error")
        assert "graph.max_concurrent_requests" in message
