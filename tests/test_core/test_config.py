"""
Tests for foreman.core.config
===============================

These tests verify that the configuration system works correctly:
    - Default values are sensible and complete
    - Environment variables override defaults (FOREMAN_ prefix, __ nesting)
    - YAML files are parsed correctly
    - Validation catches invalid values
"""

import pytest
import yaml
from pydantic import ValidationError

from foreman.core.config import (
    ExecutionConfig,
    ForemanConfig,
    get_default_config,
    load_config,
)
from foreman.core.exceptions import ConfigurationError


# =============================================================================
# Test: Default Configuration
# =============================================================================
class TestDefaultConfig:
    """Tests for default configuration values."""

    def test_default_config_creates_successfully(self) -> None:
        """ForemanConfig() should work with no arguments (zero-config startup)."""
        config = ForemanConfig()
        assert config.environment == "dev"
        assert config.log_level == "INFO"
        assert config.log_format == "console"

    def test_default_execution_budget(self) -> None:
        """Two retries per task and a 3x liveness bound by default."""
        config = ForemanConfig()
        assert config.execution.max_retry_attempts == 2
        assert config.execution.liveness_factor == 3
        assert config.execution.strict_dependencies is False

    def test_default_llm_is_mock(self) -> None:
        """LLM config should default to the mock provider for safe offline runs."""
        assert ForemanConfig().llm.provider == "mock"

    def test_default_verification_paths(self) -> None:
        config = ForemanConfig()
        assert config.verification.expected_paths == ["README.md", "src", "tests"]
        assert config.verification.dataset_path == "data/dataset.csv"

    def test_default_sandbox_is_locked_down(self) -> None:
        config = ForemanConfig()
        assert config.sandbox.network_disabled is True
        assert config.sandbox.memory_limit == "512m"

    def test_get_default_config(self) -> None:
        assert isinstance(get_default_config(), ForemanConfig)


# =============================================================================
# Test: Environment Variable Overrides
# =============================================================================
class TestEnvironmentOverrides:
    """FOREMAN_* variables override defaults; __ reaches nested sections."""

    def test_top_level_override(self, monkeypatch) -> None:
        monkeypatch.setenv("FOREMAN_LOG_LEVEL", "DEBUG")
        assert ForemanConfig().log_level == "DEBUG"

    def test_nested_override(self, monkeypatch) -> None:
        monkeypatch.setenv("FOREMAN_EXECUTION__MAX_RETRY_ATTEMPTS", "5")
        monkeypatch.setenv("FOREMAN_LLM__PROVIDER", "anthropic")
        config = ForemanConfig()
        assert config.execution.max_retry_attempts == 5
        assert config.llm.provider == "anthropic"


# =============================================================================
# Test: YAML Loading
# =============================================================================
class TestLoadConfig:
    """Tests for load_config()."""

    def test_load_from_yaml(self, tmp_path) -> None:
        path = tmp_path / "foreman.yaml"
        path.write_text(yaml.safe_dump({
            "project_path": "/tmp/assessment",
            "execution": {"max_retry_attempts": 4, "inter_task_delay_seconds": 0},
            "datasets": {"synthetic_rows": 50},
        }))

        config = load_config(str(path))

        assert config.project_path == "/tmp/assessment"
        assert config.execution.max_retry_attempts == 4
        assert config.execution.inter_task_delay_seconds == 0
        assert config.datasets.synthetic_rows == 50

    def test_empty_yaml_gives_defaults(self, tmp_path) -> None:
        path = tmp_path / "foreman.yaml"
        path.write_text("")
        assert load_config(str(path)).execution.max_retry_attempts == 2

    def test_missing_explicit_file_raises(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_non_mapping_yaml_raises(self, tmp_path) -> None:
        path = tmp_path / "foreman.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(str(path))
        assert exc_info.value.error_code == "CONFIG_ERROR"

    def test_no_path_and_no_default_file(self, tmp_path, monkeypatch) -> None:
        """Without foreman.yaml in the working directory, defaults apply."""
        monkeypatch.chdir(tmp_path)
        assert load_config().llm.provider == "mock"


# =============================================================================
# Test: Validation
# =============================================================================
class TestValidation:
    """Out-of-range values are rejected at construction."""

    def test_retry_budget_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            ExecutionConfig(max_retry_attempts=0)

    def test_liveness_factor_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            ExecutionConfig(liveness_factor=0)

    def test_invalid_log_format(self) -> None:
        with pytest.raises(ValidationError):
            ForemanConfig(log_format="xml")
