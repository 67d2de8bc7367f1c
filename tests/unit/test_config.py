"""
Unit tests for configuration module.
"""

import pytest
from pydantic import ValidationError

from dual_ai_chat.config import (
    AppConfig,
    ConfigurationError,
    DiscussionConfig,
    DiscussionMode,
    GeminiConfig,
    PromptConfig,
    RetryConfig,
    SecretsManager,
    load_config,
    save_config,
)


ENV_VARS = [
    "DUAL_AI_MODEL",
    "DUAL_AI_MODE",
    "DUAL_AI_FIXED_TURNS",
    "DUAL_AI_MAX_AUTO_RETRIES",
    "DUAL_AI_RETRY_DELAY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestGeminiConfig:
    """Tests for GeminiConfig."""

    def test_defaults(self):
        config = GeminiConfig()
        assert config.model == "gemini-2.5-flash"
        assert config.api_key_env == "GEMINI_API_KEY"
        assert config.thinking_enabled is True

    def test_budget_for_flash(self):
        assert GeminiConfig().budget_for("gemini-2.5-flash") == 24576

    def test_budget_for_pro(self):
        assert GeminiConfig().budget_for("gemini-2.5-pro") == 32768

    def test_budget_disabled(self):
        config = GeminiConfig(thinking_enabled=False)
        assert config.budget_for("gemini-2.5-pro") is None


class TestDiscussionConfig:
    """Tests for DiscussionConfig."""

    def test_defaults(self):
        config = DiscussionConfig()
        assert config.mode == DiscussionMode.AI_DRIVEN
        assert config.fixed_turns == 2

    @pytest.mark.parametrize("turns", [0, 6])
    def test_turn_bounds(self, turns):
        with pytest.raises(ValidationError):
            DiscussionConfig(fixed_turns=turns)

    def test_mode_from_string(self):
        assert DiscussionConfig(mode="fixed").mode == DiscussionMode.FIXED_TURNS


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_defaults(self):
        config = RetryConfig()
        assert config.max_auto_retries == 2
        assert config.base_delay_seconds == 1.0
        assert config.auth_error_marker == "API key not valid"


class TestPromptConfig:
    """Tests for PromptConfig."""

    def test_defaults(self):
        config = PromptConfig()
        assert config.logical_name == "Cognito"
        assert config.creative_name == "Muse"
        assert config.completion_marker == "<discussion_complete />"

    def test_markers_must_differ(self):
        with pytest.raises(ValidationError):
            PromptConfig(completion_marker="<notepad_update>")

    def test_names_must_differ(self):
        with pytest.raises(ValidationError):
            PromptConfig(logical_name="Muse")

    def test_notepad_placeholder_required(self):
        with pytest.raises(ValidationError):
            PromptConfig(notepad_instructions="No notepad here")


class TestLoadConfig:
    """Tests for load_config / save_config."""

    def test_load_from_yaml(self, temp_file):
        path = temp_file(
            "load.yaml",
            "gemini:\n  model: gemini-2.5-pro\n"
            "discussion:\n  mode: fixed\n  fixed_turns: 4\n",
        )
        config = load_config(str(path))

        assert config.gemini.model == "gemini-2.5-pro"
        assert config.discussion.mode == DiscussionMode.FIXED_TURNS
        assert config.discussion.fixed_turns == 4
        assert config.retry.max_auto_retries == 2

    def test_empty_file_gives_defaults(self, temp_file):
        config = load_config(str(temp_file("empty.yaml", "")))
        assert config == AppConfig()

    def test_missing_explicit_file(self, temp_dir):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(str(temp_dir / "nope.yaml"))
        assert "not found" in str(exc_info.value)

    def test_invalid_yaml(self, temp_file):
        path = temp_file("bad.yaml", "gemini: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config(str(path))

    def test_invalid_values(self, temp_file):
        path = temp_file("values.yaml", "discussion:\n  fixed_turns: 12\n")
        with pytest.raises(ConfigurationError):
            load_config(str(path))

    def test_env_overrides(self, temp_file, monkeypatch):
        """DUAL_AI_* variables win over the file."""
        path = temp_file("env.yaml", "gemini:\n  model: gemini-2.5-pro\n")
        monkeypatch.setenv("DUAL_AI_MODEL", "gemini-2.5-flash-lite")
        monkeypatch.setenv("DUAL_AI_MODE", "fixed")
        monkeypatch.setenv("DUAL_AI_FIXED_TURNS", "3")
        monkeypatch.setenv("DUAL_AI_MAX_AUTO_RETRIES", "0")
        monkeypatch.setenv("DUAL_AI_RETRY_DELAY", "0.5")

        config = load_config(str(path))

        assert config.gemini.model == "gemini-2.5-flash-lite"
        assert config.discussion.mode == DiscussionMode.FIXED_TURNS
        assert config.discussion.fixed_turns == 3
        assert config.retry.max_auto_retries == 0
        assert config.retry.base_delay_seconds == 0.5

    def test_invalid_env_override(self, temp_file, monkeypatch):
        monkeypatch.setenv("DUAL_AI_MODE", "round-robin")
        with pytest.raises(ConfigurationError):
            load_config(str(temp_file("env2.yaml", "")))

    def test_save_and_load(self, temp_dir):
        config = AppConfig()
        config.discussion.mode = DiscussionMode.FIXED_TURNS
        config.prompts.creative_name = "Spark"
        path = temp_dir / "saved" / "config.yaml"

        save_config(config, str(path))
        loaded = load_config(str(path))

        assert loaded.discussion.mode == DiscussionMode.FIXED_TURNS
        assert loaded.prompts.creative_name == "Spark"


class TestSecrets:
    """Secrets come from the environment only."""

    def test_required_secret_missing(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        with pytest.raises(ConfigurationError):
            SecretsManager.get_secret("GEMINI_API_KEY", required=True)

    def test_status_masked(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "abcd1234efgh5678")
        status = SecretsManager.get_status(["GEMINI_API_KEY"])
        assert status["GEMINI_API_KEY"] == "abcd...5678"

    def test_status_follows_configured_variable(self, monkeypatch):
        monkeypatch.setenv("TEAM_GEMINI_KEY", "short")
        config = AppConfig(gemini=GeminiConfig(api_key_env="TEAM_GEMINI_KEY"))

        status = SecretsManager.get_status([config.gemini.api_key_env])

        assert status == {"TEAM_GEMINI_KEY": "****"}

    def test_status_missing(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        assert SecretsManager.get_status(["GEMINI_API_KEY"])["GEMINI_API_KEY"] == "NOT SET (required)"

    def test_validate_for_run_warns(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        warnings = AppConfig().validate_for_run()
        assert any("GEMINI_API_KEY" in w for w in warnings)
