"""
Tests for logging configuration.
"""

import logging

import structlog

from dual_ai_chat.logging import REDACTED, SecretRedactor, bind_run, setup_logging


class TestSecretRedactor:
    """Tests for SecretRedactor."""

    def test_key_fields_redacted(self):
        redactor = SecretRedactor(["TEAM_GEMINI_KEY"])

        event = redactor(None, "info", {"event": "x", "api_key": "abc", "team_gemini_key": "abc"})

        assert event["api_key"] == REDACTED
        assert event["team_gemini_key"] == REDACTED
        assert event["event"] == "x"

    def test_secret_value_scrubbed(self, monkeypatch):
        """SDK errors that echo the key lose it before rendering."""
        monkeypatch.setenv("TEAM_GEMINI_KEY", "AIzaSECRETVALUE")
        redactor = SecretRedactor(["TEAM_GEMINI_KEY"])

        event = redactor(None, "warning", {
            "event": "Gemini call failed",
            "error": "400 https://example.invalid/v1?key=AIzaSECRETVALUE rejected",
        })

        assert "AIzaSECRETVALUE" not in event["error"]
        assert REDACTED in event["error"]

    def test_unset_variable_leaves_values(self, monkeypatch):
        monkeypatch.delenv("TEAM_GEMINI_KEY", raising=False)
        redactor = SecretRedactor(["TEAM_GEMINI_KEY"])

        event = redactor(None, "info", {"event": "Step started", "step": "logical-initial"})

        assert event == {"event": "Step started", "step": "logical-initial"}

    def test_non_strings_untouched(self):
        event = SecretRedactor()(None, "info", {"attempts": 3, "api_key_present": True})
        assert event == {"attempts": 3, "api_key_present": True}


class TestBindRun:
    """Tests for bind_run."""

    def test_binds_and_unbinds(self):
        with bind_run("resume") as run_id:
            bound = structlog.contextvars.get_contextvars()
            assert bound["run"] == "resume"
            assert bound["run_id"] == run_id

        assert "run_id" not in structlog.contextvars.get_contextvars()


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_sdk_loggers_quiet(self):
        setup_logging(level="INFO")
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_sdk_loggers_verbose(self):
        setup_logging(level="DEBUG")
        assert logging.getLogger("httpx").level == logging.DEBUG

    def test_json_file(self, temp_dir):
        log_file = temp_dir / "logs" / "run.jsonl"

        setup_logging(level="INFO", log_file=log_file)

        assert log_file.exists()
