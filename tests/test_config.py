"""Tests for Settings.from_env."""

from __future__ import annotations

from pathlib import Path

import pytest

from gitbuddy.config import Settings
from gitbuddy.engine.compression import CompressionStrategy
from gitbuddy.engine.errors import ConfigError


class TestSettingsFromEnv:
    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.openai_api_key is None
        assert settings.openai_model == "gpt-4o-mini"
        assert settings.language == "en"
        assert settings.session_dir == Path("./.gitbuddy/sessions")
        assert settings.max_sessions == 10
        assert settings.retry.enabled
        assert settings.retry.max_attempts == 3
        assert settings.compression.strategy == CompressionStrategy.TRUNCATE
        assert not settings.debug

    def test_overrides(self):
        settings = Settings.from_env(
            {
                "OPENAI_API_KEY": "sk-test",
                "OPENAI_MODEL": "gpt-4o",
                "GITBUDDY_LANGUAGE": "zh",
                "GITBUDDY_SESSION_DIR": "/tmp/sessions",
                "GITBUDDY_MAX_SESSIONS": "3",
                "GITBUDDY_RETRY_ENABLED": "off",
                "GITBUDDY_RETRY_MAX_ATTEMPTS": "5",
                "GITBUDDY_RETRY_BACKOFF_BASE": "0.5",
                "GITBUDDY_RETRY_BACKOFF_MAX": "2",
                "GITBUDDY_COMPRESSION_THRESHOLD": "30",
                "GITBUDDY_COMPRESSION_STRATEGY": "summarize",
                "GITBUDDY_DEBUG": "yes",
            }
        )
        assert settings.openai_api_key == "sk-test"
        assert settings.openai_model == "gpt-4o"
        assert settings.language == "zh"
        assert settings.session_dir == Path("/tmp/sessions")
        assert settings.max_sessions == 3
        assert not settings.retry.enabled
        assert settings.retry.max_attempts == 5
        assert settings.retry.backoff_base == 0.5
        assert settings.retry.backoff_max == 2.0
        assert settings.compression.threshold == 30
        assert settings.compression.strategy == CompressionStrategy.SUMMARIZE
        assert settings.debug

    def test_blank_number_uses_default(self):
        assert Settings.from_env({"GITBUDDY_MAX_SESSIONS": " "}).max_sessions == 10

    @pytest.mark.parametrize(
        "env, message",
        [
            ({"GITBUDDY_DEBUG": "maybe"}, "GITBUDDY_DEBUG must be a boolean"),
            ({"GITBUDDY_MAX_SESSIONS": "ten"}, "GITBUDDY_MAX_SESSIONS must be a number"),
            ({"GITBUDDY_COMPRESSION_STRATEGY": "zip"}, "invalid configuration"),
            ({"GITBUDDY_RETRY_BACKOFF_BASE": "10", "GITBUDDY_RETRY_BACKOFF_MAX": "1"}, "invalid configuration"),
            ({"GITBUDDY_COMPRESSION_THRESHOLD": "1"}, "invalid configuration"),
        ],
    )
    def test_invalid_values(self, env, message):
        with pytest.raises(ConfigError, match=message):
            Settings.from_env(env)
