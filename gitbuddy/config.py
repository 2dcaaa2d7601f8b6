"""Settings gathered from environment variables (``.env`` is loaded on package import)."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from pydantic import BaseModel, Field, ValidationError

from gitbuddy.engine.compression import CompressionStrategy
from gitbuddy.engine.errors import ConfigError
from gitbuddy.engine.models import RetryConfig

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{key} must be a boolean, got {raw!r}")


def _number(env: Mapping[str, str], key: str, default: float, cast: type = float):
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from None


class CompressionConfig(BaseModel):
    enabled: bool = True
    threshold: int = Field(default=20, ge=2)
    keep_recent: int = Field(default=10, ge=1)
    strategy: CompressionStrategy = CompressionStrategy.TRUNCATE


class Settings(BaseModel):
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str | None = None
    language: str = "en"
    session_dir: Path = Path("./.gitbuddy/sessions")
    max_sessions: int = Field(default=10, ge=0)
    issues_dir: Path = Path("./issues")
    trace_dir: Path = Path("./traces")
    retry: RetryConfig = Field(default_factory=RetryConfig)
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    debug: bool = False

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``env`` (defaults to ``os.environ``).

        Environment variables (all optional):
          OPENAI_API_KEY, OPENAI_MODEL, OPENAI_BASE_URL
          GITBUDDY_LANGUAGE, GITBUDDY_SESSION_DIR, GITBUDDY_MAX_SESSIONS
          GITBUDDY_ISSUES_DIR, GITBUDDY_TRACE_DIR, GITBUDDY_DEBUG
          GITBUDDY_RETRY_ENABLED / _MAX_ATTEMPTS / _BACKOFF_BASE / _BACKOFF_MAX
          GITBUDDY_COMPRESSION_ENABLED / _THRESHOLD / _KEEP_RECENT / _STRATEGY
        """
        env = os.environ if env is None else env
        try:
            return cls(
                openai_api_key=env.get("OPENAI_API_KEY") or None,
                openai_model=env.get("OPENAI_MODEL") or "gpt-4o-mini",
                openai_base_url=env.get("OPENAI_BASE_URL") or None,
                language=env.get("GITBUDDY_LANGUAGE") or "en",
                session_dir=Path(env.get("GITBUDDY_SESSION_DIR") or "./.gitbuddy/sessions"),
                max_sessions=_number(env, "GITBUDDY_MAX_SESSIONS", 10, int),
                issues_dir=Path(env.get("GITBUDDY_ISSUES_DIR") or "./issues"),
                trace_dir=Path(env.get("GITBUDDY_TRACE_DIR") or "./traces"),
                retry=RetryConfig(
                    enabled=_bool(env, "GITBUDDY_RETRY_ENABLED", True),
                    max_attempts=_number(env, "GITBUDDY_RETRY_MAX_ATTEMPTS", 3, int),
                    backoff_base=_number(env, "GITBUDDY_RETRY_BACKOFF_BASE", 1.0),
                    backoff_max=_number(env, "GITBUDDY_RETRY_BACKOFF_MAX", 8.0),
                ),
                compression=CompressionConfig(
                    enabled=_bool(env, "GITBUDDY_COMPRESSION_ENABLED", True),
                    threshold=_number(env, "GITBUDDY_COMPRESSION_THRESHOLD", 20, int),
                    keep_recent=_number(env, "GITBUDDY_COMPRESSION_KEEP_RECENT", 10, int),
                    strategy=env.get("GITBUDDY_COMPRESSION_STRATEGY") or "truncate",
                ),
                debug=_bool(env, "GITBUDDY_DEBUG", False),
            )
        except ValidationError as exc:
            raise ConfigError(f"invalid configuration: {exc}") from exc
