"""Process-wide runner settings resolved from the environment."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

from .env import EnvLookup, process_env
from .errors import ConfigError

DEFAULT_TIMEOUT_MS = 15000
DEFAULT_RETRIES = 2
DEFAULT_BACKOFF_MS = 500


class RunnerSettings(BaseModel):
    """Defaults shared by every step runner and the issue-tracker source."""

    model_config = ConfigDict(frozen=True)

    base_url: Optional[str] = None
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    retries: int = DEFAULT_RETRIES
    backoff_ms: int = DEFAULT_BACKOFF_MS
    jira_base_url: Optional[str] = None
    jira_email: Optional[str] = None
    jira_api_token: Optional[str] = None

    @classmethod
    def from_env(cls, env: EnvLookup | None = None) -> "RunnerSettings":
        """Build settings from ``STONEY_*`` and ``JIRA_*`` variables."""

        lookup = process_env() if env is None else env
        return cls(
            base_url=_text(lookup, "STONEY_BASE_URL"),
            timeout_ms=_non_negative_int(lookup, "STONEY_TIMEOUT_MS", DEFAULT_TIMEOUT_MS, minimum=1),
            retries=_non_negative_int(lookup, "STONEY_RETRIES", DEFAULT_RETRIES),
            backoff_ms=_non_negative_int(lookup, "STONEY_BACKOFF_MS", DEFAULT_BACKOFF_MS),
            jira_base_url=_text(lookup, "JIRA_BASE_URL"),
            jira_email=_text(lookup, "JIRA_EMAIL"),
            jira_api_token=_text(lookup, "JIRA_API_TOKEN"),
        )


def _text(env: EnvLookup, name: str) -> str | None:
    value = env.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _non_negative_int(env: EnvLookup, name: str, default: int, *, minimum: int = 0) -> int:
    raw = _text(env, name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be at least {minimum}, got {value}")
    return value
