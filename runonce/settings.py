"""Process-wide defaults for run-once guards.

Values are read from the environment once at import; tests and embedding
applications may replace ``settings`` with a freshly loaded instance.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LoserPolicy = Literal["return", "wait"]

_DEFAULT_LOSER_POLICY: LoserPolicy = "return"
_DEFAULT_WAIT_TIMEOUT_S = 5.0
MAX_WAIT_TIMEOUT_S = 3600.0
_DEFAULT_LOG_LEVEL = "INFO"

LOSER_POLICIES: tuple[str, ...] = ("return", "wait")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="", extra="ignore", populate_by_name=True)

    loser_policy: LoserPolicy = Field(
        _DEFAULT_LOSER_POLICY,
        validation_alias=AliasChoices("RUNONCE_LOSER_POLICY"),
    )
    wait_timeout_s: float = Field(
        _DEFAULT_WAIT_TIMEOUT_S,
        ge=0.0,
        le=MAX_WAIT_TIMEOUT_S,
        validation_alias=AliasChoices("RUNONCE_WAIT_TIMEOUT_S"),
    )
    metrics_enabled: bool = Field(
        True,
        validation_alias=AliasChoices("RUNONCE_METRICS_ENABLED"),
    )
    log_level: str = Field(
        _DEFAULT_LOG_LEVEL,
        validation_alias=AliasChoices("RUNONCE_LOG_LEVEL"),
    )

    @field_validator("loser_policy", mode="before")
    @classmethod
    def _normalize_policy(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper() or _DEFAULT_LOG_LEVEL
        return value


if TYPE_CHECKING:

    def _load_settings(**data: Any) -> Settings: ...
else:

    def _load_settings(**data: Any) -> Settings:
        return Settings(**data)


def get_settings(**overrides: Any) -> Settings:
    return _load_settings(**overrides)


def resolve_loser_policy(value: str | None) -> LoserPolicy:
    """Return ``value`` normalized, or the configured default when ``None``."""
    if value is None:
        return settings.loser_policy
    normalized = value.strip().lower()
    if normalized not in LOSER_POLICIES:
        raise ValueError(f"invalid loser policy: {value!r}")
    return normalized  # type: ignore[return-value]


def resolve_wait_timeout(value: float | None) -> float:
    if value is None:
        return settings.wait_timeout_s
    timeout = float(value)
    # Event.wait overflows on inf and huge values; nan never compares in range
    if not math.isfinite(timeout) or not 0.0 <= timeout <= MAX_WAIT_TIMEOUT_S:
        raise ValueError(
            f"wait timeout must be between 0 and {MAX_WAIT_TIMEOUT_S:g} seconds, got {value!r}"
        )
    return timeout


settings = get_settings()
