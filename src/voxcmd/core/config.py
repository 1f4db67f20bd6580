"""Frozen configuration dataclass for the dispatch engine."""

from dataclasses import dataclass, fields
from typing import Any

from voxcmd.constants import (
    DEFAULT_CONTEXT_CAPACITY,
    DEFAULT_CONTEXT_WINDOW,
    DEFAULT_HANDLER_TIMEOUT,
    DEFAULT_LOCALE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MIN_CONFIDENCE,
    DEFAULT_MODEL_CONFIDENCE,
    DEFAULT_OPTIONAL_SLOT_PENALTY,
    DEFAULT_PATTERN_CONFIDENCE,
    DEFAULT_PENDING_TTL,
    DEFAULT_RESOLVER_TIMEOUT,
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_SESSION_TTL,
)


@dataclass(frozen=True, slots=True)
class DispatchConfig:
    """Thresholds, timeouts and sizes used across the pipeline.

    None of these are contractual; they are tuning defaults.
    """

    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    pattern_confidence: float = DEFAULT_PATTERN_CONFIDENCE
    optional_slot_penalty: float = DEFAULT_OPTIONAL_SLOT_PENALTY
    default_model_confidence: float = DEFAULT_MODEL_CONFIDENCE
    handler_timeout: float = DEFAULT_HANDLER_TIMEOUT
    resolver_timeout: float = DEFAULT_RESOLVER_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_backoff: float = DEFAULT_RETRY_BACKOFF
    context_capacity: int = DEFAULT_CONTEXT_CAPACITY
    session_ttl: float = DEFAULT_SESSION_TTL
    context_window: int = DEFAULT_CONTEXT_WINDOW
    pending_ttl: float = DEFAULT_PENDING_TTL
    locale: str = DEFAULT_LOCALE

    def __post_init__(self) -> None:
        for name in (
            "min_confidence",
            "pattern_confidence",
            "optional_slot_penalty",
            "default_model_confidence",
        ):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ValueError(f"{name} must be within [0, 1]")
        if self.context_capacity < 1:
            raise ValueError("context_capacity must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if self.handler_timeout <= 0 or self.resolver_timeout <= 0:
            raise ValueError("timeouts must be positive")


def _filter_fields(cls: type, raw: dict[str, Any]) -> dict[str, Any]:
    """Keep only keys that match dataclass fields."""
    valid = {f.name for f in fields(cls)}
    return {k: v for k, v in raw.items() if k in valid}


def make_dispatch_config(raw: dict[str, Any] | None) -> DispatchConfig:
    """Factory: build a DispatchConfig from a (possibly partial) dict.

    Unknown keys are ignored so that config files can carry settings for
    newer versions without breaking older ones.
    """
    if not raw:
        return DispatchConfig()
    return DispatchConfig(**_filter_fields(DispatchConfig, raw))
