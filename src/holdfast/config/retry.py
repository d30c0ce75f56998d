"""Retry policy for remote store operations."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_int_env
from .errors import ConfigurationError

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_SECONDS = 0.5


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Backoff settings handed to the retrying executor.

    ``max_retries`` counts retries after the first call, so a retryable failure
    is attempted at most ``max_retries + 1`` times. The delay before retry ``n``
    is ``base_delay_seconds * 2 ** (n - 1)``.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be non-negative")
        if self.base_delay_seconds < 0:
            raise ConfigurationError("base_delay_seconds must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Return the sleep before retrying after failed ``attempt`` (1-based)."""

        return self.base_delay_seconds * (2 ** (attempt - 1))


NO_DELAY = RetryConfig(base_delay_seconds=0.0)


def get_retry_config() -> RetryConfig:
    max_retries = optional_int_env("HOLDFAST_MAX_RETRIES")
    base_delay_ms = optional_int_env("HOLDFAST_RETRY_BASE_DELAY_MS")
    return RetryConfig(
        max_retries=DEFAULT_MAX_RETRIES if max_retries is None else max_retries,
        base_delay_seconds=(
            DEFAULT_BASE_DELAY_SECONDS if base_delay_ms is None else base_delay_ms / 1000
        ),
    )
