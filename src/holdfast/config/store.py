"""Remote store connection settings."""

from __future__ import annotations

from dataclasses import dataclass

from .env import require_env_vars
from .http_resilience import RateLimit, ResilienceConfig

STORE_TIMEOUT_SECONDS = 15.0
STORE_RATE_LIMIT = RateLimit(max_calls=20, per_seconds=1.0)


@dataclass(frozen=True)
class StoreConfig:
    """Holds the remote store endpoint and service credentials."""

    base_url: str
    service_key: str
    resilience: ResilienceConfig

    @property
    def auth_headers(self) -> dict[str, str]:
        return {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
        }


def get_store_config(*, resilience: ResilienceConfig | None = None) -> StoreConfig:
    values = require_env_vars(("REMOTE_STORE_URL", "REMOTE_STORE_SERVICE_KEY"))
    base_url = values["REMOTE_STORE_URL"].rstrip("/")
    return StoreConfig(
        base_url=base_url,
        service_key=values["REMOTE_STORE_SERVICE_KEY"],
        resilience=resilience
        or ResilienceConfig(
            name="remote-store",
            base_url=base_url,
            timeout_seconds=STORE_TIMEOUT_SECONDS,
            ratelimit=STORE_RATE_LIMIT,
        ),
    )
