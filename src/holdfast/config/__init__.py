"""Application configuration helpers."""

from __future__ import annotations

from .deletion import (
    DEFAULT_DEPENDENTS,
    DeletionConfig,
    DependentEntity,
    DependentKey,
    OwnedEntitySpec,
    get_deletion_config,
)
from .env import optional_int_env, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import RateLimit, ResilienceConfig
from .ingest import EventTableSpec, IngestConfig, get_ingest_config
from .retry import NO_DELAY, RetryConfig, get_retry_config
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config
from .store import StoreConfig, get_store_config

__all__ = [
    "DEFAULT_DEPENDENTS",
    "NO_DELAY",
    "ConfigurationError",
    "DatabaseConfig",
    "DeletionConfig",
    "DependentEntity",
    "DependentKey",
    "EventTableSpec",
    "IngestConfig",
    "MissingConfigurationError",
    "OwnedEntitySpec",
    "RateLimit",
    "ResilienceConfig",
    "RetryConfig",
    "StorageConfig",
    "StoreConfig",
    "get_database_config",
    "get_deletion_config",
    "get_ingest_config",
    "get_retry_config",
    "get_storage_config",
    "get_store_config",
    "optional_int_env",
    "require_env_vars",
]
