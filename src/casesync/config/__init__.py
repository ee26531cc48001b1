"""Application configuration helpers."""

from __future__ import annotations

from .env import env_flag, env_int, env_list, optional_env_var, require_env_var, require_env_vars
from .errors import ConfigurationError, InvalidConfigurationError, MissingConfigurationError
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy, StatusRetryPolicy
from .matching import ClassifierConfig, MatchingConfig, get_matching_config
from .storage import (
    DatabaseConfig,
    StorageConfig,
    get_database_config,
    get_storage_config,
    normalize_database_uri,
)
from .sync import SyncConfig, get_sync_config
from .ticketing import TicketingConfig, get_ticketing_config

__all__ = [
    "ClassifierConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "InvalidConfigurationError",
    "MatchingConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "StatusRetryPolicy",
    "StorageConfig",
    "SyncConfig",
    "TicketingConfig",
    "env_flag",
    "env_int",
    "env_list",
    "get_database_config",
    "get_matching_config",
    "get_storage_config",
    "get_sync_config",
    "get_ticketing_config",
    "normalize_database_uri",
    "optional_env_var",
    "require_env_var",
    "require_env_vars",
]
