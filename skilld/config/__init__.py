"""Configuration module for skilld."""

from .settings import (
    CacheConfig,
    FeaturesConfig,
    GitHubConfig,
    IndexConfig,
    Settings,
    SyncConfig,
    load_settings,
)

__all__ = [
    "Settings",
    "CacheConfig",
    "FeaturesConfig",
    "SyncConfig",
    "IndexConfig",
    "GitHubConfig",
    "load_settings",
]
