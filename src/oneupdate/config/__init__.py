"""Configuration utilities for OneUpdate."""

from .loader import (
    Config,
    GitHubSettings,
    HttpSettings,
    RegistrySettings,
    SiteSettings,
    load_config,
)

__all__ = [
    "Config",
    "GitHubSettings",
    "HttpSettings",
    "RegistrySettings",
    "SiteSettings",
    "load_config",
]
