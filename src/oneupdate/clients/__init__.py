"""Outbound HTTP clients."""

from .github import GitHubClient
from .site import RemoteSiteClient
from .wporg import PluginRegistryClient

__all__ = ["GitHubClient", "PluginRegistryClient", "RemoteSiteClient"]
