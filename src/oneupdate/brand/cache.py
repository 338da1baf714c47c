"""Brand-site plugin snapshot cache.

The snapshot lives in the options table as a transient (`oneupdate_get_plugins`, one hour). All
read-modify-write cycles go through one `asyncio.Lock`, so a lifecycle patch cannot interleave
with a full rebuild and lose an update.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from pathlib import PurePosixPath
from typing import Any

from oneupdate.brand.host import InstalledPlugin, PluginHost
from oneupdate.clients.wporg import PluginRegistryClient
from oneupdate.core.errors import NoPluginsFoundError
from oneupdate.core.models import PluginLocalRecord, PluginMap
from oneupdate.fleet.versions import is_newer
from oneupdate.storage.db import Database

CACHE_OPTION = "oneupdate_get_plugins"
DEFAULT_TTL_SECONDS = 3600
HELLO_DOLLY_PATH = "hello.php"
HELLO_DOLLY_SLUG = "hello-dolly"


def derive_identifier(path: str) -> str:
    """`akismet/akismet.php -> akismet`; the bundled `hello.php` is `hello-dolly`."""

    if path == HELLO_DOLLY_PATH:
        return HELLO_DOLLY_SLUG
    pure = PurePosixPath(path)
    return pure.parts[0] if len(pure.parts) > 1 else pure.stem


class PluginStateCache:
    def __init__(
        self,
        database: Database,
        host: PluginHost,
        registry: PluginRegistryClient,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self.database = database
        self.host = host
        self.registry = registry
        self.ttl_seconds = ttl_seconds
        self.logger = logger or logging.getLogger(__name__)
        self._lock = asyncio.Lock()

    async def get_snapshot(self) -> PluginMap:
        """Return the cached map, rebuilding it when absent or expired."""

        async with self._lock:
            cached = self._load()
            if cached is not None:
                return cached
            return await self._rebuild()

    async def rebuild_full(self) -> PluginMap:
        async with self._lock:
            return await self._rebuild()

    async def patch_single(
        self,
        path: str,
        *,
        is_activation: bool = False,
        is_deactivation: bool = False,
    ) -> PluginMap:
        """Update one plugin's activation flag in place, leaving every other entry untouched."""

        async with self._lock:
            plugins = self._load()
            if plugins is None:
                plugins = await self._rebuild()
            slug = derive_identifier(path)
            record = plugins.get(slug)
            if record is None:
                self.logger.info("%s is not in the snapshot; rebuilding", path)
                return await self._rebuild()
            if is_activation:
                record.is_active = True
            elif is_deactivation:
                record.is_active = False
            else:
                record.is_active = await self.host.is_active(path)
            self._store(plugins)
            return plugins

    async def invalidate(self) -> None:
        async with self._lock:
            if self.database.delete_option(CACHE_OPTION):
                self.logger.info("Plugin snapshot invalidated")

    def peek(self) -> PluginMap | None:
        """Return the stored snapshot without rebuilding (None when absent or expired)."""

        return self._load()

    async def _rebuild(self) -> PluginMap:
        installed = await self.host.installed_plugins()
        if not installed:
            raise NoPluginsFoundError("No plugins found.", code="no_plugins")

        identifiers = [derive_identifier(plugin.path) for plugin in installed]
        lookups = await asyncio.gather(
            *(self.registry.plugin_info(identifier) for identifier in identifiers)
        )
        plugins: PluginMap = {}
        for plugin, identifier, info in zip(installed, identifiers, lookups):
            plugins[identifier] = _record_for(plugin, identifier, info)
        self._store(plugins)
        self.logger.info(
            "Rebuilt plugin snapshot: %d plugin(s), %d public",
            len(plugins),
            sum(1 for record in plugins.values() if record.is_public),
        )
        return plugins

    def _load(self) -> PluginMap | None:
        raw = self.database.get_option(CACHE_OPTION)
        if not isinstance(raw, Mapping):
            return None
        return {
            str(slug): PluginLocalRecord.from_dict(entry, slug=str(slug))
            for slug, entry in raw.items()
            if isinstance(entry, Mapping)
        }

    def _store(self, plugins: PluginMap) -> None:
        payload = {slug: record.to_dict() for slug, record in plugins.items()}
        self.database.update_option(CACHE_OPTION, payload, ttl_seconds=self.ttl_seconds)


def _record_for(
    plugin: InstalledPlugin,
    identifier: str,
    info: dict[str, Any] | None,
) -> PluginLocalRecord:
    registry_version = str(info.get("version") or "") if info else ""
    return PluginLocalRecord(
        slug=identifier,
        name=plugin.name,
        version=plugin.version,
        is_active=plugin.is_active,
        is_public=info is not None,
        is_update_available=info is not None and is_newer(registry_version, plugin.version),
        plugin_path_info=plugin.path,
        author=plugin.author,
        description=plugin.description,
        plugin_uri=plugin.plugin_uri,
        requires_wp=plugin.requires_wp,
        requires_php=plugin.requires_php,
        update=plugin.update,
        plugin_info=info,
    )
