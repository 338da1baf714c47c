"""Plugin lifecycle events that keep the snapshot cache coherent."""

from __future__ import annotations

import logging
from collections.abc import Callable

from oneupdate.brand.cache import PluginStateCache


class PluginLifecycleHooks:
    """Translate WordPress plugin events into cache patches or invalidations.

    Hooks do nothing on a governing site, which never serves its own inventory.
    """

    def __init__(
        self,
        cache: PluginStateCache,
        *,
        is_governing: Callable[[], bool] = lambda: False,
        logger: logging.Logger | None = None,
    ) -> None:
        self.cache = cache
        self.is_governing = is_governing
        self.logger = logger or logging.getLogger(__name__)

    @property
    def enabled(self) -> bool:
        return not self.is_governing()

    async def plugin_activated(self, path: str) -> None:
        if self.enabled:
            await self.cache.patch_single(path, is_activation=True)

    async def plugin_deactivated(self, path: str) -> None:
        if self.enabled:
            await self.cache.patch_single(path, is_deactivation=True)

    async def plugin_state_changed(self, path: str) -> None:
        """Re-read the live activation state of `path`."""

        if self.enabled:
            await self.cache.patch_single(path)

    async def plugin_deleted(self, path: str) -> None:
        if self.enabled:
            self.logger.debug("%s deleted", path)
            await self.cache.invalidate()

    async def upgrade_completed(self, action: str, kind: str) -> None:
        if self.enabled and action == "update" and kind == "plugin":
            await self.cache.invalidate()

    async def dispatch(
        self, event: str, *, plugin: str = "", action: str = "", kind: str = ""
    ) -> bool:
        """Route a named event (as forwarded by the site's webhook). Returns False if unknown."""

        if event == "activated":
            await self.plugin_activated(plugin)
        elif event == "deactivated":
            await self.plugin_deactivated(plugin)
        elif event == "deleted":
            await self.plugin_deleted(plugin)
        elif event == "upgraded":
            await self.upgrade_completed(action, kind)
        else:
            return False
        return True
