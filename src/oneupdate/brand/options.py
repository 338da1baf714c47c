"""Brand-site handler for the governing site's activate/deactivate/remove requests."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from oneupdate.brand.hooks import PluginLifecycleHooks
from oneupdate.brand.host import PluginHost
from oneupdate.core.errors import ActionValidationError
from oneupdate.storage.db import Database

MANAGED_OPTION = "oneupdate_plugins_options"
OPTION_OPERATIONS = frozenset({"activate", "deactivate", "remove", "add_update"})


class PluginOptionsService:
    def __init__(
        self,
        database: Database,
        host: PluginHost,
        hooks: PluginLifecycleHooks,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.database = database
        self.host = host
        self.hooks = hooks
        self.logger = logger or logging.getLogger(__name__)

    def managed_plugins(self) -> dict[str, str]:
        value = self.database.get_option(MANAGED_OPTION, {})
        return dict(value) if isinstance(value, dict) else {}

    async def apply(self, plugins: Sequence[str], operation: str = "add_update") -> dict[str, Any]:
        """Apply `operation` to the local install and the managed-plugins record.

        `add_update` only refreshes the cached activation state: the code change itself
        arrives through the pull request.
        """

        if operation not in OPTION_OPERATIONS:
            raise ActionValidationError(
                f"Invalid plugin operation: {operation!r}", code="invalid_options"
            )
        paths = [path for path in plugins if isinstance(path, str) and path]
        managed = self.managed_plugins()

        for path in paths:
            if operation in ("deactivate", "remove"):
                if await self.host.is_active(path):
                    await self.host.deactivate(path)
                managed.pop(path, None)
            elif operation == "activate":
                if not await self.host.is_active(path):
                    await self.host.activate(path)
                managed.setdefault(path, path)

        self.database.update_option(MANAGED_OPTION, managed)

        for path in paths:
            if operation == "activate":
                await self.hooks.plugin_activated(path)
            elif operation in ("deactivate", "remove"):
                await self.hooks.plugin_deactivated(path)
            else:
                await self.hooks.plugin_state_changed(path)

        self.logger.info("Applied %s to %d plugin(s)", operation, len(paths))
        return {"success": True, "plugin_type": operation, "plugins": paths}
