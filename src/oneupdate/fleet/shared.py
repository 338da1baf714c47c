"""Historical record of which plugins were rolled out to which brand sites."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from oneupdate.storage.db import Database, format_timestamp

SHARED_PLUGINS_OPTION = "oneupdate_shared_plugins"


class SharedPluginLedger:
    """Remembers successful installs/updates so a site that fails to report still shows them.

    Stored shape: `{slug: {sites: {site_id: version}, version, plugin_path_info, is_public,
    plugin_info, created_at, updated_at}}`.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    def snapshot(self) -> dict[str, dict[str, Any]]:
        value = self.database.get_option(SHARED_PLUGINS_OPTION, {})
        return dict(value) if isinstance(value, Mapping) else {}

    def record(
        self,
        slug: str,
        site_ids: Iterable[str],
        *,
        version: str = "",
        plugin_path_info: str = "",
        plugin_info: Mapping[str, Any] | None = None,
    ) -> None:
        ids = list(site_ids)
        if not ids:
            return
        now = format_timestamp(self.database.now())

        def mutate(current: Any) -> dict[str, Any]:
            ledger = dict(current) if isinstance(current, Mapping) else {}
            entry = dict(ledger.get(slug) or {"created_at": now})
            sites = dict(entry.get("sites") or {})
            for site_id in ids:
                sites[site_id] = version
            entry["sites"] = sites
            entry["updated_at"] = now
            if version:
                entry["version"] = version
            if plugin_path_info:
                entry["plugin_path_info"] = plugin_path_info
            if plugin_info:
                entry["plugin_info"] = dict(plugin_info)
                entry["is_public"] = bool(plugin_info.get("is_public", True))
            ledger[slug] = entry
            return ledger

        self.database.modify_option(SHARED_PLUGINS_OPTION, mutate, default={})

    def forget(self, slug: str, site_ids: Iterable[str]) -> None:
        """Drop sites from a plugin's entry; the entry goes when no site remains."""

        ids = set(site_ids)

        def mutate(current: Any) -> dict[str, Any]:
            ledger = dict(current) if isinstance(current, Mapping) else {}
            entry = ledger.get(slug)
            if not isinstance(entry, Mapping):
                return ledger
            previous = entry.get("sites") or {}
            sites = {key: value for key, value in previous.items() if key not in ids}
            if sites:
                ledger[slug] = {**entry, "sites": sites}
            else:
                ledger.pop(slug, None)
            return ledger

        self.database.modify_option(SHARED_PLUGINS_OPTION, mutate, default={})
