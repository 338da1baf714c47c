"""Merge per-site plugin inventories into one plugin-keyed fleet view."""

from __future__ import annotations

import asyncio
import html
import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from oneupdate.clients.site import RemoteSiteClient
from oneupdate.core.errors import OneUpdateError
from oneupdate.core.models import (
    FleetPluginRecord,
    PluginLocalRecord,
    PluginMap,
    Site,
    SiteStatus,
)
from oneupdate.fleet.shared import SharedPluginLedger
from oneupdate.fleet.versions import sort_versions
from oneupdate.sites.registry import SiteRegistry

ICON_PRIORITY = ("2x", "1x", "svg", "default")
DESCRIPTION_LIMIT = 200
_TAG = re.compile(r"<[^>]*>")


@dataclass(slots=True)
class SiteInventory:
    site: Site
    plugins: PluginMap = field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FleetAggregator:
    """Fetches every brand site's inventory concurrently and merges the results."""

    def __init__(
        self,
        registry: SiteRegistry,
        client: RemoteSiteClient,
        *,
        ledger: SharedPluginLedger | None = None,
        max_concurrency: int = 8,
        logger: logging.Logger | None = None,
    ) -> None:
        self.registry = registry
        self.client = client
        self.ledger = ledger
        self.max_concurrency = max_concurrency
        self.logger = logger or logging.getLogger(__name__)

    async def collect(self, sites: Sequence[Site] | None = None) -> dict[str, SiteInventory]:
        """Fetch inventories; a failing site yields an empty inventory with `error` set."""

        targets = list(sites) if sites is not None else self.registry.sites()
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def fetch(site: Site) -> SiteInventory:
            async with semaphore:
                try:
                    plugins = await self.client.fetch_inventory(site)
                except OneUpdateError as exc:
                    self.logger.warning("Inventory fetch failed for %s: %s", site.url, exc)
                    return SiteInventory(site=site, error=str(exc))
            return SiteInventory(site=site, plugins=plugins)

        inventories = await asyncio.gather(*(fetch(site) for site in targets))
        return {inventory.site.url: inventory for inventory in inventories}

    async def build(self) -> tuple[dict[str, FleetPluginRecord], dict[str, SiteInventory]]:
        sites = self.registry.sites()
        inventories = await self.collect(sites)
        shared = self.ledger.snapshot() if self.ledger is not None else {}
        return merge(inventories, sites, shared), inventories


def merge(
    inventories: Mapping[str, SiteInventory],
    sites: Iterable[Site],
    shared: Mapping[str, Mapping[str, Any]] | None = None,
) -> dict[str, FleetPluginRecord]:
    """Combine inventories into `{slug: FleetPluginRecord}`.

    Sites are visited in registration order (`registered_at`, then URL) whatever order they are
    given in, so the result is identical for any permutation of `sites` or `inventories`.
    A plugin appears only while at least one registered site references it.
    """

    shared = shared or {}
    unique = {site.url: site for site in sites}
    ordered = sorted(unique.values(), key=lambda site: site.precedence_key)
    by_url = {inventory.site.url: inventory for inventory in inventories.values()}

    slugs: set[str] = set(shared)
    for inventory in by_url.values():
        slugs.update(record.slug for record in inventory.plugins.values() if record.slug)

    fleet: dict[str, FleetPluginRecord] = {}
    for slug in sorted(slugs):
        record = _merge_plugin(slug, ordered, by_url, shared.get(slug) or {})
        if record is not None:
            fleet[slug] = record
    return fleet


def _find(plugins: PluginMap, slug: str) -> PluginLocalRecord | None:
    record = plugins.get(slug)
    if record is not None and record.slug == slug:
        return record
    for candidate in plugins.values():
        if candidate.slug == slug:
            return candidate
    return None


def _merge_plugin(
    slug: str,
    sites: Sequence[Site],
    inventories: Mapping[str, SiteInventory],
    shared_entry: Mapping[str, Any],
) -> FleetPluginRecord | None:
    default_path = f"{slug}/{slug}.php"
    shared_sites = shared_entry.get("sites") or {}
    statuses: dict[str, SiteStatus] = {}
    active = updates = 0

    for site in sites:
        inventory = inventories.get(site.url)
        local = _find(inventory.plugins, slug) if inventory is not None else None
        if local is not None:
            has_update = local.is_update_available
            statuses[site.url] = SiteStatus(
                plugin_path=local.plugin_path_info or default_path,
                version=local.version or "0.0.0",
                is_active=local.is_active,
                is_update_available=has_update,
                update_info=local.update if has_update else None,
                site_name=site.name,
                site_id=site.id,
                site_url=site.url,
                plugin_data=local,
            )
            active += local.is_active
            updates += has_update
        elif site.id in shared_sites:
            statuses[site.url] = SiteStatus(
                plugin_path=shared_entry.get("plugin_path_info") or default_path,
                version=str(shared_entry.get("version") or "0.0.0"),
                is_active=False,
                is_update_available=False,
                site_name=site.name,
                site_id=site.id,
                site_url=site.url,
            )

    if not statuses:
        return None

    samples = [status.plugin_data for status in statuses.values() if status.plugin_data]
    plugin_info = _display_metadata(slug, samples, shared_entry, active, updates)
    return FleetPluginRecord(
        slug=slug,
        plugin_info=plugin_info,
        sites=statuses,
        total_sites=len(statuses),
        active_sites=active,
        update_available_sites=updates,
        plugin_path_info=plugin_info["plugin_path_info"],
    )


def _registry_data(
    samples: Sequence[PluginLocalRecord], shared_entry: Mapping[str, Any]
) -> dict[str, Any]:
    shared_info = shared_entry.get("plugin_info")
    if shared_entry.get("is_public") is True and isinstance(shared_info, Mapping):
        if "versions" in shared_info:
            return dict(shared_info)
    for sample in samples:
        if sample.plugin_info:
            return dict(sample.plugin_info)
    return dict(shared_info) if isinstance(shared_info, Mapping) else {}


def _first(values: Iterable[Any]) -> Any:
    for value in values:
        if value:
            return value
    return None


def _strip_tags(value: Any) -> str:
    return _TAG.sub("", value) if isinstance(value, str) else ""


def _pick_icon(*sources: Any) -> str | None:
    for icons in sources:
        if not isinstance(icons, Mapping):
            continue
        for key in ICON_PRIORITY:
            if icons.get(key):
                return str(icons[key])
    return None


def _display_metadata(
    slug: str,
    samples: Sequence[PluginLocalRecord],
    shared_entry: Mapping[str, Any],
    active: int,
    updates: int,
) -> dict[str, Any]:
    info = _registry_data(samples, shared_entry)
    sections = info.get("sections") if isinstance(info.get("sections"), Mapping) else {}

    registry_description = _strip_tags(sections.get("description"))[:DESCRIPTION_LIMIT]
    description = (
        _first(sample.description for sample in samples)
        or (f"{registry_description}..." if registry_description else "")
        or info.get("short_description")
        or "No description available."
    )
    is_public = samples[0].is_public if samples else bool(info.get("download_link"))
    versions = info.get("versions") if isinstance(info.get("versions"), Mapping) else {}
    sample_info = _first(sample.plugin_info for sample in samples) or {}
    sample_update = _first(sample.update for sample in samples) or {}
    name = _first(sample.name for sample in samples) or info.get("name") or slug

    return {
        "name": html.unescape(name),
        "description": html.unescape(description),
        "author": html.unescape(
            _first(sample.author for sample in samples)
            or _strip_tags(info.get("author"))
            or "Unknown"
        ),
        "version": str(
            shared_entry.get("version")
            or _first(sample.version for sample in samples)
            or info.get("version")
            or "0.0.0"
        ),
        "plugin_uri": _first(sample.plugin_uri for sample in samples)
        or info.get("homepage")
        or "",
        "requires": info.get("requires") or _first(sample.requires_wp for sample in samples) or "",
        "requires_php": info.get("requires_php")
        or _first(sample.requires_php for sample in samples)
        or "",
        "tested": info.get("tested") or "",
        "is_public": bool(is_public),
        "plugin_slug": slug,
        "is_active": active > 0,
        "is_update_available": updates > 0,
        "update_info": {"new_version": info.get("version")} if updates else None,
        "last_updated": shared_entry.get("updated_at") or info.get("last_updated"),
        "created_at": shared_entry.get("created_at") or info.get("added"),
        "rating": info.get("rating") or 0,
        "num_ratings": info.get("num_ratings") or 0,
        "downloaded": info.get("downloaded") or 0,
        "icon": _pick_icon(
            info.get("icons"),
            sample_info.get("icons") if isinstance(sample_info, Mapping) else None,
            sample_update.get("icons") if isinstance(sample_update, Mapping) else None,
        ),
        "homepage": info.get("homepage") or "",
        "short_description": html.unescape(info.get("short_description") or ""),
        "tags": info.get("tags") or {},
        "available_versions": sort_versions(versions) if is_public else [],
        "plugin_path_info": _first(sample.plugin_path_info for sample in samples)
        or shared_entry.get("plugin_path_info")
        or f"{slug}/{slug}.php",
    }
