"""Governing-site orchestration: fleet view, resolution, dispatch and notices."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from oneupdate.core.errors import ActionValidationError, ConfigurationError
from oneupdate.core.models import ActionReport, ActionRequest, FleetPluginRecord, PluginVisibility
from oneupdate.fleet.aggregator import FleetAggregator, SiteInventory
from oneupdate.fleet.dispatcher import ExecutionDispatcher
from oneupdate.fleet.resolver import ActionResolver, BulkItem, ResolvedAction
from oneupdate.reports.notice import format_notice, save_notice
from oneupdate.sites.registry import SiteRegistry
from oneupdate.storage import Database


@dataclass(slots=True)
class FleetView:
    plugins: dict[str, FleetPluginRecord]
    inventories: dict[str, SiteInventory]

    @property
    def unreachable(self) -> dict[str, str]:
        return {url: inv.error for url, inv in self.inventories.items() if inv.error is not None}

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "plugins": {slug: record.to_dict() for slug, record in self.plugins.items()},
            "sites_urls": sorted(self.inventories),
            "unreachable": self.unreachable,
        }


@dataclass(slots=True)
class FleetOrchestrator:
    """Coordinate one request end to end: read the fleet, resolve, dispatch, summarise."""

    registry: SiteRegistry
    aggregator: FleetAggregator
    resolver: ActionResolver
    dispatcher: ExecutionDispatcher
    database: Database
    logger: logging.Logger

    async def fleet_view(self) -> FleetView:
        self._require_governing()
        plugins, inventories = await self.aggregator.build()
        self.logger.info(
            "Fleet view: %d plugin(s) across %d site(s)", len(plugins), len(inventories)
        )
        return FleetView(plugins=plugins, inventories=inventories)

    async def plan(self, request: ActionRequest) -> ResolvedAction:
        view = await self.fleet_view()
        return self.resolver.resolve(view.plugins.get(request.slug), request, self.registry.sites())

    async def execute(self, request: ActionRequest) -> ActionReport:
        resolved = await self.plan(request)
        report = await self.dispatcher.execute(resolved)
        name = resolved.record.plugin_info.get("name") if resolved.record else None
        return self._finish(report, name)

    async def execute_payload(self, payload: Mapping[str, Any]) -> ActionReport:
        return await self.execute(ActionRequest.from_payload(payload))

    async def bulk_update(self, items: Sequence[BulkItem] | None = None) -> ActionReport:
        """Dispatch updates to sites with a pending update.

        Without explicit items every pending public update is planned; explicit items are
        narrowed to their eligible sites and the rest is reported as skipped.
        """

        sites = self.registry.sites()
        view = await self.fleet_view()
        skipped: dict[str, str] = {}
        if items is None:
            items = self.resolver.plan_bulk_update(view.plugins, sites)
        else:
            items, skipped = self.resolver.filter_bulk_items(items, view.plugins, sites)
        report = await self.dispatcher.bulk_update(items, sites, skipped=skipped)
        return self._finish(report, "Bulk update")

    async def apply_private(
        self, site_keys: Sequence[str], zip_urls: Sequence[str]
    ) -> ActionReport:
        self._require_governing()
        if not zip_urls:
            raise ActionValidationError("No plugin archives provided.", code="invalid_plugins")
        sites = [self.registry.require(key) for key in site_keys]
        if not sites:
            raise ActionValidationError("No target sites provided.", code="invalid_site_data")
        report = await self.dispatcher.apply_private(sites, zip_urls)
        return self._finish(report, "Private plugins")

    def _finish(self, report: ActionReport, name: str | None) -> ActionReport:
        report.notice = format_notice(report, name)
        save_notice(self.database, report)
        return report

    def _require_governing(self) -> None:
        if not self.registry.is_governing_site():
            raise ConfigurationError(
                "This installation is not configured as the governing site.",
                code="not_governing_site",
            )


def parse_bulk_items(payload: Mapping[str, Any]) -> list[BulkItem]:
    raw_items = payload.get("plugins")
    if not isinstance(raw_items, list) or not raw_items:
        raise ActionValidationError("Invalid plugins provided.", code="invalid_plugins")
    items: list[BulkItem] = []
    for raw in raw_items:
        if not isinstance(raw, Mapping) or not raw.get("slug"):
            raise ActionValidationError("Invalid plugins provided.", code="invalid_plugins")
        raw_type = str(raw.get("plugin_type") or "public").lower()
        if raw_type != "private" and not raw.get("version"):
            raise ActionValidationError(
                f"Missing version for {raw['slug']}.", code="missing_version"
            )
        items.append(
            BulkItem(
                slug=str(raw["slug"]),
                version=str(raw.get("version") or ""),
                sites=[str(site) for site in raw.get("sites") or []],
                plugin_type=(
                    PluginVisibility.PRIVATE if raw_type == "private" else PluginVisibility.PUBLIC
                ),
                plugin_path_info=str(raw.get("plugin_path_info") or ""),
            )
        )
    return items
