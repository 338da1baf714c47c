"""Decide which sites an operation applies to, and with which version."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace

from oneupdate.core.errors import ActionValidationError
from oneupdate.core.models import (
    ActionRequest,
    FleetPluginRecord,
    Operation,
    PluginState,
    PluginVisibility,
    Site,
    SiteStatus,
)
from oneupdate.fleet.versions import VersionOption, latest_stable, stable_versions


@dataclass(slots=True)
class ResolvedAction:
    """A validated request bound to concrete target sites."""

    request: ActionRequest
    targets: list[Site] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    record: FleetPluginRecord | None = None

    @property
    def is_noop(self) -> bool:
        return not self.targets

    @property
    def operation(self) -> Operation:
        return self.request.operation


@dataclass(slots=True)
class BulkItem:
    slug: str
    version: str
    sites: list[str]
    plugin_type: PluginVisibility = PluginVisibility.PUBLIC
    plugin_path_info: str = ""


def _state(status: SiteStatus | None) -> PluginState:
    return status.state if status is not None else PluginState.NOT_PRESENT


def is_eligible(operation: Operation, status: SiteStatus | None) -> bool:
    """Per-site eligibility. Activation flags are read directly, since an update can be
    pending on an active or an inactive copy."""

    state = _state(status)
    present = state is not PluginState.NOT_PRESENT
    if operation is Operation.ACTIVATE:
        return present and not status.is_active
    if operation is Operation.DEACTIVATE:
        return present and status.is_active
    if operation is Operation.UPDATE:
        return state is PluginState.PRESENT_WITH_UPDATE
    if operation is Operation.INSTALL:
        return not present
    return present


class ActionResolver:
    def eligible_sites(
        self,
        record: FleetPluginRecord | None,
        operation: Operation,
        sites: Sequence[Site],
    ) -> list[Site]:
        statuses: Mapping[str, SiteStatus] = record.sites if record is not None else {}
        return [site for site in sites if is_eligible(operation, statuses.get(site.url))]

    def version_options(self, record: FleetPluginRecord | None) -> list[VersionOption]:
        if record is None:
            return []
        return stable_versions(record.available_versions)

    def default_version(self, record: FleetPluginRecord | None, operation: Operation) -> str:
        if record is None or operation not in (Operation.UPDATE, Operation.INSTALL):
            return ""
        newest = latest_stable(record.available_versions)
        if newest:
            return newest
        update_info = record.plugin_info.get("update_info") or {}
        return str(update_info.get("new_version") or record.plugin_info.get("version") or "")

    def resolve(
        self,
        record: FleetPluginRecord | None,
        request: ActionRequest,
        sites: Sequence[Site],
    ) -> ResolvedAction:
        """Bind `request` to eligible targets among `sites` (all registered sites).

        Requested sites that are unknown or ineligible end up in `skipped` with a reason; when
        nothing remains the result is a no-op.
        """

        operation = request.operation
        if record is None and operation is not Operation.INSTALL:
            raise ActionValidationError(
                f"Plugin {request.slug!r} is not installed on any brand site.",
                code="plugin_not_found",
            )
        if operation is Operation.INSTALL and request.plugin_type is PluginVisibility.PRIVATE:
            raise ActionValidationError(
                "Only public plugins can be installed; use apply-private-plugins instead.",
                code="install_requires_public",
            )

        version = request.version or self.default_version(record, operation)
        if operation.requires_version and not version:
            raise ActionValidationError(
                f"A version is required for {operation.value}.", code="missing_version"
            )
        if (
            operation is Operation.CHANGE_VERSION
            and request.plugin_type is PluginVisibility.PUBLIC
            and record is not None
            and record.available_versions
        ):
            offered = {option.value for option in self.version_options(record)}
            if version not in offered:
                raise ActionValidationError(
                    f"Version {version} is not one of the offered releases: {sorted(offered)}",
                    code="invalid_version",
                )
        if operation.changes_code and request.plugin_type is PluginVisibility.PRIVATE:
            if operation is not Operation.REMOVE and not request.zip_url:
                raise ActionValidationError(
                    "Private plugins need an uploaded archive URL.", code="missing_zip_url"
                )

        eligible = {site.url for site in self.eligible_sites(record, operation, sites)}
        targets: list[Site] = []
        skipped: dict[str, str] = {}
        for key in request.sites:
            site = next((candidate for candidate in sites if candidate.matches(key)), None)
            if site is None:
                skipped[key] = "unknown site"
            elif site.url not in eligible:
                skipped[site.url] = f"not eligible for {operation.value}"
            elif site not in targets:
                targets.append(site)

        plugin_path = request.plugin_path_info or (record.plugin_path_info if record else "")
        resolved_request = replace(request, version=version, plugin_path_info=plugin_path)
        return ResolvedAction(
            request=resolved_request,
            targets=targets,
            skipped=skipped,
            record=record,
        )

    def plan_bulk_update(
        self,
        fleet: Mapping[str, FleetPluginRecord],
        sites: Sequence[Site],
        slugs: Sequence[str] | None = None,
    ) -> list[BulkItem]:
        """One item per public plugin with pending updates, targeting the sites that have them."""

        items: list[BulkItem] = []
        for slug, record in sorted(fleet.items()):
            if slugs is not None and slug not in slugs:
                continue
            if not record.is_public or not record.update_available_sites:
                continue
            version = self.default_version(record, Operation.UPDATE)
            targets = self.eligible_sites(record, Operation.UPDATE, sites)
            if version and targets:
                items.append(
                    BulkItem(
                        slug=slug,
                        version=version,
                        sites=[site.url for site in targets],
                        plugin_path_info=record.plugin_path_info,
                    )
                )
        return items

    def filter_bulk_items(
        self,
        items: Sequence[BulkItem],
        fleet: Mapping[str, FleetPluginRecord],
        sites: Sequence[Site],
    ) -> tuple[list[BulkItem], dict[str, str]]:
        """Narrow requested public items to the sites reporting a pending update.

        Private items pass through untouched; the dispatcher skips them itself.
        """

        kept: list[BulkItem] = []
        skipped: dict[str, str] = {}
        for item in items:
            if item.plugin_type is not PluginVisibility.PUBLIC:
                kept.append(item)
                continue
            record = fleet.get(item.slug)
            eligible = {site.url for site in self.eligible_sites(record, Operation.UPDATE, sites)}
            targets: list[str] = []
            for key in item.sites:
                site = next((candidate for candidate in sites if candidate.matches(key)), None)
                if site is None:
                    skipped[f"{item.slug}@{key}"] = "unknown site"
                elif site.url not in eligible:
                    skipped[f"{item.slug}@{site.url}"] = "no update available"
                elif site.url not in targets:
                    targets.append(site.url)
            if targets:
                plugin_path = item.plugin_path_info or (record.plugin_path_info if record else "")
                kept.append(replace(item, sites=targets, plugin_path_info=plugin_path))
        return kept, skipped
