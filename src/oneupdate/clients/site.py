"""Authenticated calls from the governing site to a brand site's REST endpoints."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from oneupdate.core.errors import (
    ConfigurationError,
    RemoteResponseError,
    RemoteUnreachableError,
)
from oneupdate.core.models import PluginLocalRecord, PluginMap, Site

TOKEN_HEADER = "X-OneUpdate-Plugins-Token"


def decode_plugin_map(payload: Any) -> PluginMap:
    """Parse a `{slug: record}` mapping. PHP encodes an empty map as `[]`."""

    if isinstance(payload, list):
        return {}
    if not isinstance(payload, Mapping):
        raise RemoteResponseError("Plugin inventory is not a mapping.")
    plugins: PluginMap = {}
    for key, raw in payload.items():
        if not isinstance(raw, Mapping):
            continue
        record = PluginLocalRecord.from_dict(raw, slug=str(key))
        plugins[record.slug] = record
    return plugins


@dataclass(slots=True)
class RemoteSiteClient:
    """Talks to one brand site at a time. Every failure is raised as a `RemoteError`."""

    logger: logging.Logger
    timeout: float = 30.0
    health_timeout: float = 5.0
    transport: httpx.AsyncBaseTransport | None = None

    async def fetch_inventory(self, site: Site) -> PluginMap:
        """Return the site's cached plugin map from `get_plugins`."""

        body = await self._request(site, "GET", "get_plugins", timeout=self.timeout)
        plugins = body.get("plugins", {}) if isinstance(body, Mapping) else body
        inventory = decode_plugin_map(plugins)
        self.logger.debug("Fetched %d plugin(s) from %s", len(inventory), site.url)
        return inventory

    async def mutate_options(
        self,
        site: Site,
        plugins: Sequence[str],
        operation: str,
    ) -> dict[str, Any]:
        """Ask the site to activate/deactivate/forget plugins; success must be explicit."""

        payload = {"options": {"plugins": list(plugins), "plugin_type": operation}}
        body = await self._request(
            site,
            "POST",
            "oneupdate-plugins-options",
            timeout=self.timeout,
            json=payload,
        )
        if not isinstance(body, Mapping) or body.get("success") is not True:
            raise RemoteResponseError(
                f"{site.url} did not confirm {operation} of {', '.join(plugins)}",
                code="options_update_failed",
            )
        return dict(body)

    async def health_check(self, site: Site) -> bool:
        try:
            await self._request(site, "GET", "health-check", timeout=self.health_timeout)
        except (RemoteUnreachableError, RemoteResponseError) as exc:
            self.logger.info("Health check failed for %s: %s", site.url, exc)
            return False
        return True

    async def _request(
        self,
        site: Site,
        method: str,
        route: str,
        *,
        timeout: float,
        json: Any = None,
    ) -> Any:
        if not site.token:
            raise ConfigurationError(f"No API key stored for {site.url}", code="missing_site_token")
        url = site.endpoint(route)
        headers = {
            TOKEN_HEADER: site.token,
            "Accept": "application/json",
            "Cache-Control": "no-cache",
        }
        try:
            async with httpx.AsyncClient(
                timeout=timeout, follow_redirects=True, transport=self.transport
            ) as client:
                response = await client.request(method, url, headers=headers, json=json)
        except httpx.TimeoutException as exc:
            raise RemoteUnreachableError(f"Timeout calling {url}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise RemoteUnreachableError(f"HTTP error calling {url}: {exc}") from exc

        if response.status_code != 200:
            raise RemoteResponseError(
                f"HTTP {response.status_code} from {url}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteResponseError(f"Malformed JSON from {url}") from exc
