"""wordpress.org plugin directory lookups."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx


@dataclass(slots=True)
class PluginRegistryClient:
    """Looks up public plugin metadata. Never raises and never retries."""

    logger: logging.Logger
    api_base: str = "https://api.wordpress.org/plugins/info/1.0"
    timeout: float = 5.0
    fields: Sequence[str] = field(default_factory=lambda: ("icons", "versions"))
    transport: httpx.AsyncBaseTransport | None = None

    async def plugin_info(self, slug: str) -> dict[str, Any] | None:
        """Return registry metadata for `slug`, or None for private/unknown plugins.

        A timeout, non-200 status or body without a `name` all mean "not public".
        """

        url = f"{self.api_base}/{slug}.json"
        params = {"fields": ",".join(self.fields)} if self.fields else None
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=True, transport=self.transport
            ) as client:
                response = await client.get(
                    url, params=params, headers={"Accept": "application/json"}
                )
        except httpx.HTTPError as exc:
            self.logger.debug("Registry lookup for %s failed: %s", slug, exc)
            return None

        if response.status_code != 200:
            self.logger.debug("Registry lookup for %s returned %s", slug, response.status_code)
            return None
        try:
            payload = response.json()
        except ValueError:
            self.logger.debug("Registry lookup for %s returned malformed JSON", slug)
            return None
        if not isinstance(payload, dict) or not payload.get("name"):
            return None
        return payload
