"""Brand-site inventory and the site-type flag, persisted in the options table."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from oneupdate.core.errors import DuplicateSiteError, UnknownSiteError, ValidationError
from oneupdate.core.models import Site, SiteType, normalize_url
from oneupdate.storage.db import Database, format_timestamp

SHARED_SITES_OPTION = "oneupdate_shared_sites"
SITE_TYPE_OPTION = "oneupdate_site_type"


class SiteRegistry:
    """Holds the known brand sites. Every write validates uniqueness and commits atomically."""

    def __init__(
        self,
        database: Database,
        *,
        default_site_type: str = "",
        logger: logging.Logger | None = None,
    ) -> None:
        self.database = database
        self.default_site_type = default_site_type
        self.logger = logger or logging.getLogger(__name__)

    # -- sites --------------------------------------------------------------------

    def sites(self) -> list[Site]:
        """Return sites in registration order."""

        return sorted(self._load(), key=lambda site: site.precedence_key)

    def get(self, key: str) -> Site | None:
        for site in self._load():
            if site.matches(key):
                return site
        return None

    def require(self, key: str) -> Site:
        site = self.get(key)
        if site is None:
            raise UnknownSiteError(f"Unknown brand site: {key}")
        return site

    def add(self, site: Site) -> Site:
        """Append one site. Rejected when its URL or repository is already registered."""

        def mutate(current: Any) -> list[dict[str, Any]]:
            sites = _decode(current)
            stamped = self._stamp([*sites, site])
            return [entry.to_dict() for entry in stamped]

        stored = self.database.modify_option(SHARED_SITES_OPTION, mutate, default=[])
        added = _decode(stored)[-1]
        self.logger.info("Registered brand site %s (%s)", added.name, added.url)
        return added

    def update(self, key: str, site: Site) -> Site:
        """Replace the site matched by `key`, keeping its id and registration time."""

        def mutate(current: Any) -> list[dict[str, Any]]:
            sites = _decode(current)
            for index, existing in enumerate(sites):
                if existing.matches(key):
                    site.id = existing.id
                    site.registered_at = existing.registered_at
                    sites[index] = site
                    break
            else:
                raise UnknownSiteError(f"Unknown brand site: {key}")
            return [entry.to_dict() for entry in self._stamp(sites)]

        self.database.modify_option(SHARED_SITES_OPTION, mutate, default=[])
        return site

    def remove(self, key: str) -> Site:
        removed: list[Site] = []

        def mutate(current: Any) -> list[dict[str, Any]]:
            sites = _decode(current)
            remaining = [site for site in sites if not site.matches(key)]
            if len(remaining) == len(sites):
                raise UnknownSiteError(f"Unknown brand site: {key}")
            removed.extend(site for site in sites if site.matches(key))
            return [site.to_dict() for site in remaining]

        self.database.modify_option(SHARED_SITES_OPTION, mutate, default=[])
        self.logger.info("Removed brand site %s", removed[0].url)
        return removed[0]

    def replace_all(self, entries: Iterable[Site | Mapping[str, Any]]) -> list[Site]:
        """Replace the whole list (the settings-page save). Existing sites keep their ids."""

        incoming = [
            entry if isinstance(entry, Site) else Site.from_dict(entry) for entry in entries
        ]

        def mutate(current: Any) -> list[dict[str, Any]]:
            previous = {site.url.lower(): site for site in _decode(current)}
            for site in incoming:
                known = previous.get(site.url.lower())
                if known is not None and not site.registered_at:
                    site.registered_at = known.registered_at
            return [entry.to_dict() for entry in self._stamp(incoming)]

        stored = self.database.modify_option(SHARED_SITES_OPTION, mutate, default=[])
        return _decode(stored)

    def _load(self) -> list[Site]:
        return _decode(self.database.get_option(SHARED_SITES_OPTION, []))

    def _stamp(self, sites: list[Site]) -> list[Site]:
        _ensure_unique(sites)
        now = format_timestamp(self.database.now())
        for site in sites:
            if not site.registered_at:
                site.registered_at = now
        return sites

    # -- site type ----------------------------------------------------------------

    def site_type(self) -> SiteType:
        stored = self.database.get_option(SITE_TYPE_OPTION)
        value = stored if isinstance(stored, str) else self.default_site_type
        try:
            return SiteType(value)
        except ValueError:
            return SiteType.UNSET

    def set_site_type(self, value: str | SiteType) -> SiteType:
        try:
            site_type = SiteType(value)
        except ValueError as exc:
            raise ValidationError(
                f"Invalid site type: {value!r}", code="invalid_site_type"
            ) from exc
        self.database.update_option(SITE_TYPE_OPTION, site_type.value)
        self.logger.info("Site type set to %r", site_type.value)
        return site_type

    def is_governing_site(self) -> bool:
        return self.site_type() is SiteType.GOVERNING

    def is_brand_site(self) -> bool:
        return self.site_type() is SiteType.BRAND


def _decode(value: Any) -> list[Site]:
    if not isinstance(value, list):
        return []
    return [Site.from_dict(entry) for entry in value if isinstance(entry, Mapping)]


def _ensure_unique(sites: Iterable[Site]) -> None:
    urls: set[str] = set()
    repos: set[str] = set()
    for site in sites:
        url = normalize_url(site.url).lower()
        if url in urls:
            raise DuplicateSiteError("Brand Site already exists.", code="duplicate_site_url")
        urls.add(url)
        if site.repo:
            repo = site.repo.lower()
            if repo in repos:
                raise DuplicateSiteError(
                    "GitHub repository already exists in one of Brand sites.",
                    code="duplicate_github_repo",
                )
            repos.add(repo)
