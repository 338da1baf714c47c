"""Domain records passed between the registry, aggregator, resolver and dispatcher."""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .errors import ActionValidationError, InvalidActionError


class SiteType(str, Enum):
    """Role flag of one installation."""

    UNSET = ""
    GOVERNING = "governing-site"
    BRAND = "brand-site"


class Operation(str, Enum):
    """User-facing plugin operations."""

    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"
    UPDATE = "update"
    INSTALL = "install"
    CHANGE_VERSION = "change-version"
    REMOVE = "remove"

    @classmethod
    def parse(cls, value: Any) -> Operation:
        if isinstance(value, Operation):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise InvalidActionError(f"Invalid action type: {value!r}") from exc

    @property
    def touches_local_state(self) -> bool:
        return self in (Operation.ACTIVATE, Operation.DEACTIVATE, Operation.REMOVE)

    @property
    def changes_code(self) -> bool:
        return self in (
            Operation.UPDATE,
            Operation.INSTALL,
            Operation.CHANGE_VERSION,
            Operation.REMOVE,
        )

    @property
    def requires_version(self) -> bool:
        return self in (Operation.UPDATE, Operation.INSTALL, Operation.CHANGE_VERSION)

    @property
    def past_tense(self) -> str:
        return {
            Operation.ACTIVATE: "activated",
            Operation.DEACTIVATE: "deactivated",
            Operation.UPDATE: "updated",
            Operation.INSTALL: "installed",
            Operation.CHANGE_VERSION: "version changed",
            Operation.REMOVE: "removed",
        }[self]


class PluginVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class PluginState(str, Enum):
    """Per-site plugin state used for action eligibility."""

    NOT_PRESENT = "not-present"
    PRESENT_INACTIVE = "present-inactive"
    PRESENT_ACTIVE = "present-active"
    PRESENT_WITH_UPDATE = "present-with-update"


def normalize_url(url: str) -> str:
    return url.strip().rstrip("/")


@dataclass(slots=True)
class Site:
    """A brand site known to the governing site."""

    name: str
    url: str
    token: str = ""
    repo: str = ""
    id: str = ""
    registered_at: str = ""

    def __post_init__(self) -> None:
        self.name = self.name.strip()
        self.url = normalize_url(self.url)
        self.repo = self.repo.strip()
        if not self.id:
            self.id = hashlib.sha1(self.url.lower().encode("utf-8")).hexdigest()[:12]

    @property
    def precedence_key(self) -> tuple[str, str]:
        """Registration order: unregistered sites sort last, then by URL."""

        return (self.registered_at or "~", self.url.lower())

    def endpoint(self, route: str) -> str:
        return f"{self.url}/wp-json/oneupdate/v1/{route.lstrip('/')}"

    def matches(self, key: str) -> bool:
        candidate = normalize_url(key)
        return candidate.lower() == self.url.lower() or key in (self.id, self.name)

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "siteName": self.name,
            "siteUrl": self.url,
            "publicKey": self.token,
            "githubRepo": self.repo,
            "registeredAt": self.registered_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Site:
        def pick(*keys: str) -> str:
            for key in keys:
                value = data.get(key)
                if isinstance(value, str) and value.strip():
                    return value
            return ""

        url = pick("siteUrl", "url")
        if not url:
            raise ActionValidationError("Site URL is required.", code="invalid_site")
        return cls(
            name=pick("siteName", "name") or url,
            url=url,
            token=pick("publicKey", "apiKey", "token"),
            repo=pick("githubRepo", "gh_repo", "repo"),
            id=pick("id"),
            registered_at=pick("registeredAt", "registered_at"),
        )


@dataclass(slots=True)
class PluginLocalRecord:
    """One installed plugin as a brand site reports it."""

    slug: str
    name: str = ""
    version: str = ""
    is_active: bool = False
    is_public: bool = False
    is_update_available: bool = False
    plugin_path_info: str = ""
    author: str = ""
    description: str = ""
    plugin_uri: str = ""
    requires_wp: str = ""
    requires_php: str = ""
    update: dict[str, Any] | None = None
    plugin_info: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "Name": self.name,
            "Version": self.version,
            "Author": self.author,
            "Description": self.description,
            "PluginURI": self.plugin_uri,
            "RequiresWP": self.requires_wp,
            "RequiresPHP": self.requires_php,
            "is_active": self.is_active,
            "is_public": self.is_public,
            "is_update_available": self.is_update_available,
            "plugin_slug": self.slug,
            "plugin_path_info": self.plugin_path_info,
        }
        if self.update is not None:
            payload["update"] = self.update
        if self.plugin_info is not None:
            payload["plugin_info"] = self.plugin_info
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], slug: str = "") -> PluginLocalRecord:
        def text(key: str) -> str:
            value = data.get(key)
            return str(value) if value is not None else ""

        update = data.get("update")
        plugin_info = data.get("plugin_info")
        return cls(
            slug=text("plugin_slug") or slug,
            name=text("Name"),
            version=text("Version"),
            is_active=bool(data.get("is_active")),
            is_public=bool(data.get("is_public")),
            is_update_available=bool(data.get("is_update_available")),
            plugin_path_info=text("plugin_path_info"),
            author=text("Author"),
            description=text("Description"),
            plugin_uri=text("PluginURI"),
            requires_wp=text("RequiresWP"),
            requires_php=text("RequiresPHP"),
            update=dict(update) if isinstance(update, Mapping) else None,
            plugin_info=dict(plugin_info) if isinstance(plugin_info, Mapping) else None,
        )


PluginMap = dict[str, PluginLocalRecord]


@dataclass(slots=True)
class SiteStatus:
    """State of one plugin on one site inside a fleet record."""

    plugin_path: str
    version: str
    is_active: bool
    is_update_available: bool
    site_name: str
    site_id: str
    site_url: str
    update_info: dict[str, Any] | None = None
    plugin_data: PluginLocalRecord | None = None

    @property
    def detected(self) -> bool:
        """False for entries inferred from shared configuration only."""

        return self.plugin_data is not None

    @property
    def state(self) -> PluginState:
        if not self.detected:
            return PluginState.NOT_PRESENT
        if self.is_update_available:
            return PluginState.PRESENT_WITH_UPDATE
        if self.is_active:
            return PluginState.PRESENT_ACTIVE
        return PluginState.PRESENT_INACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "plugin_path": self.plugin_path,
            "version": self.version,
            "is_active": self.is_active,
            "is_update_available": self.is_update_available,
            "update_info": self.update_info,
            "site_name": self.site_name,
            "site_id": self.site_id,
            "site_url": self.site_url,
            "state": self.state.value,
            "plugin_data": self.plugin_data.to_dict() if self.plugin_data else None,
        }


@dataclass(slots=True)
class FleetPluginRecord:
    """Merged fleet-wide view of one plugin. Recomputed per request, never stored."""

    slug: str
    plugin_info: dict[str, Any]
    sites: dict[str, SiteStatus]
    total_sites: int
    active_sites: int
    update_available_sites: int
    plugin_path_info: str

    @property
    def is_public(self) -> bool:
        return bool(self.plugin_info.get("is_public"))

    @property
    def available_versions(self) -> list[str]:
        return list(self.plugin_info.get("available_versions") or [])

    def to_dict(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "plugin_info": self.plugin_info,
            "sites": {url: status.to_dict() for url, status in self.sites.items()},
            "total_sites": self.total_sites,
            "active_sites": self.active_sites,
            "update_available_sites": self.update_available_sites,
            "plugin_path_info": self.plugin_path_info,
        }


@dataclass(slots=True)
class ActionRequest:
    """A user's request to apply one operation to one plugin on some sites."""

    operation: Operation
    slug: str
    sites: list[str] = field(default_factory=list)
    version: str = ""
    plugin_type: PluginVisibility = PluginVisibility.PUBLIC
    plugin_path_info: str = ""
    zip_url: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ActionRequest:
        """Validate a raw request body. Unknown operations fail before anything else."""

        operation = Operation.parse(payload.get("action") or payload.get("operation") or "")
        slug = str(payload.get("plugin_slug") or payload.get("slug") or "").strip()
        if not slug:
            raise ActionValidationError("Missing plugin slug.")
        raw_sites = payload.get("sites") or []
        if isinstance(raw_sites, str):
            raw_sites = [raw_sites]
        sites = [str(site).strip() for site in raw_sites if str(site).strip()]
        if not sites:
            raise ActionValidationError("No target sites provided.")
        raw_type = str(payload.get("plugin_type") or "public").strip().lower()
        try:
            plugin_type = PluginVisibility(raw_type)
        except ValueError as exc:
            raise ActionValidationError(f"Invalid plugin type: {raw_type!r}") from exc
        return cls(
            operation=operation,
            slug=slug,
            sites=sites,
            version=str(payload.get("version") or "").strip(),
            plugin_type=plugin_type,
            plugin_path_info=str(payload.get("plugin_path_info") or "").strip(),
            zip_url=str(payload.get("zip_url") or "").strip(),
        )

    @property
    def dispatch_path(self) -> str:
        return self.plugin_path_info or f"{self.slug}/{self.slug}.php"


@dataclass(slots=True)
class DispatchTicket:
    """Phase one of a workflow dispatch: accepted by GitHub, run id not yet known."""

    repo: str
    workflow: str
    ref: str
    inputs: dict[str, str]
    dispatched_at: datetime


@dataclass(slots=True)
class RunRef:
    run_id: int
    run_url: str


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of one unit of work against one site."""

    site_url: str
    site_name: str
    operation: str
    slug: str
    ok: bool
    version: str = ""
    kind: str = "options"
    run: RunRef | None = None
    workflow_url: str = ""
    response: dict[str, Any] | None = None
    code: str = ""
    error: str = ""

    @property
    def run_pending(self) -> bool:
        return self.ok and self.kind == "workflow" and self.run is None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "site": self.site_url,
            "siteName": self.site_name,
            "operation": self.operation,
            "plugin_slug": self.slug,
            "kind": self.kind,
            "success": self.ok,
        }
        if self.version:
            payload["version"] = self.version
        if self.kind == "workflow" and self.ok:
            payload["github_response"] = {
                "run_id": self.run.run_id if self.run else None,
                "run_url": self.run.run_url if self.run else None,
                "workflow_url": self.workflow_url,
                "status": "dispatched" if self.run else "dispatched, reference pending",
                "siteName": self.site_name,
            }
        if self.response is not None:
            payload["response"] = self.response
        if not self.ok:
            payload["code"] = self.code
            payload["message"] = self.error
        return payload


@dataclass(slots=True)
class ActionReport:
    """Aggregate of per-site results. `success` only when nothing failed."""

    operation: str
    slug: str
    results: list[ExecutionResult] = field(default_factory=list)
    errors: list[ExecutionResult] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    noop: bool = False
    notice: str = ""

    @property
    def success(self) -> bool:
        return not self.errors

    def add(self, result: ExecutionResult) -> None:
        (self.results if result.ok else self.errors).append(result)

    def grouped_by_site(self) -> dict[str, list[ExecutionResult]]:
        grouped: dict[str, list[ExecutionResult]] = {}
        for result in (*self.results, *self.errors):
            grouped.setdefault(result.site_name or result.site_url, []).append(result)
        return grouped

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "operation": self.operation,
            "plugin_slug": self.slug,
            "noop": self.noop,
            "message": self.notice,
            "output": [result.to_dict() for result in self.results],
            "errors": [result.to_dict() for result in self.errors],
            "skipped": dict(self.skipped),
        }
