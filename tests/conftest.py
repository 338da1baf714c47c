"""Shared fixtures: a controllable clock, a fake WordPress host and a simulated fleet."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest

from oneupdate.brand.host import InstalledPlugin
from oneupdate.config.loader import (
    Config,
    ConfigModel,
    GitHubSettings,
    ServerSettings,
    SiteSettings,
    StorageSettings,
)
from oneupdate.core.models import Site
from oneupdate.services import Services, build_services
from oneupdate.storage import Database

START = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class FakeHost:
    """In-memory stand-in for the WP-CLI plugin host."""

    def __init__(self, plugins: list[InstalledPlugin] | None = None) -> None:
        self.plugins = {plugin.path: plugin for plugin in plugins or []}
        self.calls: list[tuple[str, str]] = []

    async def installed_plugins(self) -> list[InstalledPlugin]:
        self.calls.append(("list", ""))
        return list(self.plugins.values())

    async def is_active(self, path: str) -> bool:
        plugin = self.plugins.get(path)
        return bool(plugin and plugin.is_active)

    async def activate(self, path: str) -> None:
        self.calls.append(("activate", path))
        self.plugins[path].is_active = True

    async def deactivate(self, path: str) -> None:
        self.calls.append(("deactivate", path))
        self.plugins[path].is_active = False


def plugin_entry(
    slug: str,
    version: str = "1.0.0",
    *,
    active: bool = True,
    update: bool = False,
    public: bool = True,
    versions: list[str] | None = None,
    name: str | None = None,
) -> dict[str, Any]:
    """One plugin in the wire format a brand site's `get_plugins` returns."""

    entry: dict[str, Any] = {
        "Name": name or slug.replace("-", " ").title(),
        "Version": version,
        "Author": "Example Author",
        "Description": f"{slug} description",
        "PluginURI": f"https://example.org/{slug}",
        "RequiresWP": "6.0",
        "RequiresPHP": "8.0",
        "is_active": active,
        "is_public": public,
        "is_update_available": update,
        "plugin_slug": slug,
        "plugin_path_info": f"{slug}/{slug}.php",
    }
    if public:
        entry["plugin_info"] = {
            "name": entry["Name"],
            "version": (versions or [version])[0],
            "versions": {v: f"https://downloads.example/{slug}.{v}.zip" for v in versions or []},
            "download_link": f"https://downloads.example/{slug}.zip",
        }
    if update:
        entry["update"] = {"new_version": (versions or [version])[0]}
    return entry


@dataclass
class FleetTransport:
    """Routes httpx requests to simulated brand sites, wordpress.org and GitHub."""

    inventories: dict[str, dict[str, Any]] = field(default_factory=dict)
    unreachable: set[str] = field(default_factory=set)
    failing_options: set[str] = field(default_factory=set)
    registry: dict[str, dict[str, Any]] = field(default_factory=dict)
    failing_repos: set[str] = field(default_factory=set)
    runs_available: bool = True
    valid_token: str = "ghp_valid"
    repos: list[dict[str, Any]] = field(default_factory=list)
    pulls: list[dict[str, Any]] = field(default_factory=list)
    requests: list[httpx.Request] = field(default_factory=list)
    option_calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    dispatches: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host == "api.wordpress.org":
            return self._registry(request)
        if host == "api.github.com":
            return self._github(request)
        return self._brand(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def _registry(self, request: httpx.Request) -> httpx.Response:
        slug = request.url.path.rsplit("/", 1)[-1].removesuffix(".json")
        info = self.registry.get(slug)
        if info is None:
            return httpx.Response(404, json={"error": "Plugin not found."})
        return httpx.Response(200, json=info)

    def _github(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/user":
            token = request.headers.get("Authorization", "").removeprefix("Bearer ")
            if token != self.valid_token:
                return httpx.Response(401, json={"message": "Bad credentials"})
            return httpx.Response(200, json={"login": "octo"})
        if path == "/user/repos":
            page = int(request.url.params.get("page", "1"))
            return httpx.Response(200, json=self.repos if page == 1 else [])
        if path.endswith("/pulls"):
            return httpx.Response(200, json=self.pulls)
        if "/pulls/" in path:
            number = int(path.rsplit("/", 1)[-1])
            found = [pull for pull in self.pulls if pull["number"] == number]
            return httpx.Response(200, json=found[0]) if found else httpx.Response(404)
        if path.endswith("/dispatches"):
            repo = "/".join(path.split("/")[2:4])
            self.dispatches.append((repo, json.loads(request.content)))
            if repo in self.failing_repos:
                return httpx.Response(422, json={"message": "Unprocessable"})
            return httpx.Response(204)
        if path.endswith("/runs"):
            if not self.runs_available:
                return httpx.Response(200, json={"workflow_runs": []})
            created = datetime.now(UTC).isoformat().replace("+00:00", "Z")
            return httpx.Response(
                200, json={"workflow_runs": [{"id": 4242, "created_at": created}]}
            )
        return httpx.Response(404)

    def _brand(self, request: httpx.Request) -> httpx.Response:
        base = f"{request.url.scheme}://{request.url.host}"
        if base in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        route = request.url.path.split("/wp-json/oneupdate/v1/", 1)[-1]
        if route == "get_plugins":
            return httpx.Response(
                200, json={"success": True, "plugins": self.inventories.get(base, [])}
            )
        if route == "oneupdate-plugins-options":
            body = json.loads(request.content)
            self.option_calls.append((base, body))
            if base in self.failing_options:
                return httpx.Response(200, json={"success": False})
            options = body["options"]
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "plugin_type": options["plugin_type"],
                    "plugins": options["plugins"],
                },
            )
        if route == "health-check":
            return httpx.Response(200, json={"success": True})
        return httpx.Response(404)


def make_config(tmp_path, *, site_type: str = "governing-site", admin_token: str | None = None):
    model = ConfigModel(
        site=SiteSettings(type=site_type),
        storage=StorageSettings(path=tmp_path / "oneupdate.sqlite"),
        github=GitHubSettings(
            run_poll_attempts=1, run_poll_initial_seconds=0.0, run_poll_max_seconds=0.0
        ),
        server=ServerSettings(admin_token=admin_token),
    )
    return Config(model=model, raw=model.model_dump())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def database(tmp_path, clock) -> Database:
    db = Database(tmp_path / "oneupdate.sqlite", clock=clock)
    db.initialize()
    return db


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("oneupdate.tests")


@pytest.fixture
def fleet_transport() -> FleetTransport:
    return FleetTransport()


@pytest.fixture
def make_services(tmp_path, database, logger, fleet_transport, monkeypatch):
    monkeypatch.delenv("ONEUPDATE_GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("ONEUPDATE_ADMIN_TOKEN", raising=False)

    def factory(
        *,
        site_type: str = "governing-site",
        host: FakeHost | None = None,
        admin_token: str | None = None,
        object_store: Any = None,
    ) -> Services:
        return build_services(
            make_config(tmp_path, site_type=site_type, admin_token=admin_token),
            logger,
            database=database,
            host=host or FakeHost(),
            object_store=object_store,
            transport=fleet_transport.transport(),
        )

    return factory


def register_sites(services: Services, clock: FakeClock, *sites: Site) -> list[Site]:
    """Register sites one second apart so their precedence order is the argument order."""

    registered = []
    for site in sites:
        registered.append(services.registry.add(site))
        clock.advance(seconds=1)
    return registered
