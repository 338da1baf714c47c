"""Tests for the brand-site, registry and GitHub clients and the WP-CLI host."""

from __future__ import annotations

import json
import logging
import stat
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from conftest import plugin_entry

from oneupdate.brand.host import WpCliPluginHost, wp_cli_name
from oneupdate.clients.github import GitHubClient
from oneupdate.clients.site import TOKEN_HEADER, RemoteSiteClient, decode_plugin_map
from oneupdate.clients.wporg import PluginRegistryClient
from oneupdate.core.errors import (
    ActionValidationError,
    ConfigurationError,
    InvalidCredentialsError,
    PluginHostError,
    RemoteResponseError,
    RemoteUnreachableError,
)
from oneupdate.core.models import DispatchTicket, Site

LOGGER = logging.getLogger("test")
SITE = Site(name="Alpha", url="https://alpha.example", token="secret-key", repo="acme/alpha")


def _github(fleet_transport, token: str = "ghp_valid") -> GitHubClient:
    return GitHubClient(
        logger=LOGGER,
        token_provider=lambda: token,
        run_poll_attempts=1,
        run_poll_initial_seconds=0.0,
        run_poll_max_seconds=0.0,
        transport=fleet_transport.transport(),
    )


def test_decode_plugin_map_shapes():
    assert decode_plugin_map([]) == {}
    plugins = decode_plugin_map({"akismet": plugin_entry("akismet"), "junk": "x"})
    assert list(plugins) == ["akismet"]
    with pytest.raises(RemoteResponseError):
        decode_plugin_map("nope")


@pytest.mark.asyncio
async def test_fetch_inventory_sends_token(fleet_transport):
    fleet_transport.inventories[SITE.url] = {"akismet": plugin_entry("akismet", "5.0")}
    client = RemoteSiteClient(logger=LOGGER, transport=fleet_transport.transport())

    plugins = await client.fetch_inventory(SITE)

    assert plugins["akismet"].version == "5.0"
    request = fleet_transport.requests[-1]
    assert request.headers[TOKEN_HEADER] == "secret-key"
    assert request.url.path == "/wp-json/oneupdate/v1/get_plugins"


@pytest.mark.asyncio
async def test_site_client_errors(fleet_transport):
    client = RemoteSiteClient(logger=LOGGER, transport=fleet_transport.transport())

    with pytest.raises(ConfigurationError):
        await client.fetch_inventory(Site(name="No key", url="https://nokey.example"))

    fleet_transport.unreachable.add(SITE.url)
    with pytest.raises(RemoteUnreachableError):
        await client.fetch_inventory(SITE)
    assert await client.health_check(SITE) is False


@pytest.mark.asyncio
async def test_non_200_is_a_response_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"code": "rest_forbidden"})

    client = RemoteSiteClient(logger=LOGGER, transport=httpx.MockTransport(handler))

    with pytest.raises(RemoteResponseError) as excinfo:
        await client.fetch_inventory(SITE)
    assert excinfo.value.status_code == 403


@pytest.mark.asyncio
async def test_mutate_options_requires_explicit_success(fleet_transport):
    client = RemoteSiteClient(logger=LOGGER, transport=fleet_transport.transport())

    body = await client.mutate_options(SITE, ["akismet/akismet.php"], "activate")
    assert body["success"] is True
    assert fleet_transport.option_calls[-1] == (
        SITE.url,
        {"options": {"plugins": ["akismet/akismet.php"], "plugin_type": "activate"}},
    )

    fleet_transport.failing_options.add(SITE.url)
    with pytest.raises(RemoteResponseError) as excinfo:
        await client.mutate_options(SITE, ["akismet/akismet.php"], "activate")
    assert excinfo.value.code == "options_update_failed"


@pytest.mark.asyncio
async def test_registry_lookup(fleet_transport):
    fleet_transport.registry["akismet"] = {"name": "Akismet", "version": "5.3"}
    fleet_transport.registry["nameless"] = {"version": "1.0"}
    client = PluginRegistryClient(logger=LOGGER, transport=fleet_transport.transport())

    assert (await client.plugin_info("akismet"))["version"] == "5.3"
    assert fleet_transport.requests[-1].url.params["fields"] == "icons,versions"
    assert await client.plugin_info("nameless") is None
    assert await client.plugin_info("missing") is None


@pytest.mark.asyncio
async def test_registry_timeout_is_private():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    client = PluginRegistryClient(logger=LOGGER, transport=httpx.MockTransport(handler))

    assert await client.plugin_info("akismet") is None


@pytest.mark.asyncio
async def test_dispatch_and_resolve_run(fleet_transport):
    github = _github(fleet_transport)

    ticket = await github.dispatch(
        "acme/alpha", "oneupdate-pr-creation.yml", "production", {"plugin_slug": "akismet"}
    )
    run = await github.resolve_run(ticket)

    repo, payload = fleet_transport.dispatches[-1]
    assert repo == "acme/alpha"
    assert payload == {"ref": "production", "inputs": {"plugin_slug": "akismet"}}
    dispatch_request = next(r for r in fleet_transport.requests if r.method == "POST")
    assert dispatch_request.headers["Authorization"] == "Bearer ghp_valid"
    assert dispatch_request.headers["Accept"] == "application/vnd.github.v3+json"
    assert run.run_id == 4242
    assert run.run_url == "https://github.com/acme/alpha/actions/runs/4242"


@pytest.mark.asyncio
async def test_resolve_run_pending_and_stale(fleet_transport):
    github = _github(fleet_transport)
    fleet_transport.runs_available = False
    ticket = DispatchTicket(
        repo="acme/alpha",
        workflow="wf.yml",
        ref="production",
        inputs={},
        dispatched_at=datetime.now(UTC),
    )

    assert await github.resolve_run(ticket) is None

    fleet_transport.runs_available = True
    future_ticket = DispatchTicket(
        repo="acme/alpha",
        workflow="wf.yml",
        ref="production",
        inputs={},
        dispatched_at=datetime.now(UTC) + timedelta(minutes=5),
    )
    assert await github.resolve_run(future_ticket) is None


@pytest.mark.asyncio
async def test_resolve_run_ignores_runs_older_than_the_dispatch():
    dispatched_at = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)

    def handler(request: httpx.Request) -> httpx.Response:
        stale = (dispatched_at - timedelta(seconds=20)).isoformat().replace("+00:00", "Z")
        return httpx.Response(200, json={"workflow_runs": [{"id": 111, "created_at": stale}]})

    github = GitHubClient(
        logger=LOGGER,
        token_provider=lambda: "t",
        run_poll_attempts=1,
        run_poll_initial_seconds=0.0,
        transport=httpx.MockTransport(handler),
    )
    ticket = DispatchTicket(
        repo="acme/alpha",
        workflow="wf.yml",
        ref="production",
        inputs={},
        dispatched_at=dispatched_at,
    )

    assert await github.resolve_run(ticket) is None


@pytest.mark.asyncio
async def test_concurrent_dispatches_claim_distinct_runs():
    dispatched_at = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)
    runs = [
        {"id": 502, "created_at": "2025-03-01T12:00:04Z"},
        {"id": 501, "created_at": "2025-03-01T12:00:02Z"},
        {"id": 400, "created_at": "2025-03-01T11:50:00Z"},
    ]
    sleeps: list[float] = []

    async def record_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["per_page"] == "10"
        return httpx.Response(200, json={"workflow_runs": runs})

    github = GitHubClient(
        logger=LOGGER,
        token_provider=lambda: "t",
        run_poll_attempts=1,
        run_poll_initial_seconds=2.0,
        transport=httpx.MockTransport(handler),
        sleep=record_sleep,
    )

    def ticket() -> DispatchTicket:
        return DispatchTicket(
            repo="acme/alpha",
            workflow="wf.yml",
            ref="production",
            inputs={},
            dispatched_at=dispatched_at,
        )

    first = await github.resolve_run(ticket())
    second = await github.resolve_run(ticket())
    third = await github.resolve_run(ticket())

    assert (first.run_id, second.run_id, third) == (501, 502, None)
    assert sleeps == [2.0, 2.0, 2.0]


@pytest.mark.asyncio
async def test_dispatch_failure_and_missing_token(fleet_transport):
    fleet_transport.failing_repos.add("acme/broken")

    with pytest.raises(RemoteResponseError) as excinfo:
        await _github(fleet_transport).dispatch("acme/broken", "wf.yml", "production", {})
    assert excinfo.value.code == "github_action_failed"

    with pytest.raises(ConfigurationError):
        await _github(fleet_transport, token="").dispatch("acme/alpha", "wf.yml", "main", {})


@pytest.mark.asyncio
async def test_validate_token(fleet_transport):
    github = _github(fleet_transport)

    assert (await github.validate_token("ghp_valid"))["login"] == "octo"
    with pytest.raises(InvalidCredentialsError):
        await github.validate_token("ghp_wrong")


@pytest.mark.asyncio
async def test_list_repositories_follows_pages():
    pages = {
        "1": [
            {"full_name": f"acme/repo-{i}", "name": f"repo-{i}", "html_url": f"https://g/{i}"}
            for i in range(100)
        ],
        "2": [{"full_name": "acme/last", "name": "last", "html_url": "https://g/last"}],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=pages.get(request.url.params["page"], []))

    github = GitHubClient(
        logger=LOGGER, token_provider=lambda: "t", transport=httpx.MockTransport(handler)
    )

    repos = await github.list_repositories()

    assert len(repos) == 101
    assert repos[-1] == {"slug": "acme/last", "name": "last", "url": "https://g/last"}


def _pull(number: int, *, merged: bool = False) -> dict:
    return {
        "id": 9000 + number,
        "number": number,
        "title": f"Update akismet #{number}",
        "state": "closed" if merged else "open",
        "user": {"login": "oneupdate-bot", "avatar_url": "https://g/a.png"},
        "labels": [{"name": "automated"}],
        "html_url": f"https://github.com/acme/alpha/pull/{number}",
        "created_at": "2025-01-01T00:00:00Z",
        "merged_at": "2025-01-02T00:00:00Z" if merged else None,
        "head": {"ref": f"oneupdate/akismet-{number}"},
        "base": {"ref": "main"},
    }


@pytest.mark.asyncio
async def test_list_pull_requests_reads_page_count_from_link_header():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        last = "https://api.github.com/repos/acme/alpha/pulls?state=closed&per_page=2&page=4"
        return httpx.Response(
            200,
            json=[_pull(7, merged=True), _pull(6)],
            headers={"Link": f'<{last}>; rel="last"'},
        )

    github = GitHubClient(
        logger=LOGGER, token_provider=lambda: "t", transport=httpx.MockTransport(handler)
    )

    listing = await github.list_pull_requests("acme/alpha", state="merged", page=2, per_page=2)

    assert seen[0].url.path == "/repos/acme/alpha/pulls"
    assert seen[0].url.params["state"] == "closed"
    assert [pull["number"] for pull in listing.pull_requests] == [7]
    assert listing.pull_requests[0]["pr_branch"] == "oneupdate/akismet-7"
    assert listing.pull_requests[0]["labels"] == ["automated"]
    assert listing.to_dict()["pagination"] == {
        "current_page": 2,
        "per_page": 2,
        "total_pages": 4,
        "total_count": 8,
    }


@pytest.mark.asyncio
async def test_list_pull_requests_without_link_header_counts_the_page():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["per_page"] == "100"
        return httpx.Response(200, json=[_pull(1), _pull(2)])

    github = GitHubClient(
        logger=LOGGER, token_provider=lambda: "t", transport=httpx.MockTransport(handler)
    )

    listing = await github.list_pull_requests("acme/alpha", state="open", per_page=500)

    assert listing.per_page == 100
    assert (listing.total_pages, listing.total_count) == (1, 2)


@pytest.mark.asyncio
async def test_list_pull_requests_search_uses_issue_search():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/search/issues"
        assert request.url.params["q"] == "akismet repo:acme/alpha type:pr is:merged"
        hit = _pull(3)
        hit.pop("merged_at")
        hit["pull_request"] = {"merged_at": "2025-01-03T00:00:00Z"}
        return httpx.Response(200, json={"total_count": 51, "items": [hit]})

    github = GitHubClient(
        logger=LOGGER, token_provider=lambda: "t", transport=httpx.MockTransport(handler)
    )

    listing = await github.list_pull_requests(
        "acme/alpha", state="merged", search_query=" akismet "
    )

    assert listing.pull_requests[0]["merged_at"] == "2025-01-03T00:00:00Z"
    assert (listing.total_pages, listing.total_count) == (3, 51)


@pytest.mark.asyncio
async def test_pull_request_lookup_and_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/repos/acme/alpha/pulls/5":
            return httpx.Response(200, json=_pull(5))
        return httpx.Response(404, json={"message": "Not Found"})

    github = GitHubClient(
        logger=LOGGER, token_provider=lambda: "t", transport=httpx.MockTransport(handler)
    )

    assert (await github.get_pull_request("acme/alpha", 5))["title"] == "Update akismet #5"
    with pytest.raises(RemoteResponseError) as excinfo:
        await github.get_pull_request("acme/alpha", 6)
    assert excinfo.value.code == "github_api_error"
    assert excinfo.value.status_code == 404
    with pytest.raises(ActionValidationError):
        await github.list_pull_requests("acme/alpha", state="draft")


WP_STUB = """#!/bin/sh
echo "$@" >> "$(dirname "$0")/calls.log"
case "$2" in
  list) cat "$(dirname "$0")/plugins.json" ;;
  is-active) [ "$3" = "akismet" ] && exit 0 || exit 1 ;;
  activate) exit 0 ;;
  deactivate) echo "Error: could not deactivate" >&2; exit 1 ;;
esac
"""


@pytest.fixture
def wp_stub(tmp_path):
    script = tmp_path / "wp"
    script.write_text(WP_STUB, encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    rows = [
        {
            "file": "akismet/akismet.php",
            "title": "Akismet Anti-spam",
            "status": "active",
            "version": "5.0",
            "update": "available",
            "update_version": "5.3",
            "update_package": "https://downloads.example/akismet.5.3.zip",
        },
        {"file": "hello.php", "name": "hello", "status": "inactive", "version": "1.7.2"},
        {"name": "broken-row"},
    ]
    (tmp_path / "plugins.json").write_text(json.dumps(rows), encoding="utf-8")
    return script


def test_wp_cli_name():
    assert wp_cli_name("akismet/akismet.php") == "akismet"
    assert wp_cli_name("hello.php") == "hello"


@pytest.mark.asyncio
async def test_wp_cli_host(wp_stub, tmp_path):
    host = WpCliPluginHost(logger=LOGGER, wp_cli=str(wp_stub), wp_path=tmp_path / "site")

    plugins = await host.installed_plugins()

    assert [plugin.path for plugin in plugins] == ["akismet/akismet.php", "hello.php"]
    assert plugins[0].is_active
    assert plugins[0].name == "Akismet Anti-spam"
    assert plugins[0].update == {
        "new_version": "5.3",
        "package": "https://downloads.example/akismet.5.3.zip",
    }
    assert not plugins[1].is_active
    assert plugins[1].update is None

    assert await host.is_active("akismet/akismet.php")
    assert not await host.is_active("hello.php")
    await host.activate("hello.php")
    with pytest.raises(PluginHostError):
        await host.deactivate("akismet/akismet.php")

    calls = (tmp_path / "calls.log").read_text(encoding="utf-8").splitlines()
    assert calls[3] == f"plugin activate hello --path={tmp_path / 'site'}"
    assert calls[0].startswith("plugin list --format=json --fields=name,title,status")


@pytest.mark.asyncio
async def test_wp_cli_missing_binary(tmp_path):
    host = WpCliPluginHost(logger=LOGGER, wp_cli=str(tmp_path / "absent-wp"))

    with pytest.raises(PluginHostError):
        await host.installed_plugins()
