"""Command line interface for OneUpdate."""

from __future__ import annotations

import asyncio
import json
import logging
import pathlib
from collections.abc import Coroutine
from typing import Any, List, NoReturn, Optional, TypeVar

import typer
import uvicorn
from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.table import Table

from oneupdate import get_version
from oneupdate.api import create_app
from oneupdate.config import Config, load_config
from oneupdate.core import OneUpdateError, Site
from oneupdate.core.models import ActionRequest
from oneupdate.logging import configure_logging
from oneupdate.services import Services, build_services

T = TypeVar("T")

console = Console(soft_wrap=False)


def _load_environment(env_file: Optional[pathlib.Path]) -> None:
    """Load environment variables from .env files."""

    if env_file is not None:
        load_dotenv(dotenv_path=env_file, override=True)
    else:
        load_dotenv(override=False)


def _prepare_logging(
    config: Config,
    override_path: Optional[pathlib.Path],
    override_level: Optional[str],
) -> logging.Logger:
    """Configure logging based on configuration and overrides."""

    configured_path = override_path or config.logging.path
    configured_level = (override_level or config.logging.level).upper()
    return configure_logging(
        log_path=configured_path,
        level=configured_level,
        mirror_to_console=False,
    )


def _services(ctx: typer.Context) -> Services:
    return ctx.obj["services"]


def _run(coroutine: Coroutine[Any, Any, T]) -> T:
    """Drive one coroutine to completion, turning domain errors into a clean exit."""

    try:
        return asyncio.run(coroutine)
    except OneUpdateError as exc:
        _fail(exc)


def _fail(exc: OneUpdateError) -> NoReturn:
    typer.echo(f"Error [{exc.code}]: {exc.message}", err=True)
    raise typer.Exit(code=1) from exc


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


def _table(*columns: str) -> Table:
    table = Table(box=box.ROUNDED, border_style="grey39", header_style="bold")
    for column in columns:
        table.add_column(column, no_wrap=True, overflow="ellipsis")
    return table


app = typer.Typer(
    name="oneupdate",
    help="Manage WordPress plugins across a governing site and its brand sites.",
    no_args_is_help=True,
    add_completion=False,
)

sites_app = typer.Typer(help="Brand site registry.", no_args_is_help=True)
cache_app = typer.Typer(help="Local plugin state cache (brand role).", no_args_is_help=True)
uploads_app = typer.Typer(help="Private plugin upload history.", no_args_is_help=True)
app.add_typer(sites_app, name="sites")
app.add_typer(cache_app, name="cache")
app.add_typer(uploads_app, name="uploads")


def _version_callback(value: bool) -> None:
    """Print the package version and exit when requested."""

    if value:
        typer.echo(get_version())
        raise typer.Exit()


@app.callback()
def main(  # pragma: no cover - exercised via CLI invocation
    ctx: typer.Context,
    config: Optional[pathlib.Path] = typer.Option(
        None,
        "--config",
        metavar="PATH",
        help="Path to a YAML configuration file layered over the packaged defaults.",
    ),
    env_file: Optional[pathlib.Path] = typer.Option(
        None,
        "--env-file",
        metavar="PATH",
        help="Load environment variables from .env-style file before execution.",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        metavar="LEVEL",
        help="Override the configured log level (debug, info, warn, error).",
    ),
    log_path: Optional[pathlib.Path] = typer.Option(
        None,
        "--log-path",
        metavar="PATH",
        help="Override the base directory or file for log output.",
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show OneUpdate version and exit.",
    ),
) -> None:
    """CLI root; loads configuration, logging, and shared services."""

    ctx.ensure_object(dict)

    _load_environment(env_file)

    if ctx.invoked_subcommand == "version":
        return

    try:
        config_obj = load_config(config)
    except FileNotFoundError as exc:
        raise typer.BadParameter(str(exc), param_hint="--config") from exc

    logger = _prepare_logging(config_obj, log_path, log_level)
    services = build_services(config_obj, logger)

    ctx.obj.update(
        {
            "config": config_obj,
            "config_path": config,
            "logger": logger,
            "services": services,
        }
    )


@app.command()
def serve(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host", help="Bind address override."),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port override."),
) -> None:
    """Serve the REST API for this installation's role."""

    services = _services(ctx)
    settings = services.config.server
    bind_host = host or settings.host
    bind_port = port or settings.port
    services.logger.info(
        "Serving OneUpdate API on %s:%s as %s",
        bind_host,
        bind_port,
        services.registry.site_type().value or "unconfigured site",
    )
    if not services.config.admin_token():
        services.logger.warning(
            "No admin token configured; admin endpoints will answer 401 until one is set"
        )
    uvicorn.run(
        create_app(services),
        host=bind_host,
        port=bind_port,
        log_level=services.config.logging.level.lower(),
    )


@app.command("site-type")
def site_type(
    ctx: typer.Context,
    value: Optional[str] = typer.Argument(
        None, help="governing-site or brand-site; omit to show the current role."
    ),
) -> None:
    """Show or set the role of this installation."""

    registry = _services(ctx).registry
    if value is not None:
        try:
            registry.set_site_type(value)
        except OneUpdateError as exc:
            _fail(exc)
    typer.echo(registry.site_type().value or "(unset)")


@sites_app.command("list")
def sites_list(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of a table."),
) -> None:
    """List registered brand sites in precedence order."""

    sites = _services(ctx).registry.sites()
    if as_json:
        _echo_json([site.to_dict() for site in sites])
        return
    if not sites:
        typer.echo("No brand sites registered.")
        return
    table = _table("ID", "NAME", "URL", "REPO", "REGISTERED")
    for site in sites:
        table.add_row(site.id, site.name, site.url, site.repo or "-", site.registered_at)
    console.print(table)


@sites_app.command("add")
def sites_add(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Brand site base URL."),
    name: Optional[str] = typer.Option(None, "--name", help="Display name (defaults to URL)."),
    token: str = typer.Option("", "--token", help="The brand site's secret key."),
    repo: str = typer.Option("", "--repo", help="GitHub repository (owner/name)."),
) -> None:
    """Register a brand site."""

    try:
        site = _services(ctx).registry.add(Site(name=name or url, url=url, token=token, repo=repo))
    except OneUpdateError as exc:
        _fail(exc)
    typer.echo(f"Registered {site.name} ({site.url}) as {site.id}.")


@sites_app.command("remove")
def sites_remove(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Site URL, id or name."),
) -> None:
    """Remove a brand site from the registry."""

    try:
        site = _services(ctx).registry.remove(key)
    except OneUpdateError as exc:
        _fail(exc)
    typer.echo(f"Removed {site.name} ({site.url}).")


@app.command()
def fleet(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Emit the full fleet document as JSON."),
) -> None:
    """Query every brand site and show the merged plugin view."""

    view = _run(_services(ctx).orchestrator.fleet_view())
    if as_json:
        _echo_json(view.to_dict())
        return

    table = _table("PLUGIN", "VISIBILITY", "SITES", "ACTIVE", "UPDATES", "LATEST")
    for slug, record in view.plugins.items():
        versions = record.available_versions
        table.add_row(
            slug,
            "public" if record.is_public else "private",
            str(record.total_sites),
            str(record.active_sites),
            str(record.update_available_sites),
            versions[0] if versions else "-",
        )
    console.print(table)
    for url, error in view.unreachable.items():
        typer.echo(f"Unreachable: {url}: {error}", err=True)


@app.command()
def action(
    ctx: typer.Context,
    operation: str = typer.Argument(
        ..., help="activate, deactivate, update, install, change-version or remove."
    ),
    slug: str = typer.Argument(..., help="Plugin slug."),
    sites: List[str] = typer.Option(
        [], "--site", "-s", help="Target site URL, id or name. Repeat for several sites."
    ),
    version: str = typer.Option("", "--version", help="Target version for code changes."),
    private: bool = typer.Option(False, "--private", help="Treat the plugin as private."),
    zip_url: str = typer.Option("", "--zip-url", help="Archive URL for private plugins."),
    plugin_path: str = typer.Option("", "--plugin-path", help="Plugin main file path."),
) -> None:
    """Apply one operation to one plugin on the chosen brand sites."""

    services = _services(ctx)
    try:
        request = ActionRequest.from_payload(
            {
                "action": operation,
                "plugin_slug": slug,
                "sites": list(sites) or [site.url for site in services.registry.sites()],
                "version": version,
                "plugin_type": "private" if private else "public",
                "plugin_path_info": plugin_path,
                "zip_url": zip_url,
            }
        )
    except OneUpdateError as exc:
        _fail(exc)
    report = _run(services.orchestrator.execute(request))
    typer.echo(report.notice)
    if not report.success:
        raise typer.Exit(code=1)


@app.command("bulk-update")
def bulk_update(ctx: typer.Context) -> None:
    """Update every public plugin with a pending update across the fleet."""

    report = _run(_services(ctx).orchestrator.bulk_update())
    typer.echo(report.notice)
    if not report.success:
        raise typer.Exit(code=1)


@app.command("secret-key")
def secret_key(
    ctx: typer.Context,
    regenerate: bool = typer.Option(False, "--regenerate", help="Issue a new key."),
) -> None:
    """Show (or rotate) the key governing sites use to call this brand site."""

    credentials = _services(ctx).credentials
    typer.echo(credentials.regenerate_public_key() if regenerate else credentials.public_key())


@app.command("pull-requests")
def pull_requests(
    ctx: typer.Context,
    repo: str = typer.Argument(..., help="Repository as owner/name."),
    state: str = typer.Option("all", "--state", help="open, closed, merged or all."),
    page: int = typer.Option(1, "--page", min=1, help="Page number."),
    per_page: int = typer.Option(25, "--per-page", min=1, max=100, help="Rows per page."),
    search: str = typer.Option("", "--search", help="Search query."),
) -> None:
    """List the pull requests OneUpdate workflows opened on a brand site repository."""

    services = _services(ctx)
    try:
        services.credentials.require_github_token()
    except OneUpdateError as exc:
        _fail(exc)
    listing = _run(
        services.github.list_pull_requests(
            repo, state=state, page=page, per_page=per_page, search_query=search
        )
    )
    if not listing.pull_requests:
        typer.echo("No pull requests found.")
        return
    table = _table("#", "TITLE", "STATE", "BRANCH", "CREATED")
    for pull in listing.pull_requests:
        state_label = "merged" if pull["merged_at"] else pull["state"]
        table.add_row(
            str(pull["number"]), pull["title"], state_label, pull["pr_branch"], pull["created_at"]
        )
    console.print(table)
    typer.echo(f"Page {listing.page} of {listing.total_pages}.")


@cache_app.command("show")
def cache_show(ctx: typer.Context) -> None:
    """Show the cached plugin snapshot, rebuilding it when stale."""

    plugins = _run(_services(ctx).cache.get_snapshot())
    table = _table("SLUG", "VERSION", "ACTIVE", "PUBLIC", "UPDATE", "PATH")
    for slug, record in plugins.items():
        table.add_row(
            slug,
            record.version,
            "yes" if record.is_active else "no",
            "yes" if record.is_public else "no",
            "yes" if record.is_update_available else "no",
            record.plugin_path_info,
        )
    console.print(table)


@cache_app.command("rebuild")
def cache_rebuild(ctx: typer.Context) -> None:
    """Rebuild the plugin snapshot from the installed plugins."""

    plugins = _run(_services(ctx).cache.rebuild_full())
    typer.echo(f"Cached {len(plugins)} plugin(s).")


@cache_app.command("clear")
def cache_clear(ctx: typer.Context) -> None:
    """Drop the plugin snapshot; the next read rebuilds it."""

    _run(_services(ctx).cache.invalidate())
    typer.echo("Plugin cache cleared.")


@app.command()
def cleanup(ctx: typer.Context) -> None:
    """Expire old private uploads and purge stale upload history."""

    summary = _run(_services(ctx).cleanup.run())
    typer.echo(
        f"Expired {summary.expired} upload(s); purged {summary.purged_rows} history row(s)."
    )
    for key in summary.failed:
        typer.echo(f"Failed to delete {key}", err=True)


@uploads_app.command("list")
def uploads_list(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", min=1, help="Maximum rows to show."),
) -> None:
    """Show recent private plugin uploads."""

    uploads = _services(ctx).database.list_uploads(limit)
    if not uploads:
        typer.echo("No uploads recorded.")
        return
    table = _table("ID", "FILE", "KEY", "UPLOADED", "ACTION")
    for upload in uploads:
        table.add_row(
            str(upload.id), upload.file_name, upload.s3_key, upload.upload_time, upload.action
        )
    console.print(table)


@uploads_app.command("record")
def uploads_record(
    ctx: typer.Context,
    file_name: str = typer.Argument(..., help="Uploaded archive file name."),
    s3_key: str = typer.Argument(..., help="Object key in the bucket."),
    presigned_url: str = typer.Argument(..., help="Download URL handed to workflows."),
) -> None:
    """Record an upload made outside the API."""

    record = _services(ctx).database.record_upload(file_name, s3_key, presigned_url)
    typer.echo(f"Recorded upload {record.id} at {record.upload_time}.")


@app.command()
def version() -> None:
    """Print the OneUpdate version."""

    typer.echo(get_version())
