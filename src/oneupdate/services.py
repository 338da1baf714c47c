"""Composition root: build every service once from configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from oneupdate.brand.cache import PluginStateCache
from oneupdate.brand.hooks import PluginLifecycleHooks
from oneupdate.brand.host import PluginHost, WpCliPluginHost
from oneupdate.brand.options import PluginOptionsService
from oneupdate.clients.github import GitHubClient
from oneupdate.clients.site import RemoteSiteClient
from oneupdate.clients.wporg import PluginRegistryClient
from oneupdate.config import Config
from oneupdate.core.orchestrator import FleetOrchestrator
from oneupdate.fleet.aggregator import FleetAggregator
from oneupdate.fleet.dispatcher import DispatchGuard, DispatchSettings, ExecutionDispatcher
from oneupdate.fleet.resolver import ActionResolver
from oneupdate.fleet.shared import SharedPluginLedger
from oneupdate.maintenance.cleanup import ObjectStore, UploadCleanup
from oneupdate.sites.credentials import CredentialStore
from oneupdate.sites.registry import SiteRegistry
from oneupdate.storage import Database


@dataclass(slots=True)
class Services:
    """Everything the HTTP layer and CLI need, for either site role."""

    config: Config
    database: Database
    registry: SiteRegistry
    credentials: CredentialStore
    github: GitHubClient
    orchestrator: FleetOrchestrator
    cache: PluginStateCache
    hooks: PluginLifecycleHooks
    options: PluginOptionsService
    cleanup: UploadCleanup
    logger: logging.Logger


def build_services(
    config: Config,
    logger: logging.Logger,
    *,
    database: Database | None = None,
    host: PluginHost | None = None,
    object_store: ObjectStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    """Wire the object graph. `host`, `object_store` and `transport` are injectable fakes."""

    database = database or Database(config.database_path())
    database.initialize()

    registry = SiteRegistry(
        database,
        default_site_type=config.site.type,
        logger=logger.getChild("sites"),
    )
    credentials = CredentialStore(
        database,
        github_token_override=config.github_token_override(),
        logger=logger.getChild("credentials"),
    )
    ledger = SharedPluginLedger(database)

    site_client = RemoteSiteClient(
        logger=logger.getChild("site"),
        timeout=config.http.site_timeout_seconds,
        health_timeout=config.http.health_timeout_seconds,
        transport=transport,
    )
    wporg = PluginRegistryClient(
        logger=logger.getChild("wporg"),
        api_base=config.registry.api_base,
        timeout=config.registry.timeout_seconds,
        fields=tuple(config.registry.fields),
        transport=transport,
    )
    github_settings = config.github
    github = GitHubClient(
        logger=logger.getChild("github"),
        token_provider=credentials.github_token,
        api_base=github_settings.api_base,
        web_base=github_settings.web_base,
        timeout=github_settings.timeout_seconds,
        poll_timeout=github_settings.poll_timeout_seconds,
        user_agent=github_settings.user_agent,
        run_poll_attempts=github_settings.run_poll_attempts,
        run_poll_initial_seconds=github_settings.run_poll_initial_seconds,
        run_poll_max_seconds=github_settings.run_poll_max_seconds,
        transport=transport,
    )

    aggregator = FleetAggregator(
        registry,
        site_client,
        ledger=ledger,
        max_concurrency=config.http.max_concurrency,
        logger=logger.getChild("fleet"),
    )
    dispatcher = ExecutionDispatcher(
        site_client,
        github,
        database,
        ledger=ledger,
        settings=DispatchSettings(
            download_base=config.registry.download_base,
            branch=github_settings.branch,
            public_workflow=github_settings.workflow,
            private_workflow=github_settings.private_workflow,
            upload_ttl_seconds=config.cleanup.upload_ttl_seconds,
            max_concurrency=config.http.max_concurrency,
        ),
        guard=DispatchGuard(ttl_seconds=config.dispatch.dedupe_ttl_seconds),
        logger=logger.getChild("dispatch"),
    )
    orchestrator = FleetOrchestrator(
        registry=registry,
        aggregator=aggregator,
        resolver=ActionResolver(),
        dispatcher=dispatcher,
        database=database,
        logger=logger.getChild("orchestrator"),
    )

    host = host or WpCliPluginHost(
        logger=logger.getChild("wp"),
        wp_cli=config.site.wp_cli,
        wp_path=config.site.wp_path,
        timeout=config.site.wp_timeout_seconds,
    )
    cache = PluginStateCache(
        database,
        host,
        wporg,
        ttl_seconds=config.cache.ttl_seconds,
        logger=logger.getChild("cache"),
    )
    hooks = PluginLifecycleHooks(
        cache, is_governing=registry.is_governing_site, logger=logger.getChild("hooks")
    )
    options = PluginOptionsService(database, host, hooks, logger=logger.getChild("options"))
    cleanup = UploadCleanup(
        database=database,
        store=object_store,
        logger=logger.getChild("cleanup"),
        upload_ttl_seconds=config.cleanup.upload_ttl_seconds,
        retention_days=config.cleanup.history_retention_days,
        batch_size=config.cleanup.batch_size,
        pause_seconds=config.cleanup.pause_seconds,
    )

    return Services(
        config=config,
        database=database,
        registry=registry,
        credentials=credentials,
        github=github,
        orchestrator=orchestrator,
        cache=cache,
        hooks=hooks,
        options=options,
        cleanup=cleanup,
        logger=logger,
    )
