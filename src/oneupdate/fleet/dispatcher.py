"""Fan an action out to its target sites and collect per-site outcomes.

Every per-site coroutine catches `OneUpdateError` and turns it into an error result, so one
site failing never cancels or hides the others.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

from oneupdate.clients.github import GitHubClient
from oneupdate.clients.site import RemoteSiteClient
from oneupdate.core.errors import OneUpdateError
from oneupdate.core.models import (
    ActionReport,
    ActionRequest,
    ExecutionResult,
    Operation,
    PluginVisibility,
    Site,
)
from oneupdate.fleet.resolver import BulkItem, ResolvedAction
from oneupdate.fleet.shared import SharedPluginLedger
from oneupdate.storage.db import Database

ADD_UPDATE = "add_update"
REMOVE = "remove"

GuardKey = tuple[str, str, str, str]


@dataclass(slots=True)
class DispatchGuard:
    """Coalesces identical workflow dispatches (slug, site, operation, version) within
    `ttl_seconds`. Only code-changing operations take a key."""

    ttl_seconds: float = 60.0
    clock: Callable[[], float] = time.monotonic
    _seen: dict[GuardKey, float] = field(default_factory=dict)

    def acquire(self, key: GuardKey) -> bool:
        now = self.clock()
        self._seen = {seen: at for seen, at in self._seen.items() if now - at < self.ttl_seconds}
        if key in self._seen:
            return False
        self._seen[key] = now
        return True

    def release(self, key: GuardKey) -> None:
        self._seen.pop(key, None)


@dataclass(slots=True)
class DispatchSettings:
    download_base: str = "https://downloads.wordpress.org/plugin"
    branch: str = "production"
    public_workflow: str = "oneupdate-pr-creation.yml"
    private_workflow: str = "oneupdate-pr-creation-private.yml"
    upload_ttl_seconds: int = 3600
    max_concurrency: int = 8


class ExecutionDispatcher:
    def __init__(
        self,
        site_client: RemoteSiteClient,
        github: GitHubClient,
        database: Database,
        *,
        ledger: SharedPluginLedger | None = None,
        settings: DispatchSettings | None = None,
        guard: DispatchGuard | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.site_client = site_client
        self.github = github
        self.database = database
        self.ledger = ledger
        self.settings = settings or DispatchSettings()
        self.guard = guard or DispatchGuard()
        self.logger = logger or logging.getLogger(__name__)

    def archive_url(self, slug: str, version: str) -> str:
        return f"{self.settings.download_base}/{slug}.{version}.zip"

    async def execute(self, resolved: ResolvedAction) -> ActionReport:
        request = resolved.request
        report = ActionReport(
            operation=request.operation.value,
            slug=request.slug,
            skipped=dict(resolved.skipped),
        )
        if resolved.is_noop:
            report.noop = True
            return report

        upload_error = self._check_upload(request)
        semaphore = asyncio.Semaphore(self.settings.max_concurrency)
        outcomes = await asyncio.gather(
            *(self._run_site(site, request, upload_error, semaphore) for site in resolved.targets)
        )
        for results in outcomes:
            for result in results:
                report.add(result)
        self._update_ledger(request, report, resolved)
        self.logger.info(
            "%s %s: %d ok, %d failed across %d site(s)",
            request.operation.value,
            request.slug,
            len(report.results),
            len(report.errors),
            len(resolved.targets),
        )
        return report

    async def bulk_update(
        self,
        items: Sequence[BulkItem],
        sites: Sequence[Site],
        *,
        skipped: Mapping[str, str] | None = None,
    ) -> ActionReport:
        """Dispatch one public-update workflow per (plugin, site) pair."""

        report = ActionReport(operation="bulk-update", slug="*", skipped=dict(skipped or {}))
        semaphore = asyncio.Semaphore(self.settings.max_concurrency)
        jobs = []
        for item in items:
            if item.plugin_type is not PluginVisibility.PUBLIC:
                report.skipped[item.slug] = "private plugins are not bulk updated"
                continue
            request = ActionRequest(
                operation=Operation.UPDATE,
                slug=item.slug,
                sites=list(item.sites),
                version=item.version,
                plugin_path_info=item.plugin_path_info,
            )
            for key in item.sites:
                site = next((candidate for candidate in sites if candidate.matches(key)), None)
                if site is None:
                    report.skipped[f"{item.slug}@{key}"] = "unknown site"
                    continue
                jobs.append(self._run_site(site, request, None, semaphore))
        if not jobs:
            report.noop = True
            return report
        for results in await asyncio.gather(*jobs):
            for result in results:
                report.add(result)
        return report

    async def apply_private(self, sites: Sequence[Site], zip_urls: Sequence[str]) -> ActionReport:
        """Dispatch the private workflow once per (site, archive)."""

        report = ActionReport(operation="apply-private", slug="*")
        semaphore = asyncio.Semaphore(self.settings.max_concurrency)
        jobs = []
        for zip_url in zip_urls:
            request = ActionRequest(
                operation=Operation.INSTALL,
                slug=zip_url.rsplit("/", 1)[-1].split("?", 1)[0],
                plugin_type=PluginVisibility.PRIVATE,
                zip_url=zip_url,
            )
            upload_error = self._check_upload(request)
            jobs.extend(
                self._run_site(site, request, upload_error, semaphore) for site in sites
            )
        if not jobs:
            report.noop = True
            return report
        for results in await asyncio.gather(*jobs):
            for result in results:
                report.add(result)
        return report

    async def _run_site(
        self,
        site: Site,
        request: ActionRequest,
        upload_error: str | None,
        semaphore: asyncio.Semaphore,
    ) -> list[ExecutionResult]:
        key: GuardKey = (request.slug, site.url, request.operation.value, request.version)
        guarded = request.operation.changes_code
        if guarded and not self.guard.acquire(key):
            return [
                self._error(
                    site, request, "duplicate_request", "An identical request is already in flight."
                )
            ]
        async with semaphore:
            if request.operation is Operation.REMOVE:
                results = [
                    await self._mutate(site, request, REMOVE),
                    await self._dispatch(site, request, REMOVE, None),
                ]
            elif request.operation.touches_local_state:
                results = [await self._mutate(site, request, request.operation.value)]
            else:
                results = [await self._dispatch(site, request, ADD_UPDATE, upload_error)]
        if guarded and not all(result.ok for result in results):
            self.guard.release(key)
        return results

    async def _mutate(self, site: Site, request: ActionRequest, option: str) -> ExecutionResult:
        try:
            response = await self.site_client.mutate_options(
                site, [request.dispatch_path], option
            )
        except OneUpdateError as exc:
            self.logger.warning("%s of %s failed on %s: %s", option, request.slug, site.url, exc)
            return self._error(site, request, exc.code, exc.message)
        return ExecutionResult(
            site_url=site.url,
            site_name=site.name,
            operation=request.operation.value,
            slug=request.slug,
            ok=True,
            version=request.version,
            kind="options",
            response=response,
        )

    async def _dispatch(
        self,
        site: Site,
        request: ActionRequest,
        intent: str,
        upload_error: str | None,
    ) -> ExecutionResult:
        if not site.repo:
            return self._error(
                site, request, "no_github_repo", f"No GitHub repository configured for {site.name}."
            )
        if upload_error is not None:
            return self._error(site, request, "upload_expired", upload_error)

        if request.plugin_type is PluginVisibility.PRIVATE and intent == ADD_UPDATE:
            workflow = self.settings.private_workflow
            inputs = {"zip_url": request.zip_url}
        else:
            workflow = self.settings.public_workflow
            version = request.version if intent == ADD_UPDATE else ""
            inputs = {
                "plugin_slug": request.slug,
                "version": version,
                "zip_url": self.archive_url(request.slug, version) if version else "",
                "plugin_type": intent,
            }
        try:
            ticket = await self.github.dispatch(site.repo, workflow, self.settings.branch, inputs)
        except OneUpdateError as exc:
            self.logger.warning("Workflow dispatch failed for %s: %s", site.repo, exc)
            return self._error(site, request, exc.code, exc.message)

        run = await self.github.resolve_run(ticket)
        return ExecutionResult(
            site_url=site.url,
            site_name=site.name,
            operation=request.operation.value,
            slug=request.slug,
            ok=True,
            version=request.version,
            kind="workflow",
            run=run,
            workflow_url=self.github.workflow_url(site.repo, workflow),
        )

    def _check_upload(self, request: ActionRequest) -> str | None:
        """Reject archives whose presigned URL has expired (uploads unknown here pass)."""

        if request.plugin_type is not PluginVisibility.PRIVATE or not request.zip_url:
            return None
        upload = self.database.find_upload_by_url(request.zip_url)
        if upload is None:
            return None
        if upload.is_expired(self.database.now(), self.settings.upload_ttl_seconds):
            return f"Upload {upload.file_name} expired; upload the archive again."
        return None

    def _update_ledger(
        self,
        request: ActionRequest,
        report: ActionReport,
        resolved: ResolvedAction,
    ) -> None:
        if self.ledger is None or not request.operation.changes_code:
            return
        by_url = {site.url: site for site in resolved.targets}
        site_ids = [
            by_url[result.site_url].id
            for result in report.results
            if result.kind == "workflow" and result.site_url in by_url
        ]
        if request.operation is Operation.REMOVE:
            self.ledger.forget(request.slug, site_ids)
        else:
            info = resolved.record.plugin_info if resolved.record is not None else None
            self.ledger.record(
                request.slug,
                site_ids,
                version=request.version,
                plugin_path_info=request.plugin_path_info,
                plugin_info=info,
            )

    @staticmethod
    def _error(site: Site, request: ActionRequest, code: str, message: str) -> ExecutionResult:
        return ExecutionResult(
            site_url=site.url,
            site_name=site.name,
            operation=request.operation.value,
            slug=request.slug,
            ok=False,
            version=request.version,
            code=code,
            error=message,
        )
