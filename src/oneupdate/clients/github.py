"""GitHub REST client: workflow dispatch, run lookup, token checks, repo and PR listings."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from oneupdate.core.errors import (
    ActionValidationError,
    ConfigurationError,
    InvalidCredentialsError,
    OneUpdateError,
    RemoteResponseError,
    RemoteUnreachableError,
)
from oneupdate.core.models import DispatchTicket, RunRef

REPOS_PER_PAGE = 100
RUNS_PER_POLL = 10
# Clock difference tolerated between this host and GitHub.
RUN_CLOCK_SKEW = timedelta(seconds=2)

PULLS_PER_PAGE = 25
MAX_PULLS_PER_PAGE = 100
PULL_STATES = ("open", "closed", "all", "merged")


def _user(value: Any) -> dict[str, str] | None:
    if not isinstance(value, Mapping):
        return None
    return {
        "login": str(value.get("login") or ""),
        "avatar_url": str(value.get("avatar_url") or ""),
        "html_url": str(value.get("html_url") or ""),
    }


def format_pull_request(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Reduce a GitHub pull request (or search hit) to the fields the admin listing shows."""

    head = raw.get("head") if isinstance(raw.get("head"), Mapping) else {}
    base = raw.get("base") if isinstance(raw.get("base"), Mapping) else {}
    # Search hits carry merge info under `pull_request`.
    merged_at = raw.get("merged_at")
    if merged_at is None and isinstance(raw.get("pull_request"), Mapping):
        merged_at = raw["pull_request"].get("merged_at")
    return {
        "id": raw.get("id"),
        "number": raw.get("number"),
        "title": raw.get("title") or "",
        "state": raw.get("state") or "",
        "user": _user(raw.get("user")) or _user({}),
        "labels": [
            label.get("name") for label in raw.get("labels") or [] if isinstance(label, Mapping)
        ],
        "html_url": raw.get("html_url") or "",
        "body": raw.get("body") or "",
        "created_at": raw.get("created_at") or "",
        "updated_at": raw.get("updated_at") or "",
        "closed_at": raw.get("closed_at"),
        "merged_at": merged_at,
        "merged": raw.get("merged"),
        "merged_by": _user(raw.get("merged_by")),
        "pr_branch": head.get("ref", ""),
        "base_branch": base.get("ref", ""),
        "draft": raw.get("draft"),
    }


@dataclass(slots=True)
class PullRequestPage:
    pull_requests: list[dict[str, Any]]
    page: int
    per_page: int
    total_pages: int
    total_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "pull_requests": self.pull_requests,
            "pagination": {
                "current_page": self.page,
                "per_page": self.per_page,
                "total_pages": self.total_pages,
                "total_count": self.total_count,
            },
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_github_time(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass(slots=True)
class GitHubClient:
    """Dispatches CI workflows. `token_provider` is read per call so token changes apply live."""

    logger: logging.Logger
    token_provider: Callable[[], str]
    api_base: str = "https://api.github.com"
    web_base: str = "https://github.com"
    timeout: float = 30.0
    poll_timeout: float = 15.0
    user_agent: str = "OneUpdate Plugin Loader"
    run_poll_attempts: int = 4
    run_poll_initial_seconds: float = 2.0
    run_poll_max_seconds: float = 10.0
    transport: httpx.AsyncBaseTransport | None = None
    clock: Callable[[], datetime] = field(default=_utcnow)
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    _claimed: set[tuple[str, int]] = field(default_factory=set)

    def run_url(self, repo: str, run_id: int) -> str:
        return f"{self.web_base}/{repo}/actions/runs/{run_id}"

    def workflow_url(self, repo: str, workflow: str) -> str:
        return f"{self.web_base}/{repo}/actions/workflows/{workflow}"

    async def dispatch(
        self,
        repo: str,
        workflow: str,
        ref: str,
        inputs: Mapping[str, str],
    ) -> DispatchTicket:
        """Trigger `workflow` on `repo`. GitHub answers 204 without a run id."""

        dispatched_at = self.clock()
        payload = {"ref": ref, "inputs": dict(inputs)}
        response = await self._send(
            "POST",
            f"/repos/{repo}/actions/workflows/{workflow}/dispatches",
            timeout=self.timeout,
            json=payload,
        )
        if response.status_code != 204:
            raise RemoteResponseError(
                f"Failed to trigger GitHub Action on {repo}: HTTP {response.status_code}",
                code="github_action_failed",
                status_code=response.status_code,
            )
        self.logger.info("Dispatched %s on %s@%s", workflow, repo, ref)
        return DispatchTicket(
            repo=repo,
            workflow=workflow,
            ref=ref,
            inputs=dict(inputs),
            dispatched_at=dispatched_at,
        )

    async def resolve_run(self, ticket: DispatchTicket) -> RunRef | None:
        """Poll for the run created by `ticket`; None when it has not appeared in time.

        Only runs created at or after the dispatch (within `RUN_CLOCK_SKEW`) qualify, and a run
        handed to one ticket is never handed to another.
        """

        if self.run_poll_initial_seconds > 0:
            await self.sleep(self.run_poll_initial_seconds)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.run_poll_attempts),
            wait=wait_exponential(
                multiplier=self.run_poll_initial_seconds, max=self.run_poll_max_seconds
            )
            + wait_random(0, self.run_poll_initial_seconds / 2),
            retry=retry_if_result(lambda run: run is None),
            retry_error_callback=lambda state: None,
            sleep=self.sleep,
        )
        run = await retrying(self._poll_run, ticket)
        if run is None:
            self.logger.info(
                "No run found yet for %s on %s; reference pending", ticket.workflow, ticket.repo
            )
        return run

    async def _poll_run(self, ticket: DispatchTicket) -> RunRef | None:
        try:
            response = await self._send(
                "GET",
                f"/repos/{ticket.repo}/actions/workflows/{ticket.workflow}/runs",
                timeout=self.poll_timeout,
                params={
                    "per_page": RUNS_PER_POLL,
                    "event": "workflow_dispatch",
                    "branch": ticket.ref,
                },
            )
        except OneUpdateError as exc:
            self.logger.debug("Run lookup for %s failed: %s", ticket.repo, exc)
            return None
        if response.status_code != 200:
            return None
        try:
            runs = response.json().get("workflow_runs") or []
        except (ValueError, AttributeError):
            return None
        earliest = ticket.dispatched_at - RUN_CLOCK_SKEW
        candidates: list[tuple[datetime, int]] = []
        for run in runs if isinstance(runs, list) else []:
            if not isinstance(run, Mapping) or "id" not in run:
                continue
            created_at = _parse_github_time(run.get("created_at"))
            run_id = int(run["id"])
            if created_at is None or created_at < earliest:
                continue
            if (ticket.repo, run_id) in self._claimed:
                continue
            candidates.append((created_at, run_id))
        if not candidates:
            return None
        # Oldest unclaimed run created after the dispatch.
        _, run_id = min(candidates)
        self._claimed.add((ticket.repo, run_id))
        return RunRef(run_id=run_id, run_url=self.run_url(ticket.repo, run_id))

    async def validate_token(self, token: str) -> dict[str, Any]:
        """Check `token` against `GET /user`; raises `InvalidCredentialsError` when refused."""

        try:
            response = await self._send("GET", "/user", timeout=self.timeout, token=token)
        except RemoteUnreachableError as exc:
            raise InvalidCredentialsError(
                "Invalid GitHub token provided.", code="invalid_github_token", error=str(exc)
            ) from exc
        if response.status_code != 200:
            raise InvalidCredentialsError(
                "Invalid GitHub token provided.",
                code="invalid_github_token",
                error=response.status_code,
            )
        return response.json()

    async def list_repositories(self) -> list[dict[str, str]]:
        """Return every repository the token can reach, following pagination."""

        repos: list[dict[str, str]] = []
        page = 1
        while True:
            response = await self._send(
                "GET",
                "/user/repos",
                timeout=self.timeout,
                params={
                    "affiliation": "owner,organization,collaborator",
                    "per_page": REPOS_PER_PAGE,
                    "page": page,
                },
            )
            if response.status_code != 200:
                raise RemoteResponseError(
                    "Failed to fetch GitHub repositories.",
                    code="github_api_error",
                    status_code=response.status_code,
                )
            try:
                batch = response.json()
            except ValueError as exc:
                raise RemoteResponseError("Malformed repository listing from GitHub.") from exc
            if not isinstance(batch, list) or not batch:
                break
            repos.extend(
                {"slug": repo["full_name"], "name": repo["name"], "url": repo["html_url"]}
                for repo in batch
                if isinstance(repo, Mapping) and "full_name" in repo
            )
            if len(batch) < REPOS_PER_PAGE:
                break
            page += 1
        return repos

    async def list_pull_requests(
        self,
        repo: str,
        *,
        state: str = "all",
        page: int = 1,
        per_page: int = PULLS_PER_PAGE,
        search_query: str = "",
    ) -> PullRequestPage:
        """One page of `repo`'s pull requests, optionally narrowed by a search query.

        Plain listings use the pulls API and read the page count from the `Link` header;
        searches go through the issue search API, which reports `total_count` itself.
        """

        if state not in PULL_STATES:
            raise ActionValidationError(
                f"Invalid pull request state: {state!r}", code="invalid_state"
            )
        per_page = max(1, min(per_page, MAX_PULLS_PER_PAGE))
        page = max(1, page)
        query = search_query.strip()

        if query:
            terms = [query, f"repo:{repo}", "type:pr"]
            if state == "merged":
                terms.append("is:merged")
            elif state != "all":
                terms.append(f"state:{state}")
            body, _ = await self._get_json(
                "/search/issues",
                params={"q": " ".join(terms), "per_page": per_page, "page": page},
            )
            items = body.get("items") if isinstance(body, Mapping) else None
            pulls = [format_pull_request(item) for item in items or [] if isinstance(item, Mapping)]
            total_count = int(body.get("total_count") or 0) if isinstance(body, Mapping) else 0
            total_pages = max(1, math.ceil(total_count / per_page))
        else:
            api_state = "closed" if state == "merged" else state
            body, response = await self._get_json(
                f"/repos/{repo}/pulls",
                params={"state": api_state, "per_page": per_page, "page": page},
            )
            pulls = [format_pull_request(item) for item in body or [] if isinstance(item, Mapping)]
            if state == "merged":
                pulls = [pull for pull in pulls if pull["merged_at"]]
            last = response.links.get("last", {}).get("url")
            if last:
                total_pages = int(httpx.URL(last).params.get("page", page))
                total_count = total_pages * per_page
            else:
                total_pages = page
                total_count = (page - 1) * per_page + len(pulls)

        return PullRequestPage(
            pull_requests=pulls,
            page=page,
            per_page=per_page,
            total_pages=total_pages,
            total_count=total_count,
        )

    async def get_pull_request(self, repo: str, number: int) -> dict[str, Any]:
        body, _ = await self._get_json(f"/repos/{repo}/pulls/{number}")
        if not isinstance(body, Mapping):
            raise RemoteResponseError(f"Malformed pull request #{number} from GitHub.")
        return format_pull_request(body)

    async def _get_json(
        self, path: str, *, params: Mapping[str, Any] | None = None
    ) -> tuple[Any, httpx.Response]:
        response = await self._send("GET", path, timeout=self.poll_timeout, params=params)
        if response.status_code != 200:
            raise RemoteResponseError(
                f"GitHub API returned status code {response.status_code}.",
                code="github_api_error",
                status_code=response.status_code,
            )
        try:
            return response.json(), response
        except ValueError as exc:
            raise RemoteResponseError(f"Malformed JSON from GitHub {path}") from exc

    async def _send(
        self,
        method: str,
        path: str,
        *,
        timeout: float,
        token: str | None = None,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> httpx.Response:
        token = token or self.token_provider()
        if not token:
            raise ConfigurationError("GitHub token not found.", code="no_github_token")
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": self.user_agent,
        }
        url = f"{self.api_base}{path}"
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                return await client.request(method, url, headers=headers, json=json, params=params)
        except httpx.TimeoutException as exc:
            raise RemoteUnreachableError(f"Timeout calling GitHub {path}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise RemoteUnreachableError(f"HTTP error calling GitHub {path}: {exc}") from exc
