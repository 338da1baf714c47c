"""Governing-site endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel, Field

from oneupdate.api.deps import get_services, require_admin
from oneupdate.core.errors import ActionValidationError, InvalidCredentialsError
from oneupdate.core.orchestrator import parse_bulk_items
from oneupdate.services import Services

router = APIRouter(dependencies=[Depends(require_admin)])

REPO_PART = r"^[A-Za-z0-9._-]+$"


class ActionBody(BaseModel):
    action: str = ""
    plugin_slug: str = ""
    sites: list[str] = Field(default_factory=list)
    version: str = ""
    plugin_type: str = "public"
    plugin_path_info: str = ""
    zip_url: str = ""


class BulkBody(BaseModel):
    plugins: list[dict[str, Any]] = Field(default_factory=list)


class PrivateApplyBody(BaseModel):
    sites: list[str] = Field(default_factory=list)
    plugins: list[str] = Field(default_factory=list)


class SitesBody(BaseModel):
    sites_data: list[dict[str, Any]] = Field(default_factory=list)


class SiteTypeBody(BaseModel):
    site_type: str = ""


class TokenBody(BaseModel):
    token: str = ""


class S3Body(BaseModel):
    s3_credentials: Any = None


class UploadBody(BaseModel):
    file_name: str
    s3_key: str
    presigned_url: str


@router.get("/fleet")
async def get_fleet(services: Services = Depends(get_services)) -> dict[str, Any]:
    view = await services.orchestrator.fleet_view()
    return view.to_dict()


@router.post("/execute-plugin-action")
async def execute_plugin_action(
    body: ActionBody, services: Services = Depends(get_services)
) -> dict[str, Any]:
    report = await services.orchestrator.execute_payload(body.model_dump())
    return report.to_dict()


@router.post("/bulk-plugin-update")
async def bulk_plugin_update(
    body: BulkBody, services: Services = Depends(get_services)
) -> dict[str, Any]:
    items = parse_bulk_items(body.model_dump())
    report = await services.orchestrator.bulk_update(items)
    payload = report.to_dict()
    payload["response"] = {
        site: [result.to_dict() for result in results]
        for site, results in report.grouped_by_site().items()
    }
    return payload


@router.post("/apply-private-plugins")
async def apply_private_plugins(
    body: PrivateApplyBody, services: Services = Depends(get_services)
) -> dict[str, Any]:
    report = await services.orchestrator.apply_private(body.sites, body.plugins)
    return report.to_dict()


@router.get("/shared-sites")
def get_shared_sites(services: Services = Depends(get_services)) -> dict[str, Any]:
    return {
        "success": True,
        "shared_sites": [site.to_dict() for site in services.registry.sites()],
    }


@router.post("/shared-sites")
def set_shared_sites(body: SitesBody, services: Services = Depends(get_services)) -> dict[str, Any]:
    sites = services.registry.replace_all(body.sites_data)
    return {"success": True, "sites_data": [site.to_dict() for site in sites]}


@router.get("/site-type")
def get_site_type(services: Services = Depends(get_services)) -> dict[str, Any]:
    return {"site_type": services.registry.site_type().value}


@router.post("/site-type")
def set_site_type(body: SiteTypeBody, services: Services = Depends(get_services)) -> dict[str, Any]:
    return {"site_type": services.registry.set_site_type(body.site_type).value}


@router.get("/github-token")
def get_github_token(services: Services = Depends(get_services)) -> dict[str, Any]:
    return {"success": True, "github_token": services.credentials.github_token()}


@router.post("/github-token")
async def set_github_token(
    body: TokenBody, services: Services = Depends(get_services)
) -> dict[str, Any]:
    token = body.token.strip()
    if not token:
        raise InvalidCredentialsError("GitHub token is required.", code="invalid_github_token")
    await services.github.validate_token(token)
    stored = services.credentials.set_github_token(token)
    return {"success": True, "github_token": stored}


@router.get("/github-repos")
async def get_github_repos(services: Services = Depends(get_services)) -> dict[str, Any]:
    services.credentials.require_github_token()
    repos = await services.github.list_repositories()
    if not repos:
        raise ActionValidationError("No repositories found.", code="no_filtered_repos")
    return {"success": True, "repos": repos, "count": len(repos)}


@router.get("/pull-requests/{owner}/{repo}")
async def get_pull_requests(
    owner: str = Path(pattern=REPO_PART),
    repo: str = Path(pattern=REPO_PART),
    state: str = Query(default="all", pattern="^(open|closed|all|merged)$"),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=25, ge=1, le=100),
    search_query: str = "",
    pr_number: int | None = Query(default=None, ge=1),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    services.credentials.require_github_token()
    full_name = f"{owner}/{repo}"
    if pr_number is not None:
        pull = await services.github.get_pull_request(full_name, pr_number)
        return {"success": True, "pull_request": pull}
    listing = await services.github.list_pull_requests(
        full_name, state=state, page=page, per_page=per_page, search_query=search_query
    )
    return listing.to_dict()


@router.get("/s3-credentials")
def get_s3_credentials(services: Services = Depends(get_services)) -> dict[str, Any]:
    return {"success": True, "s3_credentials": services.credentials.s3_credentials()}


@router.post("/s3-credentials")
def set_s3_credentials(body: S3Body, services: Services = Depends(get_services)) -> dict[str, Any]:
    stored = services.credentials.set_s3_credentials(body.s3_credentials)
    return {"success": True, "s3_credentials": stored}


@router.get("/history")
def get_history(services: Services = Depends(get_services)) -> dict[str, Any]:
    uploads = services.database.list_uploads()
    return {"success": True, "history": [upload.to_dict() for upload in uploads]}


@router.post("/history")
def record_upload(body: UploadBody, services: Services = Depends(get_services)) -> dict[str, Any]:
    upload = services.database.record_upload(body.file_name, body.s3_key, body.presigned_url)
    return {"success": True, "upload": upload.to_dict()}
