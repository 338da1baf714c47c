"""Brand-site endpoints polled and called by the governing site."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from oneupdate.api.deps import (
    get_services,
    require_admin,
    require_site_token,
    require_webhook_secret,
)
from oneupdate.core.errors import ActionValidationError
from oneupdate.services import Services

router = APIRouter()


class OptionsPayload(BaseModel):
    plugins: list[str] = Field(default_factory=list)
    plugin_type: str = "add_update"


class OptionsBody(BaseModel):
    options: OptionsPayload | None = None


class PluginEventBody(BaseModel):
    event: str
    plugin: str = ""
    action: str = ""
    type: str = ""


@router.get("/get_plugins", dependencies=[Depends(require_site_token)])
async def get_plugins(services: Services = Depends(get_services)) -> dict[str, Any]:
    plugins = await services.cache.get_snapshot()
    payload = {slug: record.to_dict() for slug, record in plugins.items()}
    return {"success": True, "plugins": payload}


@router.get("/oneupdate-plugins-options", dependencies=[Depends(require_site_token)])
def get_plugin_options(services: Services = Depends(get_services)) -> dict[str, Any]:
    return {"success": True, "options": services.options.managed_plugins()}


@router.post("/oneupdate-plugins-options", dependencies=[Depends(require_site_token)])
async def set_plugin_options(
    body: OptionsBody, services: Services = Depends(get_services)
) -> dict[str, Any]:
    if body.options is None:
        raise ActionValidationError("Invalid options provided.", code="invalid_options")
    return await services.options.apply(body.options.plugins, body.options.plugin_type)


@router.api_route(
    "/webhook/rebuild-transient",
    methods=["GET", "POST"],
    dependencies=[Depends(require_webhook_secret)],
)
async def rebuild_transient(services: Services = Depends(get_services)) -> dict[str, Any]:
    await services.cache.invalidate()
    plugins = await services.cache.rebuild_full()
    return {
        "success": True,
        "message": "Transient rebuilt successfully.",
        "count": len(plugins),
    }


@router.post("/webhook/plugin-event", dependencies=[Depends(require_site_token)])
async def plugin_event(
    body: PluginEventBody, services: Services = Depends(get_services)
) -> dict[str, Any]:
    handled = await services.hooks.dispatch(
        body.event, plugin=body.plugin, action=body.action, kind=body.type
    )
    if not handled:
        raise ActionValidationError(f"Unknown plugin event: {body.event!r}", code="invalid_event")
    return {"success": True, "event": body.event, "applied": services.hooks.enabled}


@router.get("/health-check", dependencies=[Depends(require_site_token)])
def health_check() -> dict[str, Any]:
    return {"success": True, "message": "Health check passed successfully."}


@router.get("/secret-key", dependencies=[Depends(require_admin)])
def get_secret_key(services: Services = Depends(get_services)) -> dict[str, Any]:
    return {"success": True, "secret_key": services.credentials.public_key()}


@router.put("/secret-key", dependencies=[Depends(require_admin)])
def regenerate_secret_key(services: Services = Depends(get_services)) -> dict[str, Any]:
    return {
        "success": True,
        "message": "Secret key regenerated successfully.",
        "secret_key": services.credentials.regenerate_public_key(),
    }
