"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from oneupdate import get_version
from oneupdate.api import brand, governing
from oneupdate.core.errors import OneUpdateError
from oneupdate.services import Services

NAMESPACE = "/oneupdate/v1"


def create_app(services: Services) -> FastAPI:
    app = FastAPI(title="OneUpdate", version=get_version())
    app.state.services = services
    app.include_router(governing.router, prefix=NAMESPACE)
    app.include_router(brand.router, prefix=NAMESPACE)

    @app.exception_handler(OneUpdateError)
    async def _handle_oneupdate_error(request: Request, exc: OneUpdateError) -> JSONResponse:
        level = services.logger.warning if exc.http_status >= 500 else services.logger.info
        level("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    return app
