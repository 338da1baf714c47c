"""Request dependencies: service lookup and the two authentication schemes."""

from __future__ import annotations

import hmac

from fastapi import Depends, Header, Query, Request

from oneupdate.clients.site import TOKEN_HEADER
from oneupdate.core.errors import AuthenticationError
from oneupdate.services import Services

ADMIN_HEADER = "X-OneUpdate-Admin-Token"


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_admin(
    services: Services = Depends(get_services),
    authorization: str | None = Header(default=None),
    admin_token: str | None = Header(default=None, alias=ADMIN_HEADER),
) -> None:
    """Admin endpoints. Closed until an admin token is configured."""

    expected = services.config.admin_token()
    if not expected:
        raise AuthenticationError(
            "Admin endpoints are disabled: no admin token is configured.",
            code="admin_token_not_configured",
        )
    supplied = admin_token
    if supplied is None and authorization and authorization.lower().startswith("bearer "):
        supplied = authorization[7:].strip()
    if not supplied or not hmac.compare_digest(supplied.encode(), expected.encode()):
        raise AuthenticationError("Admin token missing or invalid.")


def require_site_token(
    services: Services = Depends(get_services),
    token: str | None = Header(default=None, alias=TOKEN_HEADER),
) -> None:
    """Brand-site endpoints called by the governing site."""

    if not services.credentials.verify_token(token):
        raise AuthenticationError("Invalid or missing plugins token.")


def require_webhook_secret(
    services: Services = Depends(get_services),
    secret: str = Query(default=""),
) -> None:
    if not services.credentials.verify_token(secret):
        raise AuthenticationError("Invalid webhook secret.")
