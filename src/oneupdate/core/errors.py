"""Exception hierarchy shared by every OneUpdate component."""

from __future__ import annotations

from typing import Any


class OneUpdateError(Exception):
    """Base error. `code` is the machine-readable identifier returned over HTTP."""

    code = "oneupdate_error"
    http_status = 500

    def __init__(self, message: str, *, code: str | None = None, **data: Any) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "data": {"status": self.http_status, **self.data},
        }


class ConfigurationError(OneUpdateError):
    """A required setting (token, site type, credentials) is missing. Never retried."""

    code = "configuration_missing"
    http_status = 400


class RemoteError(OneUpdateError):
    """A single remote call failed."""

    code = "remote_error"
    http_status = 502


class RemoteUnreachableError(RemoteError):
    """Transport failure or timeout talking to a remote endpoint."""

    code = "remote_unreachable"


class RemoteResponseError(RemoteError):
    """Remote answered with an unexpected status or a malformed body."""

    code = "remote_response"

    def __init__(self, message: str, *, status_code: int | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code


class ValidationError(OneUpdateError):
    """Caller input rejected before any side effect."""

    code = "invalid_request"
    http_status = 400


class InvalidActionError(ValidationError):
    code = "invalid_action"


class ActionValidationError(ValidationError):
    code = "invalid_action_request"


class DuplicateSiteError(ValidationError):
    code = "duplicate_site_url"


class UnknownSiteError(ValidationError):
    code = "unknown_site"
    http_status = 404


class InvalidCredentialsError(ValidationError):
    code = "invalid_credentials"


class AuthenticationError(OneUpdateError):
    code = "rest_forbidden"
    http_status = 401


class NoPluginsFoundError(OneUpdateError):
    """The local WordPress install reported no plugins at all."""

    code = "no_plugins_found"
    http_status = 404


class PluginHostError(OneUpdateError):
    """The local plugin host (WP-CLI) failed to run a command."""

    code = "plugin_host_error"
    http_status = 500


__all__ = [
    "ActionValidationError",
    "AuthenticationError",
    "ConfigurationError",
    "DuplicateSiteError",
    "InvalidActionError",
    "InvalidCredentialsError",
    "NoPluginsFoundError",
    "OneUpdateError",
    "PluginHostError",
    "RemoteError",
    "RemoteResponseError",
    "RemoteUnreachableError",
    "UnknownSiteError",
    "ValidationError",
]
