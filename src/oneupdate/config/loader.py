"""Configuration loading for OneUpdate."""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

DEFAULT_CONFIG_PATH = Path("config/default.yaml")
LOCAL_CONFIG_PATH = Path("config/local.yaml")

GITHUB_TOKEN_ENV = "ONEUPDATE_GITHUB_TOKEN"
ADMIN_TOKEN_ENV = "ONEUPDATE_ADMIN_TOKEN"

SITE_TYPES = frozenset({"", "governing-site", "brand-site"})


class LoggingSettings(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")

    path: Path | None = None
    level: str = Field(default="info")

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        if not isinstance(value, str):
            raise TypeError("Logging level must be a string.")
        normalized = value.strip().lower()
        if normalized not in {"debug", "info", "warn", "warning", "error", "critical"}:
            raise ValueError(f"Unsupported logging level: {value!r}")
        return normalized


class SiteSettings(BaseModel):
    """Role of this installation. The stored site-type flag wins once set."""

    model_config = ConfigDict(extra="forbid")

    type: str = ""
    name: str = ""
    wp_cli: str = "wp"
    wp_path: Path | None = None
    wp_timeout_seconds: float = Field(default=120.0, gt=0.0)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise TypeError("Site type must be a string.")
        normalized = value.strip().lower()
        if normalized not in SITE_TYPES:
            raise ValueError(f"Unsupported site type: {value!r}")
        return normalized


class StorageSettings(BaseModel):
    """Storage configuration."""

    model_config = ConfigDict(extra="forbid")

    path: Path | None = None


class HttpSettings(BaseModel):
    """Timeouts and fan-out limits for calls to brand sites."""

    model_config = ConfigDict(extra="forbid")

    site_timeout_seconds: float = Field(default=30.0, gt=0.0)
    health_timeout_seconds: float = Field(default=5.0, gt=0.0)
    max_concurrency: int = Field(default=8, ge=1)


class RegistrySettings(BaseModel):
    """wordpress.org plugin directory lookup."""

    model_config = ConfigDict(extra="forbid")

    api_base: str = "https://api.wordpress.org/plugins/info/1.0"
    download_base: str = "https://downloads.wordpress.org/plugin"
    timeout_seconds: float = Field(default=5.0, gt=0.0)
    fields: list[str] = Field(default_factory=lambda: ["icons", "versions"])

    @field_validator("api_base", "download_base")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class GitHubSettings(BaseModel):
    """GitHub Actions workflow dispatch settings."""

    model_config = ConfigDict(extra="forbid")

    api_base: str = "https://api.github.com"
    web_base: str = "https://github.com"
    branch: str = "production"
    workflow: str = "oneupdate-pr-creation.yml"
    private_workflow: str = "oneupdate-pr-creation-private.yml"
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    poll_timeout_seconds: float = Field(default=15.0, gt=0.0)
    run_poll_attempts: int = Field(default=4, ge=1)
    run_poll_initial_seconds: float = Field(default=2.0, ge=0.0)
    run_poll_max_seconds: float = Field(default=10.0, ge=0.0)
    user_agent: str = "OneUpdate Plugin Loader"

    @field_validator("api_base", "web_base")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class CacheSettings(BaseModel):
    """Brand-site plugin snapshot cache."""

    model_config = ConfigDict(extra="forbid")

    ttl_seconds: int = Field(default=3600, ge=1)


class DispatchSettings(BaseModel):
    """Execution dispatcher settings."""

    model_config = ConfigDict(extra="forbid")

    dedupe_ttl_seconds: float = Field(default=60.0, ge=0.0)


class CleanupSettings(BaseModel):
    """Upload expiry and history retention."""

    model_config = ConfigDict(extra="forbid")

    upload_ttl_seconds: int = Field(default=3600, ge=1)
    history_retention_days: int = Field(default=7, ge=1)
    batch_size: int = Field(default=1000, ge=1)
    pause_seconds: float = Field(default=2.0, ge=0.0)


class ServerSettings(BaseModel):
    """HTTP server binding and admin authentication."""

    model_config = ConfigDict(extra="forbid")

    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)
    admin_token: str | None = None


class ConfigModel(BaseModel):
    """Root configuration model."""

    model_config = ConfigDict(extra="forbid")

    version: int = 1
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    site: SiteSettings = Field(default_factory=SiteSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    github: GitHubSettings = Field(default_factory=GitHubSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    cleanup: CleanupSettings = Field(default_factory=CleanupSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


@dataclass(slots=True)
class Config:
    """Validated configuration with convenience helpers."""

    model: ConfigModel
    raw: Mapping[str, Any] = field(repr=False)
    loaded_from: tuple[str, ...] = field(default_factory=tuple, repr=False)

    @property
    def logging(self) -> LoggingSettings:
        return self.model.logging

    @property
    def site(self) -> SiteSettings:
        return self.model.site

    @property
    def storage(self) -> StorageSettings:
        return self.model.storage

    @property
    def http(self) -> HttpSettings:
        return self.model.http

    @property
    def registry(self) -> RegistrySettings:
        return self.model.registry

    @property
    def github(self) -> GitHubSettings:
        return self.model.github

    @property
    def cache(self) -> CacheSettings:
        return self.model.cache

    @property
    def dispatch(self) -> DispatchSettings:
        return self.model.dispatch

    @property
    def cleanup(self) -> CleanupSettings:
        return self.model.cleanup

    @property
    def server(self) -> ServerSettings:
        return self.model.server

    def database_path(self) -> Path:
        """Return the SQLite path, defaulting to `oneupdate.sqlite` in the working directory."""

        path = self.storage.path or Path("oneupdate.sqlite")
        return path if path.is_absolute() else Path.cwd() / path

    def github_token_override(self) -> str | None:
        """Return the GitHub token from the environment, if one is set."""

        return _env_value(GITHUB_TOKEN_ENV)

    def admin_token(self) -> str | None:
        """Return the admin token; the environment wins over the YAML value."""

        return _env_value(ADMIN_TOKEN_ENV) or self.server.admin_token

    def model_dump(self) -> Mapping[str, Any]:
        return self.model.model_dump()


def load_config(path: Path | None = None) -> Config:
    """Load configuration from defaults/local overrides, or from an explicit config document.

    An explicit document is layered over the packaged defaults, so it only needs the keys it
    changes.
    """

    merged: dict[str, Any] = {}
    loaded_from: list[str] = []

    packaged_default = _resolve_packaged_path(DEFAULT_CONFIG_PATH)
    if packaged_default and packaged_default.exists():
        merged = _merge_dicts(merged, _read_yaml(packaged_default))
        loaded_from.append(str(packaged_default))
    else:
        packaged_payload = _read_packaged_yaml("oneupdate.config", "default.yaml")
        if packaged_payload is not None:
            merged = _merge_dicts(merged, packaged_payload)
            loaded_from.append("oneupdate.config:default.yaml")

    if path is not None:
        override_path = _resolve_path(path)
        if not override_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        merged = _merge_dicts(merged, _read_yaml(override_path))
        loaded_from.append(str(override_path))
    else:
        for candidate in (_resolve_path(DEFAULT_CONFIG_PATH), _resolve_path(LOCAL_CONFIG_PATH)):
            if candidate.exists():
                merged = _merge_dicts(merged, _read_yaml(candidate))
                loaded_from.append(str(candidate))

    if not merged:
        raise FileNotFoundError("No configuration data could be loaded.")

    try:
        model = ConfigModel.model_validate(merged)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc

    return Config(model=model, raw=merged, loaded_from=tuple(loaded_from))


def _env_value(name: str) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or None


def _resolve_path(path: Path) -> Path:
    """Resolve configuration paths relative to the current working directory."""

    return path if path.is_absolute() else Path.cwd() / path


def _resolve_packaged_path(path: Path) -> Path | None:
    """Resolve paths embedded in packaged binaries (e.g., PyInstaller)."""

    base = getattr(sys, "_MEIPASS", None)
    if not base:
        return None
    return Path(base) / path


def _read_yaml(path: Path) -> dict[str, Any]:
    content = path.read_text(encoding="utf-8")
    data = yaml.safe_load(content) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must define a mapping at the top level.")
    return data


def _read_packaged_yaml(package: str, name: str) -> dict[str, Any] | None:
    """Read YAML embedded in a Python package via importlib.resources."""

    try:
        content = resources.files(package).joinpath(name).read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    data = yaml.safe_load(content) or {}
    if not isinstance(data, dict):
        raise ValueError(
            f"Packaged configuration {package}:{name} must define a mapping at the top level."
        )
    return data


def _merge_dicts(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge two dictionaries, with override values taking precedence."""

    result: dict[str, Any] = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_dicts(result[key], value)
        else:
            result[key] = value
    return result
