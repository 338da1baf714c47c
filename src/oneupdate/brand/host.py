"""Access to the local WordPress install's plugins."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Protocol

from oneupdate.core.errors import PluginHostError

LIST_FIELDS = (
    "name",
    "title",
    "status",
    "version",
    "update",
    "update_version",
    "update_package",
    "file",
    "author",
    "description",
)


@dataclass(slots=True)
class InstalledPlugin:
    """Header data for one installed plugin, keyed by its install path (`dir/file.php`)."""

    path: str
    name: str
    version: str
    is_active: bool = False
    author: str = ""
    description: str = ""
    plugin_uri: str = ""
    requires_wp: str = ""
    requires_php: str = ""
    update: dict[str, Any] | None = None


class PluginHost(Protocol):
    """What the snapshot cache and options endpoint need from WordPress."""

    async def installed_plugins(self) -> list[InstalledPlugin]:
        ...

    async def is_active(self, path: str) -> bool:
        ...

    async def activate(self, path: str) -> None:
        ...

    async def deactivate(self, path: str) -> None:
        ...


def wp_cli_name(path: str) -> str:
    """WP-CLI addresses plugins by directory (`akismet`) or file stem (`hello`)."""

    pure = PurePosixPath(path)
    return pure.parts[0] if len(pure.parts) > 1 else pure.stem


@dataclass(slots=True)
class WpCliPluginHost:
    """Drives WP-CLI in a subprocess against the WordPress root at `wp_path`."""

    logger: logging.Logger
    wp_cli: str = "wp"
    wp_path: Path | None = None
    timeout: float = 120.0
    extra_args: tuple[str, ...] = field(default_factory=tuple)

    async def installed_plugins(self) -> list[InstalledPlugin]:
        output = await self._run(
            "plugin", "list", "--format=json", f"--fields={','.join(LIST_FIELDS)}"
        )
        try:
            rows = json.loads(output or "[]")
        except json.JSONDecodeError as exc:
            raise PluginHostError(f"Unreadable `wp plugin list` output: {exc}") from exc
        return [_plugin_from_row(row) for row in rows if isinstance(row, dict) and row.get("file")]

    async def is_active(self, path: str) -> bool:
        returncode, _, _ = await self._exec("plugin", "is-active", wp_cli_name(path))
        return returncode == 0

    async def activate(self, path: str) -> None:
        await self._run("plugin", "activate", wp_cli_name(path))
        self.logger.info("Activated %s", path)

    async def deactivate(self, path: str) -> None:
        await self._run("plugin", "deactivate", wp_cli_name(path))
        self.logger.info("Deactivated %s", path)

    async def _run(self, *args: str) -> str:
        returncode, stdout, stderr = await self._exec(*args)
        if returncode != 0:
            self.logger.error("wp %s failed (%s): %s", " ".join(args), returncode, stderr or stdout)
            raise PluginHostError(f"wp {' '.join(args)} exited with {returncode}: {stderr}")
        if stderr:
            self.logger.debug("wp %s warnings: %s", " ".join(args), stderr)
        return stdout

    async def _exec(self, *args: str) -> tuple[int, str, str]:
        command = [self.wp_cli, *args, *self.extra_args]
        if self.wp_path is not None:
            command.append(f"--path={self.wp_path}")
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise PluginHostError(f"Unable to run {self.wp_cli}: {exc}") from exc
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise PluginHostError(f"wp {' '.join(args)} timed out after {self.timeout}s") from exc
        return process.returncode or 0, stdout_bytes.decode().strip(), stderr_bytes.decode().strip()


def _plugin_from_row(row: dict[str, Any]) -> InstalledPlugin:
    update = None
    if row.get("update") == "available":
        update = {
            "new_version": str(row.get("update_version") or ""),
            "package": str(row.get("update_package") or ""),
        }
    return InstalledPlugin(
        path=str(row["file"]),
        name=str(row.get("title") or row.get("name") or ""),
        version=str(row.get("version") or ""),
        is_active=str(row.get("status", "")).startswith("active"),
        author=str(row.get("author") or ""),
        description=str(row.get("description") or ""),
        update=update,
    )
