"""OneUpdate package initialization."""

from __future__ import annotations

import tomllib
from functools import lru_cache
from importlib import metadata
from pathlib import Path

PACKAGE_NAME = "oneupdate"


def _find_pyproject(start: Path) -> Path | None:
    for candidate in (start, *start.parents):
        path = candidate / "pyproject.toml"
        if path.is_file():
            return path
    return None


def _project_version(pyproject: Path) -> str | None:
    try:
        with pyproject.open("rb") as handle:
            project = tomllib.load(handle).get("project")
    except (OSError, tomllib.TOMLDecodeError):  # pragma: no cover - filesystem errors
        return None

    if not isinstance(project, dict) or project.get("name") != PACKAGE_NAME:
        return None
    version = project.get("version")
    if isinstance(version, str) and version.strip():
        return version.strip()
    return None


@lru_cache(maxsize=1)
def get_version() -> str:
    """Return the OneUpdate version.

    A source checkout reads `[project].version` from `pyproject.toml`; an installed copy uses
    the package metadata generated from the same file.
    """

    pyproject = _find_pyproject(Path(__file__).resolve().parent)
    if pyproject is not None:
        version = _project_version(pyproject)
        if version is not None:
            return version

    try:
        return metadata.version(PACKAGE_NAME)
    except metadata.PackageNotFoundError as exc:  # pragma: no cover - occurs in dev
        raise RuntimeError("Unable to determine OneUpdate version.") from exc


__all__ = ["PACKAGE_NAME", "get_version"]
