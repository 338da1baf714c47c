"""Version ordering and the stable-release filter offered for updates and rollbacks."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from functools import cmp_to_key

UNSTABLE_MARKERS = ("alpha", "beta", "rc", "dev")
MAX_OFFERED_VERSIONS = 5

_LEADING_DIGITS = re.compile(r"\d+")


@dataclass(frozen=True, slots=True)
class VersionOption:
    value: str
    label: str
    latest: bool = False


def is_stable(version: str) -> bool:
    lowered = version.strip().lower()
    if not lowered or lowered == "trunk":
        return False
    return not any(marker in lowered for marker in UNSTABLE_MARKERS)


def _components(version: str) -> list[int]:
    parts: list[int] = []
    for chunk in version.strip().split("."):
        match = _LEADING_DIGITS.match(chunk)
        parts.append(int(match.group()) if match else 0)
    return parts


def numeric_compare(left: str, right: str) -> int:
    """Compare dot-separated versions numerically; missing components count as 0."""

    a, b = _components(left), _components(right)
    width = max(len(a), len(b))
    a += [0] * (width - len(a))
    b += [0] * (width - len(b))
    return (a > b) - (a < b)


def compare_versions(left: str, right: str) -> int:
    """Total order: numeric first, then plain string comparison for ties like `2.0`/`2.0.0`."""

    result = numeric_compare(left, right)
    if result:
        return result
    return (left > right) - (left < right)


def sort_versions(versions: Iterable[str], *, descending: bool = True) -> list[str]:
    return sorted(set(versions), key=cmp_to_key(compare_versions), reverse=descending)


def is_newer(candidate: str, installed: str) -> bool:
    """True when `candidate` is a strictly higher release than `installed`."""

    if not candidate:
        return False
    return numeric_compare(installed or "0", candidate) < 0


def stable_versions(
    versions: Iterable[str], limit: int = MAX_OFFERED_VERSIONS
) -> list[VersionOption]:
    """Newest stable versions first, at most `limit`; the first is labelled latest."""

    ordered = sort_versions(version for version in versions if is_stable(version))[:limit]
    return [
        VersionOption(
            value=version,
            label=f"{version} (Latest)" if index == 0 else version,
            latest=index == 0,
        )
        for index, version in enumerate(ordered)
    ]


def latest_stable(versions: Iterable[str]) -> str | None:
    options = stable_versions(versions, limit=1)
    return options[0].value if options else None
