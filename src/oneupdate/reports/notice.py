"""Notice text for an ActionReport, plus the single stored "last notice"."""

from __future__ import annotations

from typing import Any

from oneupdate.core.models import ActionReport, Operation
from oneupdate.storage.db import Database, format_timestamp

LAST_NOTICE_OPTION = "oneupdate_last_notice"


def _verb(operation: str) -> str:
    try:
        return Operation(operation).past_tense
    except ValueError:
        return "dispatched"


def format_notice(report: ActionReport, plugin_name: str | None = None) -> str:
    """Summarise a report in a few lines.

    "Nothing happened" (no eligible sites) reads differently from "attempted, some failed".
    """

    subject = plugin_name or report.slug
    if report.noop:
        lines = [f"No eligible sites for {report.operation} of {subject}; nothing was changed."]
        lines.extend(f"- {site}: {reason}" for site, reason in sorted(report.skipped.items()))
        return "\n".join(lines)

    grouped = report.grouped_by_site()
    succeeded = sorted(
        site for site, results in grouped.items() if all(result.ok for result in results)
    )
    failed = sorted(site for site in grouped if site not in succeeded)

    lines: list[str] = []
    if report.success:
        lines.append(f"{subject} {_verb(report.operation)} successfully on {', '.join(succeeded)}.")
    else:
        lines.append(
            f"{report.operation} of {subject} failed on {len(failed)} of {len(grouped)} site(s)."
        )
        if succeeded:
            lines.append(f"Succeeded: {', '.join(succeeded)}.")
        for result in report.errors:
            lines.append(f"- {result.site_name or result.site_url}: {result.error} ({result.code})")

    runs = [result for result in report.results if result.kind == "workflow"]
    if runs:
        lines.append("")
        for result in runs:
            target = result.run.run_url if result.run else f"{result.workflow_url} (run pending)"
            lines.append(f"- {result.site_name}: {target}")
    return "\n".join(lines)


def save_notice(database: Database, report: ActionReport) -> dict[str, Any]:
    entry = {
        "operation": report.operation,
        "plugin_slug": report.slug,
        "success": report.success,
        "noop": report.noop,
        "message": report.notice,
        "created_at": format_timestamp(database.now()),
    }
    database.update_option(LAST_NOTICE_OPTION, entry)
    return entry


def last_notice(database: Database) -> dict[str, Any] | None:
    value = database.get_option(LAST_NOTICE_OPTION)
    return value if isinstance(value, dict) else None
