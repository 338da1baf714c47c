"""Expire uploaded private-plugin archives and trim old upload history."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Protocol

from oneupdate.storage.db import Database

UPLOADED = "Uploaded"
EXPIRED = "Expired"


class ObjectStore(Protocol):
    """S3-compatible storage holding uploaded archives."""

    async def delete_object(self, key: str) -> None:
        ...


@dataclass(slots=True)
class CleanupSummary:
    expired: int = 0
    failed: list[str] = field(default_factory=list)
    purged_rows: int = 0


@dataclass(slots=True)
class UploadCleanup:
    database: Database
    store: ObjectStore | None
    logger: logging.Logger
    upload_ttl_seconds: int = 3600
    retention_days: int = 7
    batch_size: int = 1000
    pause_seconds: float = 2.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    async def run(self) -> CleanupSummary:
        summary = await self.expire_uploads()
        summary.purged_rows = await self.purge_history()
        return summary

    async def expire_uploads(self) -> CleanupSummary:
        """Delete objects uploaded more than `upload_ttl_seconds` ago and mark their rows.

        A failed delete is logged and left for the next sweep; the rest carry on.
        Without an object store the rows are still marked.
        """

        summary = CleanupSummary()
        if self.store is None:
            self.logger.info("No object store configured; expiring upload rows only")

        cutoff = self.database.now() - timedelta(seconds=self.upload_ttl_seconds)
        rows = self.database.uploads_before(cutoff, action=UPLOADED)
        for start in range(0, len(rows), self.batch_size):
            if start:
                await self.sleep(self.pause_seconds)
            expired: list[int] = []
            for row in rows[start : start + self.batch_size]:
                if self.store is None:
                    expired.append(row.id)
                    continue
                try:
                    await self.store.delete_object(row.s3_key)
                except Exception as exc:  # pylint: disable=broad-except
                    self.logger.warning("Failed to delete %s: %s", row.s3_key, exc)
                    summary.failed.append(row.s3_key)
                    continue
                expired.append(row.id)
            self.database.mark_uploads(expired, EXPIRED)
            summary.expired += len(expired)

        if rows:
            self.logger.info(
                "Expired %d upload(s), %d failed", summary.expired, len(summary.failed)
            )
        return summary

    async def purge_history(self) -> int:
        """Delete history rows older than the retention window, in paced batches."""

        cutoff = self.database.now() - timedelta(days=self.retention_days)
        total = 0
        while True:
            deleted = self.database.delete_uploads_before(cutoff, self.batch_size)
            total += deleted
            if deleted < self.batch_size:
                break
            await self.sleep(self.pause_seconds)
        if total:
            self.logger.info("Purged %d upload history row(s)", total)
        return total
