"""SQLite persistence layer for OneUpdate."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

Clock = Callable[[], datetime]

_MISSING = object()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime(ISO_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, ISO_FORMAT).replace(tzinfo=timezone.utc)


@dataclass(slots=True)
class UploadRecord:
    """One private-plugin archive uploaded to object storage."""

    id: int
    file_name: str
    s3_key: str
    presigned_url: str
    upload_time: str
    action: str

    def expires_at(self, ttl_seconds: int) -> datetime:
        return parse_timestamp(self.upload_time) + timedelta(seconds=ttl_seconds)

    def is_expired(self, now: datetime, ttl_seconds: int) -> bool:
        return now >= self.expires_at(ttl_seconds)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "s3_key": self.s3_key,
            "presigned_url": self.presigned_url,
            "upload_time": self.upload_time,
            "action": self.action,
        }


class Database:
    """SQLite-backed storage for options, transients and upload history."""

    def __init__(self, path: Optional[Path] = None, *, clock: Clock | None = None) -> None:
        self.path = (path or Path.cwd() / "oneupdate.sqlite").resolve()
        self.clock: Clock = clock or _utcnow

    def now(self) -> datetime:
        return self.clock()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Provide a SQLite connection."""

        connection = sqlite3.connect(self.path, check_same_thread=False)
        connection.row_factory = sqlite3.Row
        try:
            yield connection
        finally:
            connection.close()

    def initialize(self) -> None:
        """Create tables if they do not exist."""

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as connection:
            connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS options (
                    name TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at TEXT,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS upload_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    file_name TEXT NOT NULL,
                    s3_key TEXT NOT NULL,
                    presigned_url TEXT NOT NULL,
                    upload_time TEXT NOT NULL,
                    action TEXT NOT NULL DEFAULT 'Uploaded'
                );

                CREATE INDEX IF NOT EXISTS idx_upload_history_time ON upload_history(upload_time);
                CREATE INDEX IF NOT EXISTS idx_upload_history_url ON upload_history(presigned_url);
                """
            )
            connection.commit()

    # -- options ------------------------------------------------------------------

    def get_option(self, name: str, default: Any = None) -> Any:
        """Return a decoded option value; expired transients read as absent."""

        with self.connect() as connection:
            value = self._read_option(connection, name)
        return default if value is _MISSING else value

    def update_option(self, name: str, value: Any, *, ttl_seconds: float | None = None) -> None:
        """Store `value` as JSON. A TTL turns the option into a transient."""

        with self.connect() as connection:
            self._write_option(connection, name, value, ttl_seconds)
            connection.commit()

    def delete_option(self, name: str) -> bool:
        with self.connect() as connection:
            cursor = connection.execute("DELETE FROM options WHERE name = ?", (name,))
            connection.commit()
            return cursor.rowcount > 0

    def modify_option(
        self,
        name: str,
        mutate: Callable[[Any], Any],
        *,
        default: Any = None,
    ) -> Any:
        """Read, transform and write one option inside a single `BEGIN IMMEDIATE` transaction.

        `mutate` receives the current value (or `default`) and returns the new one. If it raises,
        the transaction rolls back and the stored value is left untouched.
        """

        with self.connect() as connection:
            connection.execute("BEGIN IMMEDIATE")
            try:
                current = self._read_option(connection, name)
                updated = mutate(default if current is _MISSING else current)
                self._write_option(connection, name, updated, None)
            except BaseException:
                connection.rollback()
                raise
            connection.commit()
        return updated

    def _read_option(self, connection: sqlite3.Connection, name: str) -> Any:
        row = connection.execute(
            "SELECT value, expires_at FROM options WHERE name = ?", (name,)
        ).fetchone()
        if row is None:
            return _MISSING
        if row["expires_at"] is not None and self.now() >= parse_timestamp(row["expires_at"]):
            return _MISSING
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            return _MISSING

    def _write_option(
        self,
        connection: sqlite3.Connection,
        name: str,
        value: Any,
        ttl_seconds: float | None,
    ) -> None:
        now = self.now()
        expires_at = None
        if ttl_seconds is not None:
            expires_at = format_timestamp(now + timedelta(seconds=ttl_seconds))
        connection.execute(
            """
            INSERT INTO options (name, value, expires_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                value = excluded.value,
                expires_at = excluded.expires_at,
                updated_at = excluded.updated_at
            """,
            (name, json.dumps(value, sort_keys=True), expires_at, format_timestamp(now)),
        )

    # -- upload history -----------------------------------------------------------

    def record_upload(
        self,
        file_name: str,
        s3_key: str,
        presigned_url: str,
        *,
        action: str = "Uploaded",
        upload_time: datetime | None = None,
    ) -> UploadRecord:
        """Insert an upload history row and return it."""

        timestamp = format_timestamp(upload_time or self.now())
        with self.connect() as connection:
            cursor = connection.execute(
                """
                INSERT INTO upload_history (file_name, s3_key, presigned_url, upload_time, action)
                VALUES (?, ?, ?, ?, ?)
                """,
                (file_name, s3_key, presigned_url, timestamp, action),
            )
            upload_id = cursor.lastrowid
            connection.commit()
        return UploadRecord(
            id=upload_id,
            file_name=file_name,
            s3_key=s3_key,
            presigned_url=presigned_url,
            upload_time=timestamp,
            action=action,
        )

    def list_uploads(self, limit: int | None = None) -> list[UploadRecord]:
        sql = "SELECT * FROM upload_history ORDER BY upload_time DESC, id DESC"
        params: tuple[Any, ...] = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        with self.connect() as connection:
            rows = connection.execute(sql, params).fetchall()
        return [_upload_from_row(row) for row in rows]

    def find_upload_by_url(self, presigned_url: str) -> UploadRecord | None:
        with self.connect() as connection:
            row = connection.execute(
                """
                SELECT * FROM upload_history
                WHERE presigned_url = ?
                ORDER BY upload_time DESC, id DESC
                LIMIT 1
                """,
                (presigned_url,),
            ).fetchone()
        return _upload_from_row(row) if row is not None else None

    def uploads_before(
        self,
        cutoff: datetime,
        *,
        action: str | None = None,
        limit: int | None = None,
    ) -> list[UploadRecord]:
        """Return uploads at or before `cutoff`, oldest first."""

        sql = "SELECT * FROM upload_history WHERE upload_time <= ?"
        params: list[Any] = [format_timestamp(cutoff)]
        if action is not None:
            sql += " AND action = ?"
            params.append(action)
        sql += " ORDER BY upload_time ASC, id ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self.connect() as connection:
            rows = connection.execute(sql, params).fetchall()
        return [_upload_from_row(row) for row in rows]

    def mark_uploads(self, upload_ids: Iterable[int], action: str) -> int:
        ids = list(upload_ids)
        if not ids:
            return 0
        with self.connect() as connection:
            cursor = connection.executemany(
                "UPDATE upload_history SET action = ? WHERE id = ?",
                [(action, upload_id) for upload_id in ids],
            )
            connection.commit()
            return cursor.rowcount

    def delete_uploads_before(self, cutoff: datetime, limit: int) -> int:
        """Delete at most `limit` rows older than `cutoff`; returns the number removed."""

        with self.connect() as connection:
            cursor = connection.execute(
                """
                DELETE FROM upload_history
                WHERE id IN (
                    SELECT id FROM upload_history
                    WHERE upload_time < ?
                    ORDER BY upload_time ASC, id ASC
                    LIMIT ?
                )
                """,
                (format_timestamp(cutoff), limit),
            )
            connection.commit()
            return cursor.rowcount


def _upload_from_row(row: sqlite3.Row) -> UploadRecord:
    return UploadRecord(
        id=row["id"],
        file_name=row["file_name"],
        s3_key=row["s3_key"],
        presigned_url=row["presigned_url"],
        upload_time=row["upload_time"],
        action=row["action"],
    )
