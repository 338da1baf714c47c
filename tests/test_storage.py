"""Tests for SQLite storage layer."""

from __future__ import annotations

from datetime import timedelta

import pytest

from oneupdate.storage import Database
from oneupdate.storage.db import ISO_FORMAT, parse_timestamp


def test_initialize_creates_database(tmp_path):
    db_path = tmp_path / "data" / "oneupdate.sqlite"
    database = Database(db_path)
    database.initialize()

    assert db_path.exists()

    with database.connect() as connection:
        cursor = connection.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {row[0] for row in cursor.fetchall()}
        assert {"options", "upload_history"}.issubset(tables)


def test_options_round_trip_and_delete(database):
    assert database.get_option("missing", default="fallback") == "fallback"

    database.update_option("oneupdate_site_type", "brand-site")
    database.update_option("nested", {"b": [1, 2], "a": {"x": True}})

    assert database.get_option("oneupdate_site_type") == "brand-site"
    assert database.get_option("nested") == {"a": {"x": True}, "b": [1, 2]}
    assert database.delete_option("nested") is True
    assert database.delete_option("nested") is False
    assert database.get_option("nested") is None


def test_transient_expires_exactly_at_ttl(database, clock):
    database.update_option("oneupdate_get_plugins", {"akismet": {}}, ttl_seconds=3600)

    clock.advance(seconds=3599)
    assert database.get_option("oneupdate_get_plugins") == {"akismet": {}}

    clock.advance(seconds=1)
    assert database.get_option("oneupdate_get_plugins") is None


def test_rewriting_without_ttl_makes_option_permanent(database, clock):
    database.update_option("flag", 1, ttl_seconds=10)
    database.update_option("flag", 2)

    clock.advance(days=30)
    assert database.get_option("flag") == 2


def test_modify_option_applies_mutation(database):
    database.update_option("counter", 1)

    result = database.modify_option("counter", lambda value: value + 1, default=0)

    assert result == 2
    assert database.get_option("counter") == 2
    assert database.modify_option("fresh", lambda value: value + [1], default=[]) == [1]


def test_modify_option_rolls_back_on_error(database):
    database.update_option("sites", ["a"])

    def explode(value):
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        database.modify_option("sites", explode, default=[])

    assert database.get_option("sites") == ["a"]


def test_upload_history_queries(database, clock):
    first = database.record_upload("one.zip", "keys/one.zip", "https://s3.example/one")
    clock.advance(hours=2)
    second = database.record_upload("two.zip", "keys/two.zip", "https://s3.example/two")

    assert [row.id for row in database.list_uploads()] == [second.id, first.id]
    assert database.list_uploads(limit=1)[0].file_name == "two.zip"
    assert database.find_upload_by_url("https://s3.example/one").id == first.id
    assert database.find_upload_by_url("https://s3.example/none") is None

    cutoff = clock() - timedelta(hours=1)
    assert [row.id for row in database.uploads_before(cutoff)] == [first.id]
    assert database.mark_uploads([first.id], "Expired") == 1
    assert database.uploads_before(cutoff, action="Uploaded") == []

    assert database.delete_uploads_before(clock(), limit=10) == 1
    assert [row.id for row in database.list_uploads()] == [second.id]


def test_upload_expiry_uses_ttl(database, clock):
    record = database.record_upload("a.zip", "k", "https://s3.example/a")

    assert parse_timestamp(record.upload_time).strftime(ISO_FORMAT) == record.upload_time
    assert not record.is_expired(clock() + timedelta(seconds=3599), 3600)
    assert record.is_expired(clock() + timedelta(seconds=3600), 3600)
