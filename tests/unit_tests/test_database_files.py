import re
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from database import files as db_files
from database.local import Database, from_db_timestamp, init_db, to_db_timestamp

BUCKET = "parts"
OTHER_BUCKET = "avatars"


def _status(conn, bucketname):
    row = db_files.query_file(conn, BUCKET, bucketname)
    return row["status"] if row else None


def _age(conn, bucketname, days):
    db_files.update_set_datetime(conn, BUCKET, bucketname, datetime.now(timezone.utc) - timedelta(days=days))


def test_init_db(db_path):
    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='files'")
    assert cursor.fetchone() is not None
    cursor.execute("SELECT name FROM sqlite_master WHERE type='index' AND tbl_name='files'")
    indexes = {row[0] for row in cursor.fetchall()}
    conn.close()
    assert {"idx_files_bucket_status", "idx_files_hash"} <= indexes


def test_init_db_is_idempotent(db_path):
    init_db(db_path)
    init_db(db_path)


def test_status_check_constraint(conn):
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("INSERT INTO files (bucket, bucketname, status) VALUES ('parts', 'x', 'deleted')")


def test_create_file_generates_bucketname(conn):
    row = db_files.create_file(conn, BUCKET)

    assert re.fullmatch(r"[0-9a-f]{32}", row["bucketname"])
    assert row["bucket"] == BUCKET
    assert row["status"] == "created"
    assert row["size"] is None and row["hash"] is None
    assert row["creation"] is not None


def test_create_file_with_explicit_bucketname(conn):
    row = db_files.create_file(conn, BUCKET, "model.stl")
    assert row["bucketname"] == "model.stl"


def test_create_file_explicit_collision_returns_none(conn):
    db_files.create_file(conn, BUCKET, "model.stl")
    assert db_files.create_file(conn, BUCKET, "model.stl") is None
    # unique across buckets too
    assert db_files.create_file(conn, OTHER_BUCKET, "model.stl") is None


def test_generated_insert_retries_on_collision(conn, monkeypatch):
    db_files.create_file(conn, BUCKET, "taken")
    names = iter(["taken", "taken", "fresh"])
    monkeypatch.setattr(db_files, "generate_bucketname", lambda: next(names))

    row = db_files.create_file(conn, BUCKET)

    assert row["bucketname"] == "fresh"


def test_generated_insert_gives_up_after_max_attempts(conn, monkeypatch):
    db_files.create_file(conn, BUCKET, "taken")
    monkeypatch.setattr(db_files, "generate_bucketname", lambda: "taken")

    assert db_files.create_file(conn, BUCKET) is None


def test_update_set_uploaded_only_from_created(conn):
    db_files.create_file(conn, BUCKET, "a")

    first = db_files.update_set_uploaded(conn, BUCKET, "a")
    second = db_files.update_set_uploaded(conn, BUCKET, "a")

    assert first["status"] == "uploaded"
    assert second is None
    assert _status(conn, "a") == "uploaded"


def test_update_set_uploaded_is_scoped_by_bucket(conn):
    db_files.create_file(conn, BUCKET, "a")
    assert db_files.update_set_uploaded(conn, OTHER_BUCKET, "a") is None
    assert _status(conn, "a") == "created"


@pytest.mark.parametrize("status, expected", [
    ("created", ["created"]),
    ("uploading", ["created", "uploading"]),
    ("uploaded", ["created", "uploading", "uploaded"]),
    ("ready", ["created", "uploading", "uploaded"]),
    ("rejected", ["created", "uploading", "uploaded"]),
])
def test_allowed_predecessors(status, expected):
    assert db_files.allowed_predecessors(status) == expected


def test_allowed_predecessors_rejects_unknown_status():
    with pytest.raises(ValueError):
        db_files.allowed_predecessors("deleted")


def test_update_set_status_never_leaves_terminal_status(conn):
    db_files.create_file(conn, BUCKET, "a")
    assert db_files.update_set_done(conn, BUCKET, "a", 10, "abc") == 1

    assert db_files.update_set_status(conn, BUCKET, "a", "uploaded") == 0
    assert db_files.update_set_rejected(conn, BUCKET, "a") == 0
    assert db_files.update_set_done(conn, BUCKET, "a", 99, "zzz") == 0

    row = db_files.query_file(conn, BUCKET, "a")
    assert (row["status"], row["size"], row["hash"]) == ("ready", 10, "abc")


def test_update_set_status_never_moves_backwards(conn):
    db_files.create_file(conn, BUCKET, "a")
    db_files.update_set_uploaded(conn, BUCKET, "a")

    assert db_files.update_set_status(conn, BUCKET, "a", "created") == 0
    assert _status(conn, "a") == "uploaded"


def test_update_set_status_keeps_size_and_hash_when_not_given(conn):
    db_files.create_file(conn, BUCKET, "a")
    db_files.update_set_status(conn, BUCKET, "a", "uploaded", 42, "d41d8")
    db_files.update_set_status(conn, BUCKET, "a", "rejected")

    row = db_files.query_file(conn, BUCKET, "a")
    assert (row["status"], row["size"], row["hash"]) == ("rejected", 42, "d41d8")


def test_query_files_by_hash(conn):
    for name in ("a", "b", "c"):
        db_files.create_file(conn, BUCKET, name)
    db_files.update_set_done(conn, BUCKET, "a", 1, "same")
    db_files.update_set_done(conn, BUCKET, "c", 1, "same")
    db_files.update_set_done(conn, BUCKET, "b", 1, "other")

    rows = db_files.query_files_by_hash(conn, BUCKET, "same")

    assert [row["bucketname"] for row in rows] == ["a", "c"]


def test_query_files_handles_large_key_sets(conn):
    names = [f"file-{i}" for i in range(1500)]
    conn.execute("BEGIN")
    conn.executemany(
        "INSERT INTO files (bucket, bucketname) VALUES (?, ?)",
        ((BUCKET, name) for name in names),
    )
    conn.execute("COMMIT")

    rows = db_files.query_files(conn, BUCKET, names[:1200] + ["missing"])

    assert len(rows) == 1200


def test_delete_by_bucketnames(conn):
    for name in ("a", "b", "c"):
        db_files.create_file(conn, BUCKET, name)

    assert db_files.delete_by_bucketnames(conn, BUCKET, ["a", "c", "missing"]) == 2
    assert [row["bucketname"] for row in db_files.query_files_for_all(conn, BUCKET)] == ["b"]


def test_keep_by_bucketnames_deletes_the_complement(conn):
    for name in ("a", "b", "c"):
        db_files.create_file(conn, BUCKET, name)
    db_files.create_file(conn, OTHER_BUCKET, "z")

    assert db_files.keep_by_bucketnames(conn, BUCKET, ["b", "unknown"]) == 2
    assert [row["bucketname"] for row in db_files.query_files_for_all(conn, BUCKET)] == ["b"]
    assert len(db_files.query_files_for_all(conn, OTHER_BUCKET)) == 1


def test_delete_all_files_is_scoped_by_bucket(conn):
    db_files.create_file(conn, BUCKET, "a")
    db_files.create_file(conn, BUCKET, "b")
    db_files.create_file(conn, OTHER_BUCKET, "z")

    assert db_files.delete_all_files(conn, BUCKET) == 2
    assert db_files.query_files_for_all(conn, BUCKET) == []
    assert len(db_files.query_files_for_all(conn, OTHER_BUCKET)) == 1


def test_delete_old_files_only_removes_abandoned_uploads(conn):
    for name in ("old-created", "old-uploading", "old-uploaded", "old-ready", "new-created"):
        db_files.create_file(conn, BUCKET, name)
    db_files.update_set_status(conn, BUCKET, "old-uploading", "uploading")
    db_files.update_set_uploaded(conn, BUCKET, "old-uploaded")
    db_files.update_set_done(conn, BUCKET, "old-ready")
    for name in ("old-created", "old-uploading", "old-uploaded", "old-ready"):
        _age(conn, name, 4)

    assert db_files.delete_old_files(conn, BUCKET, 3) == 2

    remaining = {row["bucketname"] for row in db_files.query_files_for_all(conn, BUCKET)}
    assert remaining == {"old-uploaded", "old-ready", "new-created"}


def test_query_for_unprocessed(conn):
    for name in ("old-created", "old-uploaded", "old-rejected", "new-uploaded", "undated"):
        db_files.create_file(conn, BUCKET, name)
    db_files.update_set_uploaded(conn, BUCKET, "old-uploaded")
    db_files.update_set_uploaded(conn, BUCKET, "new-uploaded")
    db_files.update_set_rejected(conn, BUCKET, "old-rejected")
    for name in ("old-created", "old-uploaded", "old-rejected"):
        _age(conn, name, 5)
    conn.execute("UPDATE files SET creation = NULL WHERE bucketname = 'undated'")

    rows = db_files.query_for_unprocessed(conn, BUCKET, 3)

    assert [row["bucketname"] for row in rows] == ["old-created", "old-uploaded", "undated"]


def test_timestamp_round_trip_is_utc():
    local = datetime(2024, 3, 1, 14, 30, 5, tzinfo=timezone(timedelta(hours=2)))

    stored = to_db_timestamp(local)

    assert stored == "2024-03-01 12:30:05"
    assert from_db_timestamp(stored) == datetime(2024, 3, 1, 12, 30, 5, tzinfo=timezone.utc)
    assert from_db_timestamp(None) is None


def test_transaction_rolls_back_on_error(database):
    with pytest.raises(RuntimeError):
        with database.transaction() as conn:
            db_files.create_file(conn, BUCKET, "a")
            raise RuntimeError("boom")

    assert db_files.query_file(database.ambient, BUCKET, "a") is None


def test_transaction_commits(database):
    with database.transaction() as conn:
        db_files.create_file(conn, BUCKET, "a")

    assert db_files.query_file(database.ambient, BUCKET, "a") is not None


def test_database_close_resets_ambient_connection(db_path):
    db = Database(db_path)
    first = db.ambient
    db.close()
    second = db.ambient
    db.close()
    assert first is not second
