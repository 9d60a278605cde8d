import sqlite3

import pytest

import config
from core.errors import RestoreError, StorageError
from services.backup_manager import BackupLifecycleManager


def add_gym(db, name="Solid Gym"):
    return db.run("INSERT INTO gyms (name, type) VALUES (?, ?)", [name, "mixed"])["lastInsertRowid"]


def gym_names(db):
    return [row["name"] for row in db.query("SELECT name FROM gyms ORDER BY id")]


def test_init_db_is_idempotent(db):
    db.init_db()
    tables = {row["name"] for row in db.query("SELECT name FROM sqlite_master WHERE type='table'")}
    assert {"gyms", "users"} <= tables


def test_run_reports_changes(db):
    result = db.run("INSERT INTO gyms (name) VALUES (?)", ["A"])
    assert result["changes"] == 1
    assert result["lastInsertRowid"] == 1


def test_bad_sql_raises_storage_error(db):
    with pytest.raises(StorageError):
        db.query("SELECT * FROM missing_table")


def test_backup_copies_data(db, tmp_path):
    add_gym(db)
    dest = tmp_path / "copy.db"

    assert db.backup(dest) == str(dest)

    with sqlite3.connect(dest) as conn:
        assert conn.execute("SELECT name FROM gyms").fetchall() == [("Solid Gym",)]


def test_backup_replaces_existing_file(db, tmp_path):
    add_gym(db)
    dest = tmp_path / "copy.db"
    dest.write_text("old export")

    db.backup(dest)

    with sqlite3.connect(dest) as conn:
        assert conn.execute("SELECT name FROM gyms").fetchall() == [("Solid Gym",)]
    # No temporary file left next to it
    assert [p.name for p in tmp_path.iterdir() if p.name.endswith(".partial")] == []


def test_backup_into_missing_folder_fails(db, tmp_path):
    with pytest.raises(StorageError):
        db.backup(tmp_path / "no" / "such" / "dir" / "copy.db")


def test_restore_brings_back_old_data(db, tmp_path):
    add_gym(db, "Before")
    snapshot = tmp_path / "snapshot.db"
    db.backup(snapshot)

    add_gym(db, "After")
    assert gym_names(db) == ["Before", "After"]

    db.restore(snapshot)
    assert gym_names(db) == ["Before"]


def test_restore_rejects_garbage_and_keeps_live_data(db, tmp_path):
    add_gym(db)
    garbage = tmp_path / "garbage.db"
    garbage.write_bytes(b"this is not sqlite" * 100)

    with pytest.raises(StorageError):
        db.restore(garbage)
    assert gym_names(db) == ["Solid Gym"]


def test_restore_missing_file(db, tmp_path):
    with pytest.raises(StorageError, match="not found"):
        db.restore(tmp_path / "missing.db")


def test_repair_healthy_database(db):
    add_gym(db)
    db.repair()
    assert gym_names(db) == ["Solid Gym"]


def test_close_is_idempotent(db):
    db.close()
    db.close()
    # Reconnects lazily
    assert gym_names(db) == []


# --- manager + real database ---

def test_first_backup_creates_folder_and_file(db, data_dir):
    manager = BackupLifecycleManager(db)

    record = manager.create_backup()

    backups = list((data_dir / "backups").glob("gym-backup-*.db"))
    assert [str(p) for p in backups] == [record.path]


def test_restore_nonexistent_leaves_live_file_alone(db, tmp_path):
    add_gym(db)
    db.close()
    before = config.DB_FILE.read_bytes()
    manager = BackupLifecycleManager(db)

    with pytest.raises(RestoreError):
        manager.restore(tmp_path / "does-not-exist.db")

    assert config.DB_FILE.read_bytes() == before


def test_backup_then_restore_round_trip(db):
    manager = BackupLifecycleManager(db)
    add_gym(db, "Original")
    record = manager.create_backup()

    db.run("DELETE FROM gyms")
    manager.restore(record.path)

    assert gym_names(db) == ["Original"]
