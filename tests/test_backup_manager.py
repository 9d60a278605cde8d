import threading
from pathlib import Path

import pytest

import config
from conftest import FakeBackend, FakeSync
from core.errors import (AuthError, BackupError, RepairError, RestoreError, ScheduleError,
                         StorageError, UploadError)
from models.backup import Frequency, ScheduleConfig
from services.backup_manager import BackupLifecycleManager, cron_expression_for
from services.scheduler import CronScheduleTrigger

WEEK_HOURS = 7 * 24


# --- createBackup ---

def test_create_backup_uses_default_folder(manager, data_dir):
    assert not (data_dir / "backups").exists()

    record = manager.create_backup()

    path = Path(record.path)
    assert path.parent == data_dir / "backups"
    assert path.name.startswith("gym-backup-")
    assert path.suffix == ".db"
    assert path.exists()
    assert record.size_bytes == path.stat().st_size
    assert record.remote_id is None


def test_create_backup_into_picked_folder(manager, tmp_path):
    target = tmp_path / "usb"
    target.mkdir()

    record = manager.create_backup(target)

    assert Path(record.path).parent == target
    assert Path(record.path).name.startswith("gym-backup-")


def test_create_backup_to_explicit_file(manager, tmp_path):
    dest = tmp_path / "my-copy.db"
    record = manager.create_backup(dest)
    assert record.path == str(dest)


def test_create_backup_failure_raises_backup_error(manager, backend):
    cause = StorageError("disk full")
    backend.fail["backup"] = cause

    with pytest.raises(BackupError) as exc:
        manager.create_backup()

    assert exc.value.cause is cause
    assert exc.value.__cause__ is cause


def test_create_backup_without_configured_folder(manager, monkeypatch):
    monkeypatch.setattr(config, "BACKUP_FOLDER", None)
    with pytest.raises(BackupError):
        manager.create_backup()


# --- createBackupEnhanced ---

def test_enhanced_backup_uploads_when_requested(manager, sync, creds):
    result = manager.create_backup_enhanced(upload_to_drive=True, drive_credentials=creds)

    assert result.remote_id == "drive-file-1"
    assert result.record.remote_id == "drive-file-1"
    client, local_path, remote_name = sync.uploads[0]
    assert client == "drive-client"
    assert local_path == result.record.path
    assert remote_name == Path(result.record.path).name


@pytest.mark.parametrize("error", [UploadError("quota exceeded"), RuntimeError("socket closed")])
def test_upload_failure_keeps_local_backup(data_dir, backend, trigger, creds, error):
    manager = BackupLifecycleManager(backend, sync_provider=FakeSync(upload_error=error), trigger=trigger)

    result = manager.create_backup_enhanced(upload_to_drive=True, drive_credentials=creds)

    assert result.remote_id is None
    assert Path(result.record.path).exists()


def test_auth_failure_skips_upload(data_dir, backend, trigger, creds):
    sync = FakeSync(auth_error=AuthError("invalid_grant"))
    manager = BackupLifecycleManager(backend, sync_provider=sync, trigger=trigger)

    result = manager.create_backup_enhanced(upload_to_drive=True, drive_credentials=creds)

    assert result.remote_id is None
    assert sync.uploads == []


def test_upload_needs_credentials(manager, sync):
    result = manager.create_backup_enhanced(upload_to_drive=True)
    assert result.remote_id is None
    assert sync.auth_calls == 0


def test_no_upload_unless_asked(manager, sync, creds):
    manager.create_backup_enhanced(drive_credentials=creds)
    assert sync.auth_calls == 0


def test_local_failure_never_attempts_upload(manager, backend, sync, creds):
    backend.fail["backup"] = StorageError("permission denied")

    with pytest.raises(BackupError):
        manager.create_backup_enhanced(upload_to_drive=True, drive_credentials=creds)
    assert sync.auth_calls == 0


# --- restore / repair ---

def test_restore_missing_file(manager, backend, tmp_path):
    with pytest.raises(RestoreError):
        manager.restore(tmp_path / "nope.db")
    assert backend.events == []


def test_restore_wraps_backend_error(manager, backend, tmp_path):
    source = tmp_path / "bad.db"
    source.write_bytes(b"not a database")
    backend.fail["restore"] = StorageError("file is not a database")

    with pytest.raises(RestoreError, match="not a database"):
        manager.restore(source)


def test_repair_wraps_backend_error(manager, backend):
    backend.fail["repair"] = StorageError("malformed")
    with pytest.raises(RepairError):
        manager.repair()


def test_storage_calls_never_interleave(data_dir, trigger, tmp_path):
    backend = FakeBackend(delay=0.2)
    manager = BackupLifecycleManager(backend, trigger=trigger)
    source = tmp_path / "old.db"
    source.write_bytes(b"x")

    t = threading.Thread(target=manager.create_backup)
    t.start()
    assert backend.started.wait(2)
    manager.restore(source)
    t.join()

    assert backend.events == ["backup:start", "backup:end", "restore:start", "restore:end"]


# --- schedule ---

@pytest.mark.parametrize("frequency,expected", [
    ("daily", "0 2 * * *"),
    ("weekly", "0 2 * * sun"),
    ("monthly", "0 2 1 * *"),
])
def test_cron_expression_for(frequency, expected):
    assert cron_expression_for(frequency) == expected


def test_manual_has_no_cron():
    with pytest.raises(ScheduleError):
        cron_expression_for("manual")


@pytest.mark.parametrize("frequency", ["daily", "weekly", "monthly"])
def test_rescheduling_keeps_one_trigger(manager, trigger, frequency):
    manager.schedule_recurring_backup(ScheduleConfig.create(frequency))
    manager.schedule_recurring_backup(ScheduleConfig.create(frequency))

    # FakeTrigger refuses to start twice without a stop in between
    assert trigger.start_calls == 2
    assert trigger.is_active
    assert manager.active_schedule.frequency is Frequency(frequency)


def test_weekly_schedule_fires_once_a_week(manager, trigger, backend):
    manager.schedule_recurring_backup(ScheduleConfig.create("weekly"))

    assert trigger.advance(WEEK_HOURS) == 1
    assert len(backend.backups) == 1
    assert Path(backend.backups[0]).name.startswith("gym-auto-backup-")


def test_daily_schedule_fires_every_day(manager, trigger, backend):
    manager.schedule_recurring_backup(ScheduleConfig.create("daily"))

    trigger.advance(WEEK_HOURS)

    assert len(backend.backups) == 7
    assert len(set(backend.backups)) == 7


def test_manual_after_weekly_stops_backups(manager, trigger, backend):
    manager.schedule_recurring_backup(ScheduleConfig.create("weekly"))
    stops_before = trigger.stop_calls

    manager.schedule_recurring_backup(ScheduleConfig.create("manual"))

    assert trigger.stop_calls - stops_before == 1
    assert manager.active_schedule is None
    assert trigger.advance(WEEK_HOURS) == 0
    assert backend.backups == []


def test_scheduled_failure_is_contained(manager, trigger, backend):
    manager.schedule_recurring_backup(ScheduleConfig.create("daily"))
    backend.fail["backup"] = StorageError("disk full")

    trigger.advance(48)

    # Both ticks ran and the schedule survived
    assert backend.events.count("backup:start") == 2
    assert trigger.is_active


def test_scheduled_backup_uploads_with_credentials(manager, trigger, sync, creds):
    manager.schedule_recurring_backup(ScheduleConfig.create("daily", creds))
    trigger.advance(24)
    assert len(sync.uploads) == 1


def test_invalid_frequency_keeps_current_schedule(manager, trigger):
    manager.schedule_recurring_backup(ScheduleConfig.create("daily"))

    with pytest.raises(ScheduleError):
        manager.schedule_recurring_backup(ScheduleConfig("hourly"))

    assert trigger.is_active
    assert trigger.cron_expression == "0 2 * * *"


def test_shutdown_stops_trigger_and_closes_backend(manager, trigger, backend):
    manager.schedule_recurring_backup(ScheduleConfig.create("weekly"))

    manager.shutdown()
    manager.shutdown()

    assert not trigger.is_active
    assert backend.closed == 1
    assert manager.active_schedule is None


def test_tick_after_shutdown_does_not_touch_backend(manager, trigger, backend):
    manager.schedule_recurring_backup(ScheduleConfig.create("daily"))
    # APScheduler may already have handed the job to a worker thread
    tick = trigger.callback

    manager.shutdown()
    tick()

    assert backend.backups == []
    assert backend.closed == 1
    with pytest.raises(BackupError, match="shut down"):
        manager.create_backup()
    with pytest.raises(RestoreError, match="shut down"):
        manager.restore(__file__)
    with pytest.raises(RepairError, match="shut down"):
        manager.repair()
    assert backend.events == []


def test_shutdown_waits_for_running_backup(data_dir, trigger):
    backend = FakeBackend(delay=0.2)
    manager = BackupLifecycleManager(backend, trigger=trigger)
    seen_at_close = []
    backend.close = lambda: seen_at_close.append(list(backend.events))

    worker = threading.Thread(target=manager.create_backup)
    worker.start()
    assert backend.started.wait(2)
    manager.shutdown()
    worker.join()

    assert seen_at_close == [["backup:start", "backup:end"]]


def test_default_trigger_is_cron_scheduler(backend):
    manager = BackupLifecycleManager(backend)
    assert isinstance(manager.trigger, CronScheduleTrigger)
    assert not manager.trigger.scheduler.running
