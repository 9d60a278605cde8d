import datetime
import functools
import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable, Optional, Union

import config
from core.errors import (BackupError, RemoteSyncError, RepairError, RestoreError,
                         ScheduleError)
from models.backup import (BackupRecord, EnhancedBackupResult, Frequency, RemoteCredentials,
                           ScheduleConfig, coerce_credentials)
from services.backup_paths import build_timestamped_name, default_backup_path
from services.scheduler import CronScheduleTrigger

logger = logging.getLogger(__name__)

# Day-of-month, month, day-of-week fields per frequency.
# 'sun' rather than 0: APScheduler and classic cron disagree on weekday numbers.
_CRON_DAY_FIELDS = {
    Frequency.DAILY: "* * *",
    Frequency.WEEKLY: "* * sun",
    Frequency.MONTHLY: "1 * *",
}


def cron_expression_for(frequency: Union[str, Frequency]) -> str:
    """
    Maps a backup frequency to a crontab expression at the auto-backup time.
    Example: 'weekly' -> '0 2 * * sun'

    Raises:
        ScheduleError: For 'manual' or unknown frequencies.
    """
    freq = Frequency.parse(frequency)
    if freq not in _CRON_DAY_FIELDS:
        raise ScheduleError(f"'{freq.value}' backups have no schedule.")
    return f"{config.AUTO_BACKUP_MINUTE} {config.AUTO_BACKUP_HOUR} {_CRON_DAY_FIELDS[freq]}"


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class BackupLifecycleManager:
    """
    Creates, restores and repairs database backups, optionally copies them to
    Google Drive, and owns the automatic backup schedule.

    Every call into the storage backend is serialized, so a scheduled backup
    can never start in the middle of a restore or repair. Remote uploads run
    outside that lock since they only read a finished backup file.

    A local backup is the baseline: if it fails the whole operation fails,
    while a failed upload only costs the remote copy.
    """
    def __init__(self, backend: Any, sync_provider: Any = None,
                 trigger: Any = None,
                 clock: Optional[Callable[[], datetime.datetime]] = None):
        self.backend = backend
        self.sync_provider = sync_provider
        self.trigger = trigger if trigger is not None else CronScheduleTrigger()
        self._clock = clock or _utc_now

        self._storage_lock = threading.Lock()
        self._schedule_lock = threading.Lock()
        self._active_schedule: Optional[ScheduleConfig] = None
        self._closed = False

    @property
    def active_schedule(self) -> Optional[ScheduleConfig]:
        """The running schedule, or None when backups are manual."""
        return self._active_schedule

    def _check_open(self, error: type) -> None:
        # Called under the storage lock; the backend is closed once this flag is set
        if self._closed:
            raise error("Backup manager is shut down")

    # --- BACKUP ---

    def _resolve_destination(self, destination_path: Optional[Union[str, Path]], prefix: str) -> Path:
        if not destination_path:
            return default_backup_path(prefix, now=self._clock())

        dest = Path(destination_path)
        if dest.is_dir():
            # A folder was picked: put a timestamped file inside it
            return dest / build_timestamped_name(prefix, dest, self._clock())
        return dest

    def create_backup(self, destination_path: Optional[Union[str, Path]] = None,
                      prefix: str = config.BACKUP_PREFIX) -> BackupRecord:
        """
        Writes a copy of the live database.

        Args:
            destination_path: Target file or folder. Defaults to the backups folder.
            prefix: File name prefix for generated names.

        Returns:
            BackupRecord: Describes the new file.

        Raises:
            BackupError: Wrapping the underlying failure. Not retried.
        """
        try:
            with self._storage_lock:
                self._check_open(BackupError)
                # Name is picked under the lock so two backups in one second can't collide
                dest = self._resolve_destination(destination_path, prefix)
                written = self.backend.backup(str(dest))
            path = str(written or dest)
            record = BackupRecord(
                path=path,
                created_at=self._clock(),
                size_bytes=os.path.getsize(path),
            )
        except Exception as e:
            logger.error("Database backup failed: %s", e)
            raise BackupError(f"Could not create backup: {e}", e) from e

        logger.info("Backup created: %s (%d bytes)", record.path, record.size_bytes)
        return record

    def create_backup_enhanced(self, custom_path: Optional[Union[str, Path]] = None,
                               upload_to_drive: bool = False,
                               drive_credentials: Any = None,
                               prefix: str = config.BACKUP_PREFIX) -> EnhancedBackupResult:
        """
        Local backup plus an optional Google Drive copy.
        Upload problems are logged and leave remote_id as None; only a failed
        local backup raises (BackupError).
        """
        credentials = coerce_credentials(drive_credentials)
        record = self.create_backup(custom_path, prefix=prefix)

        remote_id = None
        if upload_to_drive:
            if credentials is None:
                logger.warning("Drive upload requested without credentials; kept local backup only")
            elif self.sync_provider is None:
                logger.warning("Drive upload requested but no sync provider is configured")
            else:
                remote_id = self._upload(record, credentials)

        if remote_id:
            record = record.with_remote_id(remote_id)
        return EnhancedBackupResult(record=record, remote_id=remote_id)

    def _upload(self, record: BackupRecord, credentials: RemoteCredentials) -> Optional[str]:
        try:
            client = self.sync_provider.authenticate(credentials)
            return self.sync_provider.upload(client, record.path, Path(record.path).name)
        except RemoteSyncError as e:
            logger.warning("Google Drive sync failed, local backup kept at %s: %s", record.path, e)
        except Exception:
            logger.warning("Unexpected Google Drive error, local backup kept at %s",
                           record.path, exc_info=True)
        return None

    # --- RESTORE / REPAIR ---

    def restore(self, source_path: Union[str, Path]) -> None:
        """
        Loads a backup over the live database.
        The caller must ask the user to restart the application afterwards.

        Raises:
            RestoreError: Missing file, corrupt backup, or backend failure.
        """
        path = Path(source_path)
        if not path.is_file():
            raise RestoreError(f"Backup file not found: {path}")

        try:
            with self._storage_lock:
                self._check_open(RestoreError)
                self.backend.restore(str(path))
        except Exception as e:
            logger.error("Database restore failed: %s", e)
            raise RestoreError(f"Restore failed: {e}", e) from e

        logger.info("Database restored from %s", path)

    def repair(self) -> None:
        """Single repair attempt. Raises RepairError on failure."""
        try:
            with self._storage_lock:
                self._check_open(RepairError)
                self.backend.repair()
        except Exception as e:
            logger.error("Database repair failed: %s", e)
            raise RepairError(f"Repair failed: {e}", e) from e

    # --- SCHEDULE ---

    def schedule_recurring_backup(self, schedule_config: ScheduleConfig) -> None:
        """
        Replaces the automatic backup schedule.
        The previous trigger is always stopped first; 'manual' leaves none running.

        Raises:
            ScheduleError: Invalid frequency (the current schedule is left as is).
        """
        frequency = Frequency.parse(schedule_config.frequency)
        cron = None if frequency is Frequency.MANUAL else cron_expression_for(frequency)

        with self._schedule_lock:
            self.trigger.stop()
            self._active_schedule = None

            if cron is None:
                logger.info("Automatic backups disabled")
                return

            callback = functools.partial(self._run_scheduled_backup, schedule_config)
            try:
                self.trigger.start(cron, callback)
            except ValueError as e:
                raise ScheduleError(f"Invalid schedule {cron!r}: {e}", e) from e
            self._active_schedule = schedule_config

        logger.info("Automatic %s backups enabled (drive upload: %s)",
                    frequency.value, schedule_config.uploads)

    def _run_scheduled_backup(self, schedule_config: ScheduleConfig) -> None:
        # Runs on the scheduler thread; must never raise
        if self._closed:
            logger.info("Skipping scheduled backup, manager is shut down")
            return
        try:
            result = self.create_backup_enhanced(
                upload_to_drive=schedule_config.uploads,
                drive_credentials=schedule_config.remote_credentials,
                prefix=config.AUTO_BACKUP_PREFIX,
            )
            logger.info("Scheduled backup finished: %s", result.record.path)
        except Exception:
            logger.exception("Scheduled backup failed")

    # --- TEARDOWN ---

    def shutdown(self) -> None:
        """Stops the schedule and closes the database. Safe to call twice."""
        if self._closed:
            return
        self._closed = True

        with self._schedule_lock:
            self.trigger.stop()
            self._active_schedule = None
            if hasattr(self.trigger, "shutdown"):
                self.trigger.shutdown()

        with self._storage_lock:
            self.backend.close()
        logger.info("Backup manager shut down")
