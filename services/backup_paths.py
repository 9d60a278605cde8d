import datetime
from pathlib import Path
from typing import Optional

import config
from core.errors import StorageError


def resolve_backup_directory() -> Path:
    """
    Returns the backups folder, creating it (and its parents) if needed.

    Raises:
        StorageError: If the data folder is not configured or cannot be created.
    """
    if not config.BACKUP_FOLDER:
        raise StorageError("Backup folder is not configured.")

    folder = Path(config.BACKUP_FOLDER)
    try:
        folder.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(f"Cannot create backup folder {folder}: {e}", e) from e
    return folder


def backup_timestamp(now: Optional[datetime.datetime] = None) -> str:
    """
    Sortable UTC timestamp, safe for file names.
    Example: 2026-10-16T02:00:00 -> '2026-10-16T02-00-00'
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(datetime.timezone.utc)
    return now.replace(microsecond=0, tzinfo=None).isoformat().replace(":", "-")


def build_timestamped_name(prefix: str, directory: Optional[Path] = None,
                           now: Optional[datetime.datetime] = None) -> str:
    """
    Builds '<prefix>-<timestamp>.db'.
    If a directory is given and the name is already taken there
    (two backups within the same second), a counter is appended: '-2', '-3', ...
    """
    stem = f"{prefix}-{backup_timestamp(now)}"
    name = f"{stem}{config.BACKUP_EXTENSION}"
    if directory is None:
        return name

    counter = 2
    while (Path(directory) / name).exists():
        name = f"{stem}-{counter}{config.BACKUP_EXTENSION}"
        counter += 1
    return name


def default_backup_path(prefix: str = config.BACKUP_PREFIX,
                        now: Optional[datetime.datetime] = None) -> Path:
    """Full path for a new backup inside the backups folder."""
    folder = resolve_backup_directory()
    return folder / build_timestamped_name(prefix, folder, now)
