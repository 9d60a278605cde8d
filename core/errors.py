from typing import Optional


class GymBackupError(Exception):
    """
    Base class for every error raised by the backup subsystem.

    Attributes:
        cause (Exception, optional): The underlying exception, if any.
    """
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class StorageError(GymBackupError):
    """Filesystem or database backend failure."""


class BackupError(GymBackupError):
    """A local backup could not be created."""


class RestoreError(GymBackupError):
    """A backup file could not be restored over the live database."""


class RepairError(GymBackupError):
    """The database integrity repair failed."""


class ScheduleError(GymBackupError):
    """Invalid auto-backup configuration (e.g. unknown frequency)."""


class RemoteSyncError(GymBackupError):
    """Remote (Google Drive) failures. Never fatal to a local backup."""


class AuthError(RemoteSyncError):
    pass


class UploadError(RemoteSyncError):
    pass
