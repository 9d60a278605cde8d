import logging
from typing import List, Optional
from PySide6 import QtWidgets

from core.database import DatabaseService
from core.log import setup_logging
from services.backup_facade import BackupRequestHandler
from services.backup_manager import BackupLifecycleManager
from services.cloud_service import GoogleDriveSync
from services.file_manager import load_or_setup_paths
from ui.dialogs.backup_dialog import BackupDialog
import config

logger = logging.getLogger(__name__)

DB_FILTER = "Database Files (*.db)"


def pick_backup_file(start_dir: str) -> Optional[str]:
    """Open-file dialog for choosing a backup to restore."""
    path, _ = QtWidgets.QFileDialog.getOpenFileName(None, "Restore Database", start_dir, DB_FILTER)
    return path or None


def pick_backup_destination(default_path: str) -> Optional[str]:
    """Save-file dialog for choosing where a backup is written."""
    path, _ = QtWidgets.QFileDialog.getSaveFileName(None, "Save Backup", default_path, DB_FILTER)
    return path or None


class SolidGymApp(QtWidgets.QApplication):
    """
    The main Application class that manages the application lifecycle.
    1. Sets up data paths, logging, and the database.
    2. Builds the backup manager (with Google Drive sync and the scheduler).
    3. Shows the backup window.
    4. Shuts the manager down (scheduler + database) when the app quits.
    """
    def __init__(self, args: List[str]):
        super().__init__(args)
        self.main_window: Optional[QtWidgets.QDialog] = None
        self.manager: Optional[BackupLifecycleManager] = None

    def start(self) -> None:
        """Initializes the environment and shows the first screen."""
        # 1. Setup File System
        load_or_setup_paths()
        setup_logging(config.LOG_FILE)

        # 2. Initialize Database
        db = DatabaseService(config.DB_FILE)
        db.init_db()

        # 3. Backup services
        self.manager = BackupLifecycleManager(db, sync_provider=GoogleDriveSync())
        handler = BackupRequestHandler(
            self.manager,
            choose_open_file=pick_backup_file,
            choose_save_file=pick_backup_destination,
        )
        self.aboutToQuit.connect(self.on_quit)

        logger.info("%s started, data folder: %s", config.APP_NAME, config.DATA_FOLDER)

        # 4. Show the backup window
        self.main_window = BackupDialog(handler)
        self.main_window.finished.connect(self.quit)
        self.main_window.show()

    def on_quit(self) -> None:
        """Stops scheduled backups and closes the database."""
        if self.manager:
            self.manager.shutdown()
            self.manager = None
