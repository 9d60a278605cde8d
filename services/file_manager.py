import logging
import sys
from pathlib import Path
from PySide6 import QtWidgets
import config

logger = logging.getLogger(__name__)


def ensure_folder(p: Path) -> None:
    """Creates the folder if it does not exist."""
    p.mkdir(parents=True, exist_ok=True)


def init_paths(base_path: Path) -> None:
    """
    Initialize all global paths based on the selected base path.
    The backups folder is only created when the first backup is written.
    """
    config.DATA_FOLDER = Path(base_path)
    ensure_folder(config.DATA_FOLDER)

    config.DB_FILE = config.DATA_FOLDER / "gym.db"
    config.BACKUP_FOLDER = config.DATA_FOLDER / "backups"
    config.LOG_FILE = config.DATA_FOLDER / "solidgym.log"


def load_or_setup_paths() -> None:
    """
    Loads the data path from a local config file.
    If not found, prompts the user to select a folder via a dialog.
    """
    config_file = config.CONFIG_FILE

    # 1. Try to load existing config
    if config_file.exists():
        try:
            content = config_file.read_text().strip()
            if content:
                data_path = Path(content)
                if data_path.exists():
                    init_paths(data_path)
                    return
        except OSError as e:
            # If config is unreadable, ignore and ask user again
            logger.warning("Could not read %s: %s", config_file, e)

    # 2. If no config, we need to show a GUI dialog.
    app = QtWidgets.QApplication.instance()
    if not app:
        app = QtWidgets.QApplication(sys.argv)

    msg = QtWidgets.QMessageBox()
    msg.setWindowTitle(f"{config.APP_NAME} - First Time Setup")
    msg.setText(f"Welcome to {config.APP_NAME}.\nPlease select a folder where the gym database and backups will be stored.")
    msg.setIcon(QtWidgets.QMessageBox.Information)
    msg.exec()

    selected_dir = QtWidgets.QFileDialog.getExistingDirectory(
        None, "Select Data Storage Folder", str(Path.home())
    )

    if not selected_dir:
        QtWidgets.QMessageBox.critical(None, "Error", "Data storage path is required to continue.")
        sys.exit(0)

    data_path = Path(selected_dir)

    # 3. Save the selection for next time
    try:
        config_file.write_text(str(data_path))
        init_paths(data_path)
    except OSError as e:
        QtWidgets.QMessageBox.critical(None, "Error", f"Failed to save configuration: {str(e)}")
        sys.exit(0)
