import functools
import logging
from typing import Any, Callable, Dict, Optional, Sequence

from core.errors import GymBackupError
from models.backup import ScheduleConfig, coerce_credentials
from services.auth_service import create_user, update_user, verify_user
from services.backup_manager import BackupLifecycleManager
from services.backup_paths import default_backup_path, resolve_backup_directory

logger = logging.getLogger(__name__)

Result = Dict[str, Any]
# File pickers receive a starting folder/path and return the chosen path, or None if canceled
FilePicker = Callable[[str], Optional[str]]

INVALID_LOGIN = "Invalid username or password."


def returns_result(action: str):
    """
    Turns exceptions into {'error': message} so nothing escapes to the UI.
    Expected errors are logged without a traceback, anything else with one.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Result:
            try:
                return func(*args, **kwargs)
            except GymBackupError as e:
                logger.error("%s error: %s", action, e)
                return {"error": str(e)}
            except Exception as e:
                logger.exception("%s error", action)
                return {"error": str(e)}
        return wrapper
    return decorator


def _option(options: Dict[str, Any], camel: str, snake: str) -> Any:
    return options.get(camel, options.get(snake))


class BackupRequestHandler:
    """
    Entry point for the UI: one method per user action, each returning a plain
    dict ('success' / 'canceled' / 'error') that the dialog turns into a message.
    """
    def __init__(self, manager: BackupLifecycleManager, sync_provider: Any = None,
                 choose_open_file: Optional[FilePicker] = None,
                 choose_save_file: Optional[FilePicker] = None,
                 backend: Any = None):
        self.manager = manager
        self.sync_provider = sync_provider if sync_provider is not None else manager.sync_provider
        self.choose_open_file = choose_open_file
        self.choose_save_file = choose_save_file
        self.backend = backend if backend is not None else manager.backend

    # --- BACKUP ---

    @returns_result("Database backup")
    def backup_database(self) -> Result:
        record = self.manager.create_backup()
        return {"success": True, "path": record.path}

    @returns_result("Enhanced backup")
    def backup_database_enhanced(self, options: Optional[Dict[str, Any]] = None) -> Result:
        """
        Options: customPath, uploadToDrive, driveCredentials (snake_case also accepted).
        """
        options = options or {}
        result = self.manager.create_backup_enhanced(
            custom_path=_option(options, "customPath", "custom_path"),
            upload_to_drive=bool(_option(options, "uploadToDrive", "upload_to_drive")),
            drive_credentials=_option(options, "driveCredentials", "drive_credentials"),
        )
        return {"success": True, "path": result.record.path, "driveFileId": result.remote_id}

    @returns_result("Choose backup path")
    def choose_backup_path(self) -> Result:
        if self.choose_save_file is None:
            return {"error": "No file picker available."}

        file_path = self.choose_save_file(str(default_backup_path()))
        if not file_path:
            return {"canceled": True}
        return {"success": True, "filePath": file_path}

    # --- RESTORE / REPAIR ---

    @returns_result("Choose restore file")
    def choose_restore_file(self) -> Result:
        if self.choose_open_file is None:
            return {"error": "No file picker available."}

        file_path = self.choose_open_file(str(resolve_backup_directory()))
        if not file_path:
            return {"canceled": True}
        return {"success": True, "filePath": file_path}

    @returns_result("Database restore")
    def restore_database(self, source_path: Optional[str] = None) -> Result:
        """Restores from `source_path`, or asks the user to pick a backup file."""
        if source_path is None:
            picked = self.choose_restore_file()
            if not picked.get("success"):
                return picked
            source_path = picked["filePath"]

        self.manager.restore(source_path)
        return {"success": True, "needRestart": True}

    @returns_result("Database repair")
    def repair_database(self) -> Result:
        self.manager.repair()
        return {"success": True}

    # --- SCHEDULE / DRIVE ---

    @returns_result("Auto backup setup")
    def setup_auto_backup(self, schedule: str, drive_credentials: Any = None) -> Result:
        self.manager.schedule_recurring_backup(ScheduleConfig.create(schedule, drive_credentials))
        return {"success": True}

    @returns_result("Google Drive auth")
    def google_drive_auth(self, drive_credentials: Any = None) -> Result:
        """
        Returns the consent URL. With client id/secret given they are used,
        otherwise the provider falls back to credentials.json.
        """
        if self.sync_provider is None:
            return {"error": "Google Drive sync is not configured."}
        credentials = coerce_credentials(drive_credentials)
        return {"success": True, "authUrl": self.sync_provider.authorization_url(credentials)}

    @returns_result("Google Drive auth")
    def complete_drive_auth(self, code: str) -> Result:
        """Exchanges the pasted consent code (or redirect URL) for a refresh token."""
        if self.sync_provider is None:
            return {"error": "Google Drive sync is not configured."}
        credentials = self.sync_provider.complete_authorization(code)
        return {"success": True, "driveCredentials": credentials.to_dict()}

    # --- USERS ---

    def create_user(self, user_data: Dict[str, Any]) -> Result:
        try:
            user_id = create_user(
                self.backend,
                user_data["username"],
                user_data["password"],
                user_data["role"],
                full_name=user_data.get("full_name"),
                gym_id=user_data.get("gym_id"),
                is_active=user_data.get("is_active", True),
            )
        except Exception as e:
            logger.error("Create user error: %s", e)
            return {"success": False, "message": "Failed to create user", "error": str(e)}
        return {"success": True, "userId": user_id}

    def update_user(self, user_id: int, user_data: Dict[str, Any]) -> Result:
        """A blank or missing 'password' keeps the current one."""
        try:
            changes = update_user(
                self.backend,
                user_id,
                user_data["username"],
                user_data["role"],
                full_name=user_data.get("full_name"),
                gym_id=user_data.get("gym_id"),
                is_active=user_data.get("is_active", True),
                password=user_data.get("password"),
            )
        except Exception as e:
            logger.error("Update user error: %s", e)
            return {"success": False, "message": "Failed to update user", "error": str(e)}

        if not changes:
            return {"success": False, "message": "Failed to update user", "error": "User not found"}
        return {"success": True, "changes": changes}

    # --- DATABASE PASS-THROUGH ---

    @returns_result("Database query")
    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        return self.backend.query(sql, params)

    @returns_result("Database run")
    def run(self, sql: str, params: Optional[Sequence[Any]] = None) -> Result:
        return self.backend.run(sql, params)

    def login(self, username: str, password: str) -> Result:
        try:
            user = verify_user(self.backend, username, password)
        except Exception:
            logger.exception("Login error")
            return {"success": False, "message": "An error occurred while logging in."}

        if user is None:
            return {"success": False, "message": INVALID_LOGIN}
        return {"success": True, "user": user}
