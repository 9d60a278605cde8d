from pathlib import Path

# Global Config (populated by services.file_manager.init_paths)
DATA_FOLDER = None
DB_FILE = None
BACKUP_FOLDER = None
LOG_FILE = None

APP_NAME = "SOLID GYM"

# Saves a hidden config file in the user's home directory
CONFIG_FILE = Path.home() / ".solidgym_config"

# Google OAuth client secrets, downloaded from Google Cloud Console.
# NOTE: Ensure 'credentials.json' is in your .gitignore file!
CREDENTIALS_FILE = Path("credentials.json")

# Backup naming
BACKUP_PREFIX = "gym-backup"
AUTO_BACKUP_PREFIX = "gym-auto-backup"
BACKUP_EXTENSION = ".db"

# Scheduled backups run at 02:00 local time
AUTO_BACKUP_HOUR = 2
AUTO_BACKUP_MINUTE = 0

# Seconds before a Google Drive HTTP call gives up
UPLOAD_TIMEOUT = 30

# Permissions we need (only files created by this app)
DRIVE_SCOPES = ['https://www.googleapis.com/auth/drive.file']
DRIVE_FOLDER_NAME = "SolidGym Backups"
