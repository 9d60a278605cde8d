import datetime
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Union

from core.errors import ScheduleError


@dataclass(frozen=True)
class BackupRecord:
    """
    Describes one completed backup file.
    The file existed when the record was created; nothing guarantees it still does.
    """
    path: str
    created_at: datetime.datetime
    size_bytes: int
    remote_id: Optional[str] = None  # Google Drive file ID, if uploaded

    def with_remote_id(self, remote_id: Optional[str]) -> "BackupRecord":
        return replace(self, remote_id=remote_id)


class Frequency(str, Enum):
    MANUAL = "manual"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, value: Union[str, "Frequency", None]) -> "Frequency":
        """
        Converts user input ('Daily', ' weekly ', Frequency.DAILY) to a Frequency.

        Raises:
            ScheduleError: If the value is not a known frequency.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ScheduleError(f"Unknown backup frequency: {value!r}")


@dataclass
class RemoteCredentials:
    """
    OAuth bundle for Google Drive. Supplied by the caller on every call;
    never written to disk by the backup subsystem.
    """
    client_id: str
    client_secret: str = field(repr=False)
    redirect_uri: str = "http://localhost"
    refresh_token: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteCredentials":
        """Accepts both the UI's camelCase keys and snake_case keys."""
        def pick(*keys: str) -> Optional[str]:
            for key in keys:
                if data.get(key):
                    return data[key]
            return None

        return cls(
            client_id=pick("client_id", "clientId") or "",
            client_secret=pick("client_secret", "clientSecret") or "",
            redirect_uri=pick("redirect_uri", "redirectUri") or "http://localhost",
            refresh_token=pick("refresh_token", "refreshToken"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clientId": self.client_id,
            "clientSecret": self.client_secret,
            "redirectUri": self.redirect_uri,
            "refreshToken": self.refresh_token,
        }


def coerce_credentials(value: Any) -> Optional[RemoteCredentials]:
    """Returns None for empty input, passes RemoteCredentials through, parses dicts."""
    if not value:
        return None
    if isinstance(value, RemoteCredentials):
        return value
    if isinstance(value, dict):
        return RemoteCredentials.from_dict(value)
    raise TypeError(f"Unsupported credentials type: {type(value).__name__}")


@dataclass(frozen=True)
class ScheduleConfig:
    frequency: Frequency
    remote_credentials: Optional[RemoteCredentials] = None

    @classmethod
    def create(cls, frequency: Union[str, Frequency], credentials: Any = None) -> "ScheduleConfig":
        return cls(Frequency.parse(frequency), coerce_credentials(credentials))

    @property
    def uploads(self) -> bool:
        return self.remote_credentials is not None


@dataclass(frozen=True)
class EnhancedBackupResult:
    record: BackupRecord
    remote_id: Optional[str] = None
