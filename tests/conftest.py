import datetime
import threading
import time
from pathlib import Path

import pytest

import config
from core.database import DatabaseService
from models.backup import RemoteCredentials
from services.backup_manager import BackupLifecycleManager

WEEKDAYS = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]

# A Monday, so a simulated week covers exactly one Sunday
CLOCK_START = datetime.datetime(2026, 10, 12, 0, 0)


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Points the config path globals at a throwaway data folder."""
    monkeypatch.setattr(config, "DATA_FOLDER", tmp_path)
    monkeypatch.setattr(config, "DB_FILE", tmp_path / "gym.db")
    monkeypatch.setattr(config, "BACKUP_FOLDER", tmp_path / "backups")
    monkeypatch.setattr(config, "LOG_FILE", tmp_path / "solidgym.log")
    return tmp_path


@pytest.fixture
def db(data_dir):
    service = DatabaseService(config.DB_FILE)
    service.init_db()
    yield service
    service.close()


class FakeBackend:
    """Storage backend that writes a small file and records call order."""
    def __init__(self, delay=0.0):
        self.delay = delay
        self.events = []
        self.backups = []
        self.fail = {}
        self.closed = 0
        self.started = threading.Event()

    def _call(self, name):
        self.events.append(f"{name}:start")
        self.started.set()
        time.sleep(self.delay)
        self.events.append(f"{name}:end")
        if name in self.fail:
            raise self.fail[name]

    def backup(self, destination):
        self._call("backup")
        Path(destination).write_bytes(b"SQLite format 3\x00fake")
        self.backups.append(destination)
        return destination

    def restore(self, source):
        self._call("restore")

    def repair(self):
        self._call("repair")

    def close(self):
        self.closed += 1


class FakeTrigger:
    """
    In-memory trigger with a fake clock.
    advance() walks the clock hour by hour and fires on matching cron times.
    """
    def __init__(self):
        self.cron_expression = None
        self.callback = None
        self.start_calls = 0
        self.stop_calls = 0
        self.now = CLOCK_START

    @property
    def is_active(self):
        return self.callback is not None

    def start(self, cron_expression, callback):
        assert not self.is_active, "trigger started twice without stop()"
        self.start_calls += 1
        self.cron_expression = cron_expression
        self.callback = callback

    def stop(self):
        self.stop_calls += 1
        self.cron_expression = None
        self.callback = None

    def advance(self, hours):
        fired = 0
        for _ in range(hours):
            self.now += datetime.timedelta(hours=1)
            if self.is_active and cron_matches(self.cron_expression, self.now):
                self.callback()
                fired += 1
        return fired


def cron_matches(expression, moment):
    minute, hour, dom, month, dow = expression.split()

    def ok(field, value):
        return field == "*" or int(field) == value

    return (ok(minute, moment.minute) and ok(hour, moment.hour)
            and ok(dom, moment.day) and ok(month, moment.month)
            and (dow == "*" or WEEKDAYS[moment.weekday()] == dow))


class FakeSync:
    def __init__(self, upload_error=None, auth_error=None):
        self.upload_error = upload_error
        self.auth_error = auth_error
        self.uploads = []
        self.auth_calls = 0
        self.url_credentials = []
        self.codes = []

    def authorization_url(self, credentials=None):
        self.url_credentials.append(credentials)
        return "https://accounts.google.com/o/oauth2/auth?client_id=test"

    def complete_authorization(self, code_or_url):
        if self.auth_error:
            raise self.auth_error
        self.codes.append(code_or_url)
        return RemoteCredentials("id-123", "secret", refresh_token="refresh-new")

    def authenticate(self, credentials):
        self.auth_calls += 1
        if self.auth_error:
            raise self.auth_error
        return "drive-client"

    def upload(self, client, local_path, remote_name):
        if self.upload_error:
            raise self.upload_error
        self.uploads.append((client, local_path, remote_name))
        return "drive-file-1"


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def trigger():
    return FakeTrigger()


@pytest.fixture
def sync():
    return FakeSync()


@pytest.fixture
def manager(data_dir, backend, sync, trigger):
    return BackupLifecycleManager(backend, sync_provider=sync, trigger=trigger)


@pytest.fixture
def creds():
    return {"clientId": "id-123", "clientSecret": "secret", "refreshToken": "refresh-abc"}
