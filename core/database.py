import logging
import os
import sqlite3
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from core.errors import StorageError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class DatabaseService:
    """
    Owns the live SQLite database file.

    Besides the plain query/run pass-through used by the UI, it knows how to
    copy itself to a backup file, load a backup back in, and repair itself.
    All failures surface as StorageError.
    """
    def __init__(self, db_file: PathLike):
        self.db_file = Path(db_file)
        self._conn: Optional[sqlite3.Connection] = None
        # Connection is shared by the UI workers and the scheduler thread
        self._lock = threading.RLock()

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            self.db_file.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_file), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def init_db(self) -> None:
        """
        Creates the gyms and users tables if they do not exist.
        """
        with self._lock:
            conn = self._connect()
            c = conn.cursor()

            # 1. Gyms Table
            c.execute("""
                CREATE TABLE IF NOT EXISTS gyms (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    type TEXT
                )
            """)

            # 2. Users Table
            c.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT UNIQUE NOT NULL,
                    password_hash TEXT NOT NULL,
                    full_name TEXT,
                    role TEXT NOT NULL CHECK(role IN ('admin', 'user')),
                    gym_id INTEGER REFERENCES gyms(id),
                    is_active INTEGER NOT NULL DEFAULT 1
                )
            """)

            conn.commit()

    # --- PASS-THROUGH QUERIES ---

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """Runs a SELECT and returns the rows as dicts."""
        try:
            with self._lock:
                c = self._connect().execute(sql, tuple(params or ()))
                return [dict(row) for row in c.fetchall()]
        except sqlite3.Error as e:
            raise StorageError(str(e), e) from e

    def run(self, sql: str, params: Optional[Sequence[Any]] = None) -> Dict[str, Any]:
        """Runs an INSERT/UPDATE/DELETE and commits it."""
        try:
            with self._lock:
                conn = self._connect()
                c = conn.execute(sql, tuple(params or ()))
                conn.commit()
                return {"changes": c.rowcount, "lastInsertRowid": c.lastrowid}
        except sqlite3.Error as e:
            raise StorageError(str(e), e) from e

    # --- BACKUP / RESTORE / REPAIR ---

    def backup(self, destination: PathLike) -> str:
        """
        Copies the live database into a file using SQLite's online backup API.
        The copy is written to a temporary file beside the destination and
        then moved over it, so an existing file is only replaced by a
        complete backup.

        Returns:
            str: The path of the written backup.

        Raises:
            StorageError: If the copy fails. The destination is left as it was.
        """
        dest = Path(destination)
        partial = None

        try:
            fd, partial = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".partial", dir=dest.parent)
            os.close(fd)
            with self._lock:
                target = sqlite3.connect(partial)
                try:
                    self._connect().backup(target)
                finally:
                    target.close()
            os.replace(partial, dest)
        except (sqlite3.Error, OSError) as e:
            # Never leave a half-written backup behind
            if partial and os.path.exists(partial):
                os.remove(partial)
            raise StorageError(f"Backup failed: {e}", e) from e

        logger.info("Database backed up to %s", dest)
        return str(dest)

    def restore(self, source: PathLike) -> None:
        """
        Replaces the live database content with the content of a backup file.
        The backup is validated first; the live database is untouched if it is
        missing, not a SQLite file, or corrupt.
        """
        src_path = Path(source)
        if not src_path.is_file():
            raise StorageError(f"Backup file not found: {src_path}")

        try:
            src = sqlite3.connect(f"{src_path.resolve().as_uri()}?mode=ro", uri=True)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open backup file: {e}", e) from e

        try:
            status = _integrity_status(src)
            if status != "ok":
                raise StorageError(f"Backup file is corrupt: {status}")

            with self._lock:
                live = self._connect()
                live.commit()
                src.backup(live)
        except sqlite3.Error as e:
            raise StorageError(f"Restore failed: {e}", e) from e
        finally:
            src.close()

        logger.info("Database restored from %s", src_path)

    def repair(self) -> None:
        """
        Checks integrity, rebuilds indexes when damaged, and compacts the file.

        Raises:
            StorageError: If the database is still corrupt afterwards.
        """
        try:
            with self._lock:
                conn = self._connect()
                conn.commit()

                status = _integrity_status(conn)
                if status != "ok":
                    logger.warning("Integrity check failed (%s), rebuilding indexes", status)
                    conn.execute("REINDEX")
                    conn.commit()

                conn.execute("VACUUM")
                status = _integrity_status(conn)
        except sqlite3.Error as e:
            raise StorageError(f"Repair failed: {e}", e) from e

        if status != "ok":
            raise StorageError(f"Database is still corrupt after repair: {status}")
        logger.info("Database repaired: %s", self.db_file)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


def _integrity_status(conn: sqlite3.Connection) -> str:
    # integrity_check returns one row "ok", or one row per problem found
    rows = conn.execute("PRAGMA integrity_check").fetchall()
    return "; ".join(str(row[0]) for row in rows)
