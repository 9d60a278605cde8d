import logging
from typing import Any, Dict, Optional

import bcrypt

from core.database import DatabaseService
from core.errors import StorageError

logger = logging.getLogger(__name__)

LOGIN_QUERY = (
    "SELECT u.*, g.name AS gym_name, g.type AS gym_type "
    "FROM users u JOIN gyms g ON u.gym_id = g.id "
    "WHERE u.username = ? AND u.is_active = 1"
)


def _hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


def create_user(db: DatabaseService, username: str, password: str, role: str,
                full_name: Optional[str] = None, gym_id: Optional[int] = None,
                is_active: bool = True) -> int:
    """
    Creates a new user with a securely hashed password.

    Returns:
        int: The new user's ID.

    Raises:
        ValueError: If the username already exists.
    """
    if db.query("SELECT 1 FROM users WHERE username=?", [username]):
        raise ValueError("Username already exists")

    hashed = _hash_password(password)

    result = db.run(
        "INSERT INTO users (username, password_hash, full_name, role, gym_id, is_active) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        [username, hashed, full_name, role, gym_id, int(is_active)],
    )
    return result["lastInsertRowid"]


def update_user(db: DatabaseService, user_id: int, username: str, role: str,
                full_name: Optional[str] = None, gym_id: Optional[int] = None,
                is_active: bool = True, password: Optional[str] = None) -> int:
    """
    Updates a user's profile. The password is only changed when a new one is given.

    Returns:
        int: Number of rows changed (0 if the user does not exist).

    Raises:
        ValueError: If another user already has the username.
    """
    if db.query("SELECT 1 FROM users WHERE username=? AND id<>?", [username, user_id]):
        raise ValueError("Username already exists")

    fields = ["username = ?", "full_name = ?", "role = ?", "gym_id = ?", "is_active = ?"]
    params = [username, full_name, role, gym_id, int(is_active)]
    if password:
        fields.insert(1, "password_hash = ?")
        params.insert(1, _hash_password(password))

    result = db.run(f"UPDATE users SET {', '.join(fields)} WHERE id = ?", params + [user_id])
    return result["changes"]


def verify_user(db: DatabaseService, username: str, password: str) -> Optional[Dict[str, Any]]:
    """
    Verifies login credentials against the active users of a gym.

    Returns:
        Optional[Dict]: The user row (without the password hash) if login succeeds, None otherwise.
    """
    try:
        rows = db.query(LOGIN_QUERY, [username])
    except StorageError as e:
        logger.error("Database error verifying user: %s", e)
        return None

    if not rows:
        return None

    user = rows[0]
    stored = user.pop("password_hash")
    if isinstance(stored, str):
        stored = stored.encode('utf-8')

    if bcrypt.checkpw(password.encode('utf-8'), stored):
        return user
    return None
