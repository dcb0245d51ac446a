"""User directory backed by SQLite.

Resolves user ids to display names and roles. The workflow engine itself
only needs ids; this directory serves the HTTP layer (role checks, auditor
names next to receipts).

Design Decisions:
- Same database file as the record store by default
- Connection-per-operation pattern
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional

from reimburse.models.user import User, UserRole

UNKNOWN_USER_NAME = "Unknown User"


class UserRepository:
    """SQLite-based persistence for User objects.

    Storage Strategy:
        - Single table: users
        - Email has UNIQUE constraint
        - Automatic schema creation on first use
    """

    def __init__(self, db_path: Optional[str] = None):
        """Initialize repository with database path.

        Args:
            db_path: Path to SQLite database file. If None, uses default
                    location at reimburse/data/reimburse.db
        """
        if db_path is None:
            package_dir = Path(__file__).parent.parent
            data_dir = package_dir / "data"
            data_dir.mkdir(exist_ok=True)
            db_path = str(data_dir / "reimburse.db")
        elif db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.db_path = db_path
        self._init_schema()

    def _init_schema(self) -> None:
        """Create users table if it doesn't exist.

        Schema:
            user_id: TEXT PRIMARY KEY
            name: TEXT NOT NULL
            email: TEXT UNIQUE
            role: TEXT NOT NULL (member, reviewer)
            is_active: INTEGER NOT NULL (0 or 1)
            created_at: TEXT NOT NULL (ISO timestamp)
        """
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT UNIQUE,
                    role TEXT NOT NULL,
                    is_active INTEGER NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def create_user(self, user: User) -> User:
        """Create a new user.

        Raises:
            sqlite3.IntegrityError: If user_id or email already exists
        """
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                INSERT INTO users (user_id, name, email, role, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                user.user_id,
                user.name,
                user.email,
                user.role.value,
                1 if user.is_active else 0,
                user.created_at.isoformat(),
            ))
            conn.commit()
            return user
        finally:
            conn.close()

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        """Get user by user_id, or None."""
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT user_id, name, email, role, is_active, created_at
                FROM users WHERE user_id = ?
            """, (str(user_id),))
            row = cursor.fetchone()

            if not row:
                return None

            return User(
                user_id=row[0],
                name=row[1],
                email=row[2],
                role=UserRole(row[3]),
                is_active=bool(row[4]),
                created_at=datetime.fromisoformat(row[5]),
            )
        finally:
            conn.close()

    def get_display_names(self, user_ids: Iterable[str]) -> Dict[str, str]:
        """Map each distinct id to its display name."""
        ids = list(dict.fromkeys(str(user_id) for user_id in user_ids))
        if not ids:
            return {}

        conn = sqlite3.connect(self.db_path)
        try:
            placeholders = ",".join("?" * len(ids))
            cursor = conn.execute(
                f"SELECT user_id, name FROM users WHERE user_id IN ({placeholders})",
                ids,
            )
            found = {row[0]: row[1] for row in cursor.fetchall()}
        finally:
            conn.close()
        return {user_id: found.get(user_id, UNKNOWN_USER_NAME) for user_id in ids}
