"""SQLite database interface for PlayerHouse client preferences.

Holds the small amount of state that survives restarts, most importantly the
last explicitly selected network.
"""

import asyncio
from datetime import datetime
from typing import Optional

import aiosqlite

from .config import config
from .logging_utils import get_logger

logger = get_logger(__name__)

NETWORK_PREFERENCE_KEY = "playerhouse-network"

# SQL Schema
SCHEMA_SQL = """
-- Key/value user preferences
CREATE TABLE IF NOT EXISTS preferences (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class Database:
    """Async database interface for persisted preferences."""

    def __init__(self, db_path: str = None):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file. Defaults to config.database_path.
        """
        self.db_path = db_path or config.database_path
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize database schema."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.executescript(SCHEMA_SQL)
            await db.commit()
        logger.info(f"Database initialized at {self.db_path}")

    async def get_preference(self, key: str) -> Optional[str]:
        """Get a stored preference.

        Args:
            key: Preference key.

        Returns:
            The stored value, or None if the key was never written.
        """
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT value FROM preferences WHERE key = ?", (key,))
            row = await cursor.fetchone()
            return row[0] if row else None

    async def set_preference(self, key: str, value: str) -> None:
        """Insert or overwrite a preference.

        Args:
            key: Preference key.
            value: Value to store.
        """
        async with self._lock:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO preferences (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                    """,
                    (key, value, datetime.utcnow().isoformat()),
                )
                await db.commit()
        logger.debug(f"Stored preference {key}={value}")

    async def get_network_preference(self) -> Optional[str]:
        """Last explicitly selected network key, if any."""
        return await self.get_preference(NETWORK_PREFERENCE_KEY)

    async def set_network_preference(self, network_key: str) -> None:
        """Persist the explicitly selected network key."""
        await self.set_preference(NETWORK_PREFERENCE_KEY, network_key)
        logger.info(f"Saved network preference: {network_key}")


# Global database instance
db = Database()
