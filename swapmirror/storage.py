"""
SQLite storage for followers and copy relationships.

Tables:
- users: follower wallet address and encrypted key (no secrets)
- copy_trading: (follower_id, followed_address) pairs, unique

Implements both FollowerRegistry and CredentialStore. DB errors raise.
"""

import asyncio
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import FrozenSet, Optional

from .registry import normalize_leader
from .types import CredentialRecord

logger = logging.getLogger(__name__)

# Schema version for migration tracking
SCHEMA_VERSION = 1


class SqliteStore:
    """SQLite persistence for the registry and credential store."""

    def __init__(self, db_path: str):
        """
        Initialize database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = asyncio.Lock()
        self._init_schema()

    @contextmanager
    def get_connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self):
        """Initialize database schema. Idempotent."""
        with self.get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

            cursor.execute("SELECT value FROM metadata WHERE key = 'schema_version'")
            row = cursor.fetchone()
            if row:
                existing_version = int(row[0])
                if existing_version != SCHEMA_VERSION:
                    raise RuntimeError(
                        f"Schema version mismatch: expected {SCHEMA_VERSION}, got {existing_version}"
                    )
            else:
                cursor.execute(
                    "INSERT INTO metadata (key, value) VALUES ('schema_version', ?)",
                    (str(SCHEMA_VERSION),),
                )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    follower_id TEXT NOT NULL UNIQUE,
                    wallet_address TEXT NOT NULL,
                    encrypted_private_key TEXT NOT NULL
                )
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS copy_trading (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    follower_id TEXT NOT NULL,
                    followed_address TEXT NOT NULL,
                    UNIQUE(follower_id, followed_address)
                )
                """
            )

            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_copy_trading_leader ON copy_trading(followed_address)"
            )

    # === Sync operations (run in a worker thread) ===

    def _add_follower(self, leader: str, follower_id: str) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO copy_trading (follower_id, followed_address) VALUES (?, ?)",
                (follower_id, leader),
            )
            return cursor.rowcount > 0

    def _remove_follower(self, leader: str, follower_id: str) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM copy_trading WHERE follower_id = ? AND followed_address = ?",
                (follower_id, leader),
            )
            return cursor.rowcount > 0

    def _followers_of(self, leader: str) -> FrozenSet[str]:
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT follower_id FROM copy_trading WHERE followed_address = ?", (leader,)
            ).fetchall()
        return frozenset(row["follower_id"] for row in rows)

    def _leaders_for(self, follower_id: str) -> FrozenSet[str]:
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT followed_address FROM copy_trading WHERE follower_id = ?", (follower_id,)
            ).fetchall()
        return frozenset(row["followed_address"] for row in rows)

    def _all_leaders(self) -> FrozenSet[str]:
        with self.get_connection() as conn:
            rows = conn.execute("SELECT DISTINCT followed_address FROM copy_trading").fetchall()
        return frozenset(row["followed_address"] for row in rows)

    def _get(self, follower_id: str) -> Optional[CredentialRecord]:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT follower_id, wallet_address, encrypted_private_key FROM users WHERE follower_id = ?",
                (follower_id,),
            ).fetchone()
        if row is None:
            return None
        return CredentialRecord(
            follower_id=row["follower_id"],
            wallet_address=row["wallet_address"],
            encrypted_key=row["encrypted_private_key"],
        )

    def _put(self, record: CredentialRecord) -> None:
        with self.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO users (follower_id, wallet_address, encrypted_private_key)
                VALUES (?, ?, ?)
                ON CONFLICT(follower_id) DO UPDATE SET
                    wallet_address = excluded.wallet_address,
                    encrypted_private_key = excluded.encrypted_private_key
                """,
                (record.follower_id, record.wallet_address, record.encrypted_key),
            )

    # === FollowerRegistry ===

    async def add_follower(self, leader: str, follower_id: str) -> bool:
        leader = normalize_leader(leader)
        async with self._write_lock:
            added = await asyncio.to_thread(self._add_follower, leader, str(follower_id))
        if added:
            logger.info(f"Follower {follower_id} now copying {leader}")
        return added

    async def remove_follower(self, leader: str, follower_id: str) -> bool:
        leader = normalize_leader(leader)
        async with self._write_lock:
            removed = await asyncio.to_thread(self._remove_follower, leader, str(follower_id))
        if removed:
            logger.info(f"Follower {follower_id} stopped copying {leader}")
        return removed

    async def followers_of(self, leader: str) -> FrozenSet[str]:
        return await asyncio.to_thread(self._followers_of, normalize_leader(leader))

    async def leaders_tracked_for_follower(self, follower_id: str) -> FrozenSet[str]:
        return await asyncio.to_thread(self._leaders_for, str(follower_id))

    async def all_leaders(self) -> FrozenSet[str]:
        return await asyncio.to_thread(self._all_leaders)

    # === CredentialStore ===

    async def get(self, follower_id: str) -> Optional[CredentialRecord]:
        return await asyncio.to_thread(self._get, str(follower_id))

    async def put(self, record: CredentialRecord) -> None:
        async with self._write_lock:
            await asyncio.to_thread(self._put, record)
