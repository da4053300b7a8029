"""
SQLite database adapter: the host's persistence handle.

One adapter is opened per process and shared by every agent: accounts,
conversation memories, and the key/value cache table all live in the same
``cache.db`` file under the data directory.

The adapter uses synchronous sqlite3. Every call is short and the host runs
on a single event loop, so there is never more than one writer.
"""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Optional

import structlog

from agenthost.types import Memory

logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    agent_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    username TEXT,
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS memories (
    memory_id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id TEXT NOT NULL,
    room_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'user',
    text TEXT NOT NULL,
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_memories_room ON memories(agent_id, room_id, created_at);

CREATE TABLE IF NOT EXISTS cache (
    key TEXT NOT NULL,
    agent_id TEXT NOT NULL,
    value TEXT NOT NULL,
    created_at REAL NOT NULL,
    expires_at REAL,
    PRIMARY KEY (key, agent_id)
);
"""


class SqliteDatabaseAdapter:
    """Persistent storage handle: ``init()`` once, ``close()`` on teardown."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def path(self) -> Path:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def init(self) -> None:
        """Open the connection and ensure the schema exists. Safe to repeat."""
        if self._conn is not None:
            return
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA)
        self._conn.commit()
        logger.info("database.initialized", path=str(self._db_path))

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("database.closed", path=str(self._db_path))

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database is not initialized. Call init() first.")
        return self._conn

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def ensure_account(self, agent_id: str, name: str, username: Optional[str] = None) -> None:
        conn = self._require_connection()
        conn.execute(
            "INSERT OR IGNORE INTO accounts (agent_id, name, username, created_at) "
            "VALUES (?, ?, ?, ?)",
            (agent_id, name, username, time.time()),
        )
        conn.commit()

    def get_account(self, agent_id: str) -> Optional[dict]:
        conn = self._require_connection()
        row = conn.execute(
            "SELECT agent_id, name, username FROM accounts WHERE agent_id = ?",
            (agent_id,),
        ).fetchone()
        return dict(row) if row else None

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    def create_memory(self, memory: Memory) -> None:
        conn = self._require_connection()
        conn.execute(
            "INSERT INTO memories (agent_id, room_id, user_id, role, text, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                memory.agent_id,
                memory.room_id,
                memory.user_id,
                memory.role,
                memory.text,
                memory.created_at,
            ),
        )
        conn.commit()

    def get_memories(self, agent_id: str, room_id: str, count: int = 20) -> list[Memory]:
        """Return the most recent *count* memories in chronological order."""
        conn = self._require_connection()
        rows = conn.execute(
            "SELECT agent_id, room_id, user_id, role, text, created_at FROM memories "
            "WHERE agent_id = ? AND room_id = ? "
            "ORDER BY created_at DESC, memory_id DESC LIMIT ?",
            (agent_id, room_id, max(1, int(count))),
        ).fetchall()
        return [
            Memory(
                agent_id=row["agent_id"],
                room_id=row["room_id"],
                user_id=row["user_id"],
                role=row["role"],
                text=row["text"],
                created_at=row["created_at"],
            )
            for row in reversed(rows)
        ]

    # ------------------------------------------------------------------
    # Cache table
    # ------------------------------------------------------------------

    def get_cache(self, key: str, agent_id: str) -> Optional[str]:
        conn = self._require_connection()
        row = conn.execute(
            "SELECT value, expires_at FROM cache WHERE key = ? AND agent_id = ?",
            (key, agent_id),
        ).fetchone()
        if row is None:
            return None
        if row["expires_at"] is not None and row["expires_at"] <= time.time():
            self.delete_cache(key, agent_id)
            return None
        return row["value"]

    def set_cache(
        self,
        key: str,
        agent_id: str,
        value: str,
        expires_at: Optional[float] = None,
    ) -> None:
        conn = self._require_connection()
        conn.execute(
            "INSERT OR REPLACE INTO cache (key, agent_id, value, created_at, expires_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (key, agent_id, value, time.time(), expires_at),
        )
        conn.commit()

    def delete_cache(self, key: str, agent_id: str) -> None:
        conn = self._require_connection()
        conn.execute("DELETE FROM cache WHERE key = ? AND agent_id = ?", (key, agent_id))
        conn.commit()
