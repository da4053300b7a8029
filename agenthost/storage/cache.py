"""
Cache manager backed by the shared database's ``cache`` table.

The manager is created once per process and memoized: the first agent's id
scopes every entry, and later agents receive the same instance.
"""

from __future__ import annotations

import json
import time
from typing import Any, Optional

import structlog

from agenthost.storage.sqlite import SqliteDatabaseAdapter

logger = structlog.get_logger(__name__)


class DbCacheAdapter:
    """String key/value access to the cache table for one agent scope."""

    def __init__(self, db: SqliteDatabaseAdapter, agent_id: str) -> None:
        self._db = db
        self.agent_id = agent_id

    def get(self, key: str) -> Optional[str]:
        return self._db.get_cache(key, self.agent_id)

    def set(self, key: str, value: str, expires_at: Optional[float] = None) -> None:
        self._db.set_cache(key, self.agent_id, value, expires_at)

    def delete(self, key: str) -> None:
        self._db.delete_cache(key, self.agent_id)


class CacheManager:
    """JSON-valued cache with optional time-to-live."""

    def __init__(self, adapter: DbCacheAdapter) -> None:
        self._adapter = adapter

    @property
    def scope(self) -> str:
        return self._adapter.agent_id

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._adapter.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("cache.corrupt_entry", key=key)
            self._adapter.delete(key)
            return default

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        expires_at = time.time() + ttl_seconds if ttl_seconds is not None else None
        self._adapter.set(key, json.dumps(value), expires_at)

    def delete(self, key: str) -> None:
        self._adapter.delete(key)
