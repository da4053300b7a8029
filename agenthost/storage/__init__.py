"""Persistence: the shared SQLite database adapter and the cache manager."""

from agenthost.storage.cache import CacheManager, DbCacheAdapter
from agenthost.storage.sqlite import SqliteDatabaseAdapter

__all__ = ["CacheManager", "DbCacheAdapter", "SqliteDatabaseAdapter"]
