"""Feed sources and target stores implementing the synchronization protocols."""

from feedsync.storage.memory import InMemoryFeedSource, InMemorySyncTarget
from feedsync.storage.sql_target import SqlSyncTarget

__all__ = ["InMemoryFeedSource", "InMemorySyncTarget", "SqlSyncTarget"]
