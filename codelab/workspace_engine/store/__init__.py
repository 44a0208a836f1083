"""Change journal implementations for the file change feed."""

from codelab.workspace_engine.store.base import ChangeJournal
from codelab.workspace_engine.store.memory import MemoryChangeJournal
from codelab.workspace_engine.store.redis import RedisChangeJournal

__all__ = ["ChangeJournal", "MemoryChangeJournal", "RedisChangeJournal"]
