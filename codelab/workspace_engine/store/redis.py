"""Redis-backed change journal.

Layout::

    codelab:changes:{workspace_id}    sorted set, score = event epoch seconds,
                                      member = FileChange JSON
    codelab:snapshot:{workspace_id}   hash, path -> mtime_ns

Entries older than the retention window are trimmed on every append, and
both keys carry the retention as TTL so idle workspaces expire entirely.
Loading a snapshot renews its TTL.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

import redis.asyncio as aioredis

from codelab.workspace_engine.models.changes import FileChange

_CHANGES_KEY = "codelab:changes:{}"
_SNAPSHOT_KEY = "codelab:snapshot:{}"


def _text(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisChangeJournal:
    """Redis implementation of the ChangeJournal protocol."""

    def __init__(self, redis: aioredis.Redis, *, retention: int = 86400) -> None:
        self._redis = redis
        self._retention = retention

    async def append(self, workspace_id: str, changes: Sequence[FileChange]) -> None:
        if not changes:
            return
        key = _CHANGES_KEY.format(workspace_id)
        newest = max(change.timestamp.timestamp() for change in changes)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zadd(key, {change.model_dump_json(): change.timestamp.timestamp() for change in changes})
            pipe.zremrangebyscore(key, "-inf", f"({newest - self._retention}")
            pipe.expire(key, self._retention)
            await pipe.execute()

    async def since(self, workspace_id: str, watermark: datetime) -> list[FileChange]:
        # Score range is inclusive; the exact datetime comparison below makes it strict.
        raw = await self._redis.zrangebyscore(_CHANGES_KEY.format(workspace_id), watermark.timestamp(), "+inf")
        changes = [FileChange.model_validate_json(item) for item in raw]
        return sorted((c for c in changes if c.timestamp > watermark), key=lambda c: c.timestamp)

    async def latest(self, workspace_id: str) -> datetime | None:
        raw = await self._redis.zrange(_CHANGES_KEY.format(workspace_id), -1, -1)
        if not raw:
            return None
        return FileChange.model_validate_json(raw[0]).timestamp

    async def load_snapshot(self, workspace_id: str) -> dict[str, int] | None:
        key = _SNAPSHOT_KEY.format(workspace_id)
        async with self._redis.pipeline(transaction=False) as pipe:
            pipe.exists(key)
            pipe.hgetall(key)
            pipe.expire(key, self._retention)
            exists, raw, _ = await pipe.execute()
        if not exists:
            return None
        return {_text(path): int(mtime) for path, mtime in raw.items() if _text(path)}

    async def save_snapshot(self, workspace_id: str, snapshot: dict[str, int]) -> None:
        key = _SNAPSHOT_KEY.format(workspace_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(key)
            # An empty workspace is still "scanned"; keep a sentinel field.
            pipe.hset(key, mapping={"": 0, **snapshot})
            pipe.expire(key, self._retention)
            await pipe.execute()
