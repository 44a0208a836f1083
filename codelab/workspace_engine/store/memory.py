"""Process-local change journal.

Used when Redis is not configured and in tests.  Ephemeral -- empty on
process restart, not shared between instances.
"""

from __future__ import annotations

import bisect
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from codelab.workspace_engine.models.changes import FileChange


class MemoryChangeJournal:
    """In-memory implementation of the ChangeJournal protocol."""

    def __init__(self, *, retention: float = 86400) -> None:
        self._retention = timedelta(seconds=retention)
        self._entries: dict[str, list[FileChange]] = {}
        self._snapshots: dict[str, dict[str, int]] = {}

    async def append(self, workspace_id: str, changes: Sequence[FileChange]) -> None:
        if not changes:
            return
        entries = self._entries.setdefault(workspace_id, [])
        for change in changes:
            bisect.insort(entries, change, key=lambda c: c.timestamp)
        cutoff = datetime.now(UTC) - self._retention
        keep_from = bisect.bisect_right(entries, cutoff, key=lambda c: c.timestamp)
        del entries[:keep_from]

    async def since(self, workspace_id: str, watermark: datetime) -> list[FileChange]:
        entries = self._entries.get(workspace_id, [])
        start = bisect.bisect_right(entries, watermark, key=lambda c: c.timestamp)
        return list(entries[start:])

    async def latest(self, workspace_id: str) -> datetime | None:
        entries = self._entries.get(workspace_id)
        return entries[-1].timestamp if entries else None

    async def load_snapshot(self, workspace_id: str) -> dict[str, int] | None:
        snapshot = self._snapshots.get(workspace_id)
        return dict(snapshot) if snapshot is not None else None

    async def save_snapshot(self, workspace_id: str, snapshot: dict[str, int]) -> None:
        self._snapshots[workspace_id] = dict(snapshot)
