"""Change journal interface for the file change feed.

The journal keeps two things per workspace:

- a time-ordered log of ``FileChange`` events, trimmed after a retention
  window;
- the last mtime snapshot of the workspace tree, used to detect changes made
  by commands (which bypass the file API) on the next scan.

Both are shared state: with the Redis backend every service instance sees
the same feed.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from codelab.workspace_engine.models.changes import FileChange


@runtime_checkable
class ChangeJournal(Protocol):
    async def append(self, workspace_id: str, changes: Sequence[FileChange]) -> None:
        """Journal *changes*.  No-op for an empty sequence."""
        ...

    async def since(self, workspace_id: str, watermark: datetime) -> list[FileChange]:
        """Entries with ``timestamp > watermark``, oldest first."""
        ...

    async def latest(self, workspace_id: str) -> datetime | None:
        """Timestamp of the newest retained entry, or ``None``."""
        ...

    async def load_snapshot(self, workspace_id: str) -> dict[str, int] | None:
        """Last saved ``{path: mtime_ns}`` snapshot, or ``None`` if never scanned."""
        ...

    async def save_snapshot(self, workspace_id: str, snapshot: dict[str, int]) -> None:
        ...
