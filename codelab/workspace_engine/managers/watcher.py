"""File change feed -- polling-based, watermark-driven.

Changes reach the journal two ways:

- ``record()`` -- the file API calls it on every write/delete;
- ``refresh()`` -- a scan of the workspace tree diffed against the last
  saved mtime snapshot, which picks up changes made by commands.

Consumers call ``changes_since(workspace_id, since)`` and advance their own
watermark.  ``ChangePoller`` does that bookkeeping for in-process consumers.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime, timedelta

from loguru import logger

from codelab.workspace_engine.models.changes import FileChange
from codelab.workspace_engine.models.enums import ChangeType
from codelab.workspace_engine.sandbox.executor import SandboxExecutor
from codelab.workspace_engine.store.base import ChangeJournal

_TICK = timedelta(microseconds=1)
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _epoch_ns(value: datetime) -> int:
    return (value - _EPOCH) // _TICK * 1000


def diff_snapshots(previous: dict[str, int], current: dict[str, int], timestamp: datetime) -> list[FileChange]:
    """Events turning *previous* into *current*, sorted by path."""
    changes: list[FileChange] = []
    for path in sorted(current.keys() | previous.keys()):
        if path not in previous:
            changes.append(FileChange(path=path, type=ChangeType.CREATED, timestamp=timestamp))
        elif path not in current:
            changes.append(FileChange(path=path, type=ChangeType.DELETED, timestamp=timestamp))
        elif current[path] != previous[path]:
            changes.append(FileChange(path=path, type=ChangeType.MODIFIED, timestamp=timestamp))
    return changes


def merge_changes(pending: Iterable[FileChange], incoming: Iterable[FileChange]) -> list[FileChange]:
    """Collapse events by ``(path, type)``, keeping the latest; oldest first."""
    merged: dict[tuple[str, ChangeType], FileChange] = {}
    for change in [*pending, *incoming]:
        current = merged.get(change.key)
        if current is None or change.timestamp >= current.timestamp:
            merged[change.key] = change
    return sorted(merged.values(), key=lambda change: change.timestamp)


class FileChangeWatcher:
    """Journals workspace file changes and serves them by watermark."""

    def __init__(self, executor: SandboxExecutor, journal: ChangeJournal) -> None:
        self._executor = executor
        self._journal = journal
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def journal(self) -> ChangeJournal:
        return self._journal

    async def _stamp(self, workspace_id: str, requested: datetime | None = None) -> datetime:
        """Timestamp for a new journal entry.  Caller holds the workspace lock.

        Strictly later than the newest journalled event, so entries are
        appended in timestamp order and a watermark never passes one that is
        still to come.
        """
        stamp = _utc(requested) if requested is not None else datetime.now(UTC)
        latest = await self._journal.latest(workspace_id)
        if latest is not None and stamp <= latest:
            stamp = latest + _TICK
        return stamp

    async def refresh(self, workspace_id: str, *, since: datetime | None = None) -> list[FileChange]:
        """Scan the workspace and journal out-of-band changes.

        With no saved baseline there is nothing to diff against: files
        modified after *since* are reported as created and the scan becomes
        the baseline.
        """
        self._executor.workspace_root(workspace_id)
        async with self._locks[workspace_id]:
            current = await self._executor.scan(workspace_id)
            now = await self._stamp(workspace_id)
            previous = await self._journal.load_snapshot(workspace_id)
            if previous is not None:
                changes = diff_snapshots(previous, current, now)
            elif since is not None:
                cutoff = _epoch_ns(_utc(since))
                changes = [
                    FileChange(path=path, type=ChangeType.CREATED, timestamp=now)
                    for path, mtime in sorted(current.items())
                    if mtime > cutoff
                ]
            else:
                changes = []
            if changes:
                await self._journal.append(workspace_id, changes)
                logger.debug("Detected {} change(s) in workspace {}", len(changes), workspace_id)
            await self._journal.save_snapshot(workspace_id, current)
            return changes

    async def record(
        self,
        workspace_id: str,
        path: str,
        change_type: ChangeType | str,
        *,
        timestamp: datetime | None = None,
    ) -> FileChange:
        """Journal a change made through the file API."""
        change_type = ChangeType(change_type)
        real = self._executor.resolve(workspace_id, path)
        rel = real.relative_to(self._executor.workspace_root(workspace_id).resolve()).as_posix()

        async with self._locks[workspace_id]:
            change = FileChange(path=rel, type=change_type, timestamp=await self._stamp(workspace_id, timestamp))
            await self._journal.append(workspace_id, [change])
            # Keep the scan baseline in step so the next refresh does not
            # report this change a second time.
            snapshot = await self._journal.load_snapshot(workspace_id)
            if snapshot is not None:
                if change_type is ChangeType.DELETED:
                    snapshot.pop(rel, None)
                else:
                    mtime = await self._executor.file_mtime(workspace_id, rel)
                    if mtime is None:
                        snapshot.pop(rel, None)
                    else:
                        snapshot[rel] = mtime
                await self._journal.save_snapshot(workspace_id, snapshot)
        return change

    async def changes_since(self, workspace_id: str, since: datetime) -> list[FileChange]:
        """Changes strictly newer than *since*, collapsed, oldest first."""
        await self.refresh(workspace_id, since=since)
        entries = await self._journal.since(workspace_id, _utc(since))
        return merge_changes([], entries)


class ChangePoller:
    """Polls one workspace's change feed, advancing its own watermark."""

    def __init__(
        self,
        watcher: FileChangeWatcher,
        workspace_id: str,
        *,
        since: datetime | None = None,
        interval: float = 5.0,
    ) -> None:
        self._watcher = watcher
        self._workspace_id = workspace_id
        self._watermark = _utc(since) if since is not None else datetime.now(UTC)
        self._interval = interval

    @property
    def watermark(self) -> datetime:
        return self._watermark

    async def poll(self) -> list[FileChange]:
        changes = await self._watcher.changes_since(self._workspace_id, self._watermark)
        if changes:
            self._watermark = max(change.timestamp for change in changes)
        return changes

    async def run(
        self,
        handler: Callable[[list[FileChange]], Awaitable[None]],
        stop: asyncio.Event,
    ) -> None:
        """Poll every ``interval`` seconds until *stop* is set."""
        while not stop.is_set():
            changes = await self.poll()
            if changes:
                await handler(changes)
            try:
                await asyncio.wait_for(stop.wait(), self._interval)
            except TimeoutError:
                continue
