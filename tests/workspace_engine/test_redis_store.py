"""Integration tests for the Redis change journal."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from codelab.workspace_engine.models.changes import FileChange
from codelab.workspace_engine.models.enums import ChangeType
from codelab.workspace_engine.store.redis import RedisChangeJournal

pytestmark = pytest.mark.integration

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _change(path: str, type: ChangeType, seconds: float) -> FileChange:
    return FileChange(path=path, type=type, timestamp=T0 + timedelta(seconds=seconds))


async def test_since_is_strict_and_ordered(redis_client) -> None:
    journal = RedisChangeJournal(redis_client, retention=10**9)
    await journal.append(
        "ws1",
        [
            _change("b.ts", ChangeType.MODIFIED, 2),
            _change("a.ts", ChangeType.CREATED, 1),
            _change("c.ts", ChangeType.DELETED, 3),
        ],
    )

    assert [c.path for c in await journal.since("ws1", T0)] == ["a.ts", "b.ts", "c.ts"]
    later = await journal.since("ws1", T0 + timedelta(seconds=1))
    assert [c.path for c in later] == ["b.ts", "c.ts"]
    assert later[1].type == ChangeType.DELETED
    assert await journal.since("ws2", T0) == []


async def test_retention_trims_old_events(redis_client) -> None:
    journal = RedisChangeJournal(redis_client, retention=60)
    await journal.append("ws1", [_change("old.ts", ChangeType.CREATED, 0)])
    await journal.append("ws1", [_change("new.ts", ChangeType.CREATED, 120)])

    assert [c.path for c in await journal.since("ws1", T0 - timedelta(days=1))] == ["new.ts"]
    assert 0 < await redis_client.ttl("codelab:changes:ws1") <= 60


async def test_snapshot_round_trip(redis_client) -> None:
    journal = RedisChangeJournal(redis_client)
    assert await journal.load_snapshot("ws1") is None

    await journal.save_snapshot("ws1", {})
    assert await journal.load_snapshot("ws1") == {}

    await journal.save_snapshot("ws1", {"a.ts": 1, "src/b.ts": 2})
    await journal.save_snapshot("ws1", {"a.ts": 3})
    assert await journal.load_snapshot("ws1") == {"a.ts": 3}


async def test_latest(redis_client) -> None:
    journal = RedisChangeJournal(redis_client, retention=10**9)
    assert await journal.latest("ws1") is None
    await journal.append("ws1", [_change("b.ts", ChangeType.CREATED, 7.5), _change("a.ts", ChangeType.CREATED, 1)])
    assert await journal.latest("ws1") == T0 + timedelta(seconds=7.5)


async def test_loading_snapshot_renews_ttl(redis_client) -> None:
    journal = RedisChangeJournal(redis_client, retention=600)
    await journal.save_snapshot("ws1", {"a.ts": 1})
    await redis_client.expire("codelab:snapshot:ws1", 5)

    assert await journal.load_snapshot("ws1") == {"a.ts": 1}
    assert await redis_client.ttl("codelab:snapshot:ws1") > 5
