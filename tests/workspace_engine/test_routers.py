"""HTTP-level tests for the workspace engine routers.

Managers that need PostgreSQL are replaced by mocks; the executor and the
change feed are real, backed by a temporary workspace.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from codelab.workspace_engine.app import app
from codelab.workspace_engine.deps import get_db
from codelab.workspace_engine.errors import EmbeddingError, NotFoundError, ValidationError
from codelab.workspace_engine.managers.watcher import FileChangeWatcher
from codelab.workspace_engine.models.enums import TaskStatus, TaskType
from codelab.workspace_engine.models.index import IndexBuildResult, IndexedFile, IndexSearchResult, IndexStatus
from codelab.workspace_engine.models.search import SearchHit
from codelab.workspace_engine.models.task import BackgroundTask
from codelab.workspace_engine.registry import ShuttingDownError
from codelab.workspace_engine.sandbox.executor import SandboxExecutor
from codelab.workspace_engine.store.memory import MemoryChangeJournal

DB = object()
"""Stand-in session handed to mocked managers."""


def _task(**overrides) -> BackgroundTask:
    values = {
        "task_id": "t1",
        "workspace_id": "ws1",
        "type": TaskType.BUILD,
        "command": "npm run build",
        "status": TaskStatus.PENDING,
        "created_at": datetime(2024, 5, 1, tzinfo=UTC),
    }
    values.update(overrides)
    return BackgroundTask(**values)


@pytest.fixture
def scheduler() -> MagicMock:
    mock = MagicMock()
    mock.create_task = AsyncMock(return_value=_task())
    mock.get_task = AsyncMock(return_value=_task())
    mock.list_tasks = AsyncMock(return_value=[])
    mock.cancel_task = AsyncMock(return_value=_task(status=TaskStatus.FAILED, error="Cancelled"))
    return mock


@pytest.fixture
def indexer() -> MagicMock:
    mock = MagicMock()
    mock.build_index = AsyncMock(return_value=IndexBuildResult(files=3, symbols=7, dependencies=2))
    mock.get_index_status = AsyncMock(return_value=IndexStatus(indexed=False))
    mock.search_symbols = AsyncMock(return_value=[])
    mock.search = AsyncMock(return_value=IndexSearchResult())
    return mock


@pytest.fixture
async def client(
    executor: SandboxExecutor, workspace: Path, scheduler: MagicMock, indexer: MagicMock
) -> AsyncIterator[AsyncClient]:
    """Async HTTP client with app state pre-set (lifespan does not run under ASGITransport)."""

    async def _override_get_db() -> AsyncIterator[object]:
        yield DB

    app.dependency_overrides[get_db] = _override_get_db

    app.state.db_engine = None
    app.state.db_session_factory = None
    app.state.redis = None
    app.state.executor = executor
    app.state.watcher = FileChangeWatcher(executor, MemoryChangeJournal())
    app.state.scheduler = scheduler
    app.state.indexer = indexer
    app.state.search = None

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Files and change feed
# ---------------------------------------------------------------------------


async def test_write_read_delete_file(client: AsyncClient, workspace: Path) -> None:
    resp = await client.post("/api/workspaces/ws1/files/write", json={"path": "src/app.ts", "content": "export {}\n"})
    assert resp.status_code == 200
    assert resp.json()["path"] == "src/app.ts"
    assert resp.json()["type"] == "created"
    assert (workspace / "src" / "app.ts").read_text() == "export {}\n"

    resp = await client.post("/api/workspaces/ws1/files/write", json={"path": "/workspace/src/app.ts", "content": "x"})
    assert (resp.json()["path"], resp.json()["type"]) == ("src/app.ts", "modified")

    resp = await client.get("/api/workspaces/ws1/files/read", params={"path": "src/app.ts"})
    assert resp.status_code == 200
    assert resp.json() == {"path": "src/app.ts", "content": "x"}

    resp = await client.post("/api/workspaces/ws1/files/delete", params={"path": "src/app.ts"})
    assert resp.status_code == 204
    assert not (workspace / "src" / "app.ts").exists()


async def test_file_errors(client: AsyncClient) -> None:
    resp = await client.get("/api/workspaces/ws1/files/read", params={"path": "../../etc/passwd"})
    assert resp.status_code == 403

    resp = await client.get("/api/workspaces/ws1/files/read", params={"path": "missing.txt"})
    assert resp.status_code == 404

    resp = await client.post("/api/workspaces/ws1/files/delete", params={"path": "missing.txt"})
    assert resp.status_code == 404

    resp = await client.get("/api/workspaces/nope/files/read", params={"path": "a.txt"})
    assert resp.status_code == 404

    resp = await client.get("/api/workspaces/ws1/files/read", params={"path": "a\x00b"})
    assert resp.status_code == 422


async def test_list_directory(client: AsyncClient, workspace: Path) -> None:
    (workspace / "src").mkdir()
    (workspace / "src" / "app.ts").write_text("export {}\n")
    (workspace / "README.md").write_text("# hi\n")

    resp = await client.get("/api/workspaces/ws1/files/list")
    assert resp.status_code == 200
    assert [(e["path"], e["is_directory"]) for e in resp.json()] == [("src", True), ("README.md", False)]

    resp = await client.get("/api/workspaces/ws1/files/list", params={"path": "/workspace/src"})
    assert [(e["path"], e["name"], e["size"]) for e in resp.json()] == [("src/app.ts", "app.ts", 10)]

    assert (await client.get("/api/workspaces/ws1/files/list", params={"path": "nope"})).status_code == 404
    assert (await client.get("/api/workspaces/ws1/files/list", params={"path": "README.md"})).status_code == 422
    assert (await client.get("/api/workspaces/ws1/files/list", params={"path": ".."})).status_code == 403


async def test_changes_feed(client: AsyncClient, workspace: Path) -> None:
    resp = await client.get("/api/workspaces/ws1/changes")
    assert resp.status_code == 200
    assert resp.json() == []

    await client.post("/api/workspaces/ws1/files/write", json={"path": "a.ts", "content": "1"})
    await client.post("/api/workspaces/ws1/files/delete", params={"path": "a.ts"})

    changes = (await client.get("/api/workspaces/ws1/changes")).json()
    assert [(c["path"], c["type"]) for c in changes] == [("a.ts", "created"), ("a.ts", "deleted")]

    watermark = changes[-1]["timestamp"]
    resp = await client.get("/api/workspaces/ws1/changes", params={"since": watermark})
    assert resp.json() == []

    resp = await client.get("/api/workspaces/nope/changes")
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------


async def test_run_preset(client: AsyncClient) -> None:
    resp = await client.post("/api/workspaces/ws1/presets/build/run")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["output"] == "No build configuration detected"
    assert body["error"] is None


async def test_run_preset_errors(client: AsyncClient) -> None:
    assert (await client.post("/api/workspaces/ws1/presets/deploy/run")).status_code == 422
    assert (await client.post("/api/workspaces/nope/presets/build/run")).status_code == 404


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


async def test_create_task_returns_accepted(client: AsyncClient, scheduler: MagicMock) -> None:
    resp = await client.post("/api/workspaces/ws1/tasks/create", json={"type": "build", "command": "npm run build"})
    assert resp.status_code == 202
    assert resp.json() == {"task_id": "t1", "status": "pending"}
    scheduler.create_task.assert_awaited_once_with(DB, "ws1", TaskType.BUILD, "npm run build")


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (ValidationError("Command must not be empty"), 422),
        (NotFoundError("Workspace 'ws1' not found"), 404),
        (ShuttingDownError(), 503),
    ],
)
async def test_create_task_errors(client: AsyncClient, scheduler: MagicMock, error: Exception, code: int) -> None:
    scheduler.create_task.side_effect = error
    resp = await client.post("/api/workspaces/ws1/tasks/create", json={"command": "true"})
    assert resp.status_code == code


async def test_create_task_rejects_bad_body(client: AsyncClient) -> None:
    resp = await client.post("/api/workspaces/ws1/tasks/create", json={"type": "compile", "command": "make"})
    assert resp.status_code == 422
    resp = await client.post("/api/workspaces/ws1/tasks/create", json={"command": ""})
    assert resp.status_code == 422


async def test_get_list_cancel_task(client: AsyncClient, scheduler: MagicMock) -> None:
    resp = await client.get("/api/tasks/t1/get")
    assert resp.status_code == 200
    assert resp.json()["command"] == "npm run build"

    resp = await client.get("/api/workspaces/ws1/tasks/list", params={"status": "running", "limit": 5})
    assert resp.status_code == 200
    scheduler.list_tasks.assert_awaited_once_with(DB, "ws1", status=TaskStatus.RUNNING, limit=5)

    resp = await client.post("/api/tasks/t1/cancel")
    assert resp.json()["status"] == "failed"
    assert resp.json()["error"] == "Cancelled"

    scheduler.get_task.side_effect = NotFoundError("Task 'zz' not found")
    assert (await client.get("/api/tasks/zz/get")).status_code == 404


# ---------------------------------------------------------------------------
# Index and search
# ---------------------------------------------------------------------------


async def test_index_endpoints(client: AsyncClient, indexer: MagicMock) -> None:
    resp = await client.post("/api/workspaces/ws1/index/build", json={"path": "src"})
    assert resp.status_code == 200
    assert resp.json() == {"files": 3, "symbols": 7, "dependencies": 2, "embeddings_generated": 0}
    indexer.build_index.assert_awaited_once_with(DB, "ws1", "src", include_embeddings=False)

    resp = await client.get("/api/workspaces/ws1/index/status")
    assert resp.json()["indexed"] is False

    indexer.search_symbols.side_effect = NotFoundError("Workspace 'ws1' has no index")
    resp = await client.get("/api/workspaces/ws1/index/symbols", params={"q": "auth"})
    assert resp.status_code == 404


async def test_index_search_endpoint(client: AsyncClient, indexer: MagicMock) -> None:
    indexed = IndexedFile(path="src/auth.ts", language="typescript", size=10, hash="abc", exports=["login"])
    indexer.search.return_value = IndexSearchResult(files=[indexed])

    resp = await client.get("/api/workspaces/ws1/index/search", params={"q": "login", "limit": 5})
    assert resp.status_code == 200
    assert [f["path"] for f in resp.json()["files"]] == ["src/auth.ts"]
    assert resp.json()["symbols"] == []
    indexer.search.assert_awaited_once_with(DB, "ws1", "login", limit=5)

    assert (await client.get("/api/workspaces/ws1/index/search", params={"q": ""})).status_code == 422


async def test_search_unavailable_without_embeddings(client: AsyncClient) -> None:
    resp = await client.post("/api/workspaces/ws1/search", json={"query": "auth"})
    assert resp.status_code == 503


async def test_search_endpoint(client: AsyncClient) -> None:
    search = MagicMock()
    search.search = AsyncMock(return_value=[SearchHit(path="src/auth.ts", content="login()", similarity=0.9)])
    app.state.search = search

    resp = await client.post("/api/workspaces/ws1/search", json={"query": "auth", "limit": 3})
    assert resp.status_code == 200
    assert resp.json() == [{"path": "src/auth.ts", "content": "login()", "similarity": 0.9}]
    search.search.assert_awaited_once_with(DB, "ws1", "auth", limit=3)

    search.search.side_effect = EmbeddingError("Embedding request failed with HTTP 500")
    assert (await client.post("/api/workspaces/ws1/search", json={"query": "auth"})).status_code == 502


async def test_database_required(client: AsyncClient) -> None:
    app.dependency_overrides.clear()
    resp = await client.get("/api/workspaces/ws1/index/status")
    assert resp.status_code == 503
