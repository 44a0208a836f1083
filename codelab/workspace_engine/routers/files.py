"""Workspace file endpoints.

Every write and delete goes through the sandbox executor (path checks,
atomic writes) and is journalled to the change feed.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, status

from codelab.workspace_engine.deps import Executor, Watcher, http_error
from codelab.workspace_engine.errors import EngineError
from codelab.workspace_engine.models.api import FileContent, FileWrite
from codelab.workspace_engine.models.changes import FileChange
from codelab.workspace_engine.models.enums import ChangeType
from codelab.workspace_engine.models.execution import DirectoryEntry

router = APIRouter(prefix="/workspaces/{workspace_id}/files", tags=["files"])


@router.get("/read", response_model=FileContent)
async def handle_read_file(workspace_id: str, executor: Executor, path: str = Query(..., min_length=1)) -> FileContent:
    try:
        content = await executor.read_file(workspace_id, path)
    except EngineError as exc:
        raise http_error(exc) from None
    return FileContent(path=path, content=content)


@router.get("/list", response_model=list[DirectoryEntry])
async def handle_list_directory(workspace_id: str, executor: Executor, path: str = ".") -> list[DirectoryEntry]:
    try:
        return await executor.list_directory(workspace_id, path)
    except EngineError as exc:
        raise http_error(exc) from None


@router.post("/write", response_model=FileChange)
async def handle_write_file(workspace_id: str, body: FileWrite, executor: Executor, watcher: Watcher) -> FileChange:
    """Create or overwrite a file.  Returns the journalled change."""
    try:
        created = await executor.write_file(workspace_id, body.path, body.content)
        return await watcher.record(workspace_id, body.path, ChangeType.CREATED if created else ChangeType.MODIFIED)
    except EngineError as exc:
        raise http_error(exc) from None


@router.post("/delete", status_code=status.HTTP_204_NO_CONTENT)
async def handle_delete_file(
    workspace_id: str,
    executor: Executor,
    watcher: Watcher,
    path: str = Query(..., min_length=1),
) -> None:
    try:
        await executor.delete_file(workspace_id, path)
        await watcher.record(workspace_id, path, ChangeType.DELETED)
    except EngineError as exc:
        raise http_error(exc) from None
