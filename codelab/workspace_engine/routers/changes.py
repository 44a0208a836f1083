"""File change feed endpoint.

Clients poll with the newest timestamp they have seen and advance their own
watermark; omitting ``since`` returns everything still retained.
"""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Query

from codelab.workspace_engine.deps import Watcher, http_error
from codelab.workspace_engine.errors import EngineError
from codelab.workspace_engine.models.changes import FileChange

router = APIRouter(prefix="/workspaces/{workspace_id}", tags=["changes"])

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@router.get("/changes", response_model=list[FileChange])
async def handle_poll_changes(
    workspace_id: str,
    watcher: Watcher,
    since: datetime | None = Query(None, description="Return changes strictly newer than this (ISO 8601)."),
) -> list[FileChange]:
    try:
        return await watcher.changes_since(workspace_id, since or _EPOCH)
    except EngineError as exc:
        raise http_error(exc) from None
