"""Semantic code search endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from codelab.workspace_engine.deps import DbSession, Search, http_error
from codelab.workspace_engine.errors import EngineError
from codelab.workspace_engine.models.api import SearchRequest
from codelab.workspace_engine.models.search import SearchHit

router = APIRouter(prefix="/workspaces/{workspace_id}", tags=["search"])


@router.post("/search", response_model=list[SearchHit])
async def handle_search(workspace_id: str, body: SearchRequest, db: DbSession, search: Search) -> list[SearchHit]:
    """Chunks most similar to the query, restricted to this workspace."""
    try:
        return await search.search(db, workspace_id, body.query, limit=body.limit)
    except EngineError as exc:
        raise http_error(exc) from None
