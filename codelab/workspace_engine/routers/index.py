"""Codebase index endpoints (RPC-style)."""

from __future__ import annotations

from fastapi import APIRouter, Query

from codelab.workspace_engine.deps import DbSession, Indexer, http_error
from codelab.workspace_engine.errors import EngineError
from codelab.workspace_engine.models.api import IndexBuildRequest
from codelab.workspace_engine.models.index import IndexBuildResult, IndexSearchResult, IndexStatus, Symbol

router = APIRouter(prefix="/workspaces/{workspace_id}/index", tags=["index"])


@router.post("/build", response_model=IndexBuildResult)
async def handle_build_index(
    workspace_id: str, body: IndexBuildRequest, db: DbSession, indexer: Indexer
) -> IndexBuildResult:
    """Rebuild the workspace index, replacing any previous one."""
    try:
        return await indexer.build_index(db, workspace_id, body.path, include_embeddings=body.include_embeddings)
    except EngineError as exc:
        raise http_error(exc) from None


@router.get("/status", response_model=IndexStatus)
async def handle_index_status(workspace_id: str, db: DbSession, indexer: Indexer) -> IndexStatus:
    return await indexer.get_index_status(db, workspace_id)


@router.get("/symbols", response_model=list[Symbol])
async def handle_search_symbols(
    workspace_id: str,
    db: DbSession,
    indexer: Indexer,
    q: str = Query(..., min_length=1, description="Case-insensitive substring of a symbol name or signature."),
    limit: int = Query(50, ge=1, le=500),
) -> list[Symbol]:
    try:
        return await indexer.search_symbols(db, workspace_id, q, limit=limit)
    except EngineError as exc:
        raise http_error(exc) from None


@router.get("/search", response_model=IndexSearchResult)
async def handle_search_index(
    workspace_id: str,
    db: DbSession,
    indexer: Indexer,
    q: str = Query(..., min_length=1, description="Case-insensitive substring of a path, import, export or symbol."),
    limit: int = Query(50, ge=1, le=500),
) -> IndexSearchResult:
    try:
        return await indexer.search(db, workspace_id, q, limit=limit)
    except EngineError as exc:
        raise http_error(exc) from None
