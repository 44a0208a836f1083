"""FastAPI dependency injection for DB sessions and engine managers.

Usage in route handlers::

    @router.post("/workspaces/{workspace_id}/tasks/create")
    async def create_task(workspace_id: str, body: TaskCreate, db: DbSession, scheduler: Scheduler) -> TaskAccepted:
        ...

Dependencies raise HTTP 503 if the backing service was not configured
(CODELAB_DATABASE_URL / CODELAB_EMBEDDING_API_KEY unset).
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from codelab.workspace_engine.errors import (
    CommandTimeoutError,
    EmbeddingError,
    EngineError,
    NotFoundError,
    PathViolationError,
    SandboxError,
    StorageError,
    ValidationError,
)
from codelab.workspace_engine.managers.embeddings import SemanticSearch
from codelab.workspace_engine.managers.indexer import CodebaseIndexer
from codelab.workspace_engine.managers.tasks import TaskScheduler
from codelab.workspace_engine.managers.watcher import FileChangeWatcher
from codelab.workspace_engine.registry import ShuttingDownError
from codelab.workspace_engine.sandbox.executor import SandboxExecutor


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield an async SQLAlchemy session, closing it after the request.

    Managers commit their own writes.  If the handler raises, the session is
    simply closed and the implicit transaction is rolled back by the pool.
    """
    session_factory = request.app.state.db_session_factory
    if session_factory is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured (CODELAB_DATABASE_URL is unset).",
        )
    session: AsyncSession = session_factory()
    try:
        yield session
    finally:
        await session.close()


def _require(request: Request, name: str, detail: str) -> object:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)
    return value


def get_executor(request: Request) -> SandboxExecutor:
    return _require(request, "executor", "Sandbox executor not initialised.")  # type: ignore[return-value]


def get_scheduler(request: Request) -> TaskScheduler:
    return _require(request, "scheduler", "Task scheduler requires a database.")  # type: ignore[return-value]


def get_indexer(request: Request) -> CodebaseIndexer:
    return _require(request, "indexer", "Codebase indexer requires a database.")  # type: ignore[return-value]


def get_search(request: Request) -> SemanticSearch:
    detail = "Semantic search not configured (CODELAB_EMBEDDING_API_KEY is unset)."
    return _require(request, "search", detail)  # type: ignore[return-value]


def get_watcher(request: Request) -> FileChangeWatcher:
    return _require(request, "watcher", "Change feed not initialised.")  # type: ignore[return-value]


# -- Error translation -------------------------------------------------------

_STATUS_BY_ERROR: tuple[tuple[type[Exception], int], ...] = (
    (ValidationError, 422),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PathViolationError, status.HTTP_403_FORBIDDEN),
    (CommandTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (SandboxError, status.HTTP_502_BAD_GATEWAY),
    (EmbeddingError, status.HTTP_502_BAD_GATEWAY),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ShuttingDownError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def http_error(exc: EngineError | ShuttingDownError) -> HTTPException:
    """Translate a domain exception into the matching ``HTTPException``."""
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(code, detail=str(exc) or "Service is shutting down.")
    return HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# -- Annotated type aliases for concise route signatures ---------------------

DbSession = Annotated[AsyncSession, Depends(get_db)]
"""Annotated dependency: async SQLAlchemy session (auto-closed after request)."""

Executor = Annotated[SandboxExecutor, Depends(get_executor)]
Scheduler = Annotated[TaskScheduler, Depends(get_scheduler)]
Indexer = Annotated[CodebaseIndexer, Depends(get_indexer)]
Search = Annotated[SemanticSearch, Depends(get_search)]
Watcher = Annotated[FileChangeWatcher, Depends(get_watcher)]
