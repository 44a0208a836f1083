"""Background task endpoints (RPC-style).

Thin HTTP adapter -- delegates to the task scheduler.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, status

from codelab.workspace_engine.deps import DbSession, Scheduler, http_error
from codelab.workspace_engine.errors import EngineError
from codelab.workspace_engine.models.api import TaskAccepted, TaskCreate
from codelab.workspace_engine.models.enums import TaskStatus
from codelab.workspace_engine.models.task import BackgroundTask
from codelab.workspace_engine.registry import ShuttingDownError

router = APIRouter(tags=["tasks"])


@router.post(
    "/workspaces/{workspace_id}/tasks/create",
    response_model=TaskAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def handle_create_task(workspace_id: str, body: TaskCreate, db: DbSession, scheduler: Scheduler) -> TaskAccepted:
    """Dispatch a background task.  Returns before the command runs."""
    try:
        task = await scheduler.create_task(db, workspace_id, body.type, body.command)
    except (EngineError, ShuttingDownError) as exc:
        raise http_error(exc) from None
    return TaskAccepted(task_id=task.task_id, status=task.status)


@router.get("/workspaces/{workspace_id}/tasks/list", response_model=list[BackgroundTask])
async def handle_list_tasks(
    workspace_id: str,
    db: DbSession,
    scheduler: Scheduler,
    status_filter: TaskStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
) -> list[BackgroundTask]:
    """List a workspace's tasks, newest first."""
    return await scheduler.list_tasks(db, workspace_id, status=status_filter, limit=limit)


@router.get("/tasks/{task_id}/get", response_model=BackgroundTask)
async def handle_get_task(task_id: str, db: DbSession, scheduler: Scheduler) -> BackgroundTask:
    try:
        return await scheduler.get_task(db, task_id)
    except EngineError as exc:
        raise http_error(exc) from None


@router.post("/tasks/{task_id}/cancel", response_model=BackgroundTask)
async def handle_cancel_task(task_id: str, db: DbSession, scheduler: Scheduler) -> BackgroundTask:
    """Cancel a task.  Already-finished tasks are returned unchanged."""
    try:
        return await scheduler.cancel_task(db, task_id)
    except EngineError as exc:
        raise http_error(exc) from None
