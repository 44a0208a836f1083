"""Background task data model."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from codelab.workspace_engine.models.enums import TaskStatus, TaskType


class BackgroundTask(BaseModel):
    """Background task row (PG).  Owned exclusively by the task scheduler."""

    model_config = ConfigDict(from_attributes=True)

    task_id: str
    workspace_id: str
    type: TaskType
    command: str
    status: TaskStatus = TaskStatus.PENDING
    output: list[str] = Field(default_factory=list, description="Flushed stdout chunks, in arrival order")
    progress: int = 0
    exit_code: int | None = None
    error: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
