"""API request / response schemas for the HTTP adapter.

These thin schemas sit between HTTP and the managers.  Domain models
(``BackgroundTask``, ``IndexStatus``, ``SearchHit``, ``FileChange``) are
returned directly where their shape already matches the wire format.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from codelab.workspace_engine.models.enums import TaskStatus, TaskType

# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskCreate(BaseModel):
    """Input for dispatching a background task."""

    type: TaskType = TaskType.SHELL
    command: str = Field(min_length=1)


class TaskAccepted(BaseModel):
    """202-style acknowledgement; execution continues in the background."""

    task_id: str
    status: TaskStatus


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------


class PresetRunResponse(BaseModel):
    success: bool
    output: str
    error: str | None = None
    execution_time: int = Field(description="Milliseconds.")


# ---------------------------------------------------------------------------
# Index / search
# ---------------------------------------------------------------------------


class IndexBuildRequest(BaseModel):
    path: str = "."
    include_embeddings: bool = False


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    limit: int = Field(default=10, ge=1, le=100)


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


class FileWrite(BaseModel):
    path: str = Field(min_length=1)
    content: str


class FileContent(BaseModel):
    path: str
    content: str
