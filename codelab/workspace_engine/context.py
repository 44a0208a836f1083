"""In-flight background task handle."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from codelab.workspace_engine.models.enums import TaskType


@dataclass
class RunningTask:
    """Live state for a dispatched background task.

    Created by the task scheduler at dispatch; registered in the
    TaskRegistry for cancellation and shutdown draining; discarded once the
    task reaches a terminal status.
    """

    task_id: str
    workspace_id: str
    type: TaskType

    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    """Cancellation token threaded down to the sandbox process."""

    handle: asyncio.Task | None = None
    """The asyncio task driving execution (set right after dispatch)."""

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_set()
