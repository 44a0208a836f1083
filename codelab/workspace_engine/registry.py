"""Task registry: live task handles and per-workspace execution slots.

Tracks running background tasks with live references for cancellation and
graceful shutdown.  Ephemeral -- empty on process restart.  All durable task
state lives in PostgreSQL.

Execution slots limit some task types (e.g. ``build``) to one concurrent run
per workspace.  With Redis they are TTL leases (``SET NX EX``) shared by all
instances; without Redis they are process-local.  The TTL only guards
against a crashed holder; a finished task always releases its slot.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from codelab.workspace_engine.context import RunningTask

_SLOT_KEY = "codelab:slot:{}:{}"

# Delete the lease only if we still own it.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class ShuttingDownError(RuntimeError):
    """Raised when attempting to register a task during shutdown."""


class TaskRegistry:
    """Registry of currently executing background tasks.

    ``wait_until_drained`` blocks until every task has been unregistered,
    which lets shutdown wait for in-flight commands before tearing down
    infrastructure.
    """

    def __init__(self, *, redis: aioredis.Redis | None = None, slot_ttl: int = 900) -> None:
        self._tasks: dict[str, RunningTask] = {}
        self._drain_event = asyncio.Event()
        self._drain_event.set()  # Starts "drained" (no tasks).
        self._shutting_down = False

        self._redis = redis
        self._slot_ttl = slot_ttl
        self._local_slots: dict[str, str] = {}

    # -- Mutation --------------------------------------------------------------

    def register(self, task: RunningTask) -> None:
        """Register a task.  Raises ``ShuttingDownError`` if shutting down."""
        if self._shutting_down:
            raise ShuttingDownError
        logger.debug("Registry: register task {} (workspace={}, type={})", task.task_id, task.workspace_id, task.type)
        self._tasks[task.task_id] = task
        self._drain_event.clear()

    def unregister(self, task_id: str) -> RunningTask | None:
        task = self._tasks.pop(task_id, None)
        if task:
            logger.debug("Registry: unregister task {}", task_id)
        if not self._tasks:
            self._drain_event.set()
        return task

    # -- Query -----------------------------------------------------------------

    def get(self, task_id: str) -> RunningTask | None:
        return self._tasks.get(task_id)

    def by_workspace(self, workspace_id: str) -> list[RunningTask]:
        return [t for t in self._tasks.values() if t.workspace_id == workspace_id]

    def all_tasks(self) -> list[RunningTask]:
        return list(self._tasks.values())

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    # -- Control ---------------------------------------------------------------

    def cancel(self, task_id: str) -> bool:
        """Set the task's cancellation token.  Returns ``False`` if not running here."""
        task = self._tasks.get(task_id)
        if task is None:
            return False
        task.cancel.set()
        logger.info("Registry: cancellation requested for task {}", task_id)
        return True

    def cancel_all(self) -> int:
        """Cancel every registered task.  Last resort during forced shutdown."""
        for task in self._tasks.values():
            task.cancel.set()
        if self._tasks:
            logger.info("Registry: cancelled {} tasks", len(self._tasks))
        return len(self._tasks)

    # -- Execution slots -------------------------------------------------------

    async def try_acquire_slot(self, workspace_id: str, slot: str, owner: str) -> bool:
        """Try to take the *slot* lease for *workspace_id*.  Non-blocking."""
        key = _SLOT_KEY.format(workspace_id, slot)
        if self._redis is not None:
            acquired = await self._redis.set(key, owner, nx=True, ex=self._slot_ttl)
            return bool(acquired)
        holder = self._local_slots.get(key)
        if holder is not None and holder != owner:
            return False
        self._local_slots[key] = owner
        return True

    async def acquire_slot(
        self,
        workspace_id: str,
        slot: str,
        owner: str,
        *,
        poll_interval: float = 1.0,
        cancel: asyncio.Event | None = None,
    ) -> bool:
        """Wait until the slot lease is ours.

        Returns ``False`` without acquiring if *cancel* is set while waiting.
        """
        waited = False
        while not await self.try_acquire_slot(workspace_id, slot, owner):
            if not waited:
                logger.info("Task {} waiting for {} slot in workspace {}", owner, slot, workspace_id)
                waited = True
            if cancel is None:
                await asyncio.sleep(poll_interval)
                continue
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(cancel.wait(), poll_interval)
            if cancel.is_set():
                return False
        return True

    async def release_slot(self, workspace_id: str, slot: str, owner: str) -> None:
        key = _SLOT_KEY.format(workspace_id, slot)
        if self._redis is not None:
            await self._redis.eval(_RELEASE_SCRIPT, 1, key, owner)
            return
        if self._local_slots.get(key) == owner:
            del self._local_slots[key]

    # -- Lifecycle -------------------------------------------------------------

    def begin_shutdown(self) -> None:
        """Mark the registry as shutting down.  New registrations are refused."""
        self._shutting_down = True
        logger.info("Registry: shutdown initiated, refusing new tasks")
        if not self._tasks:
            self._drain_event.set()

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    async def wait_until_drained(self, timeout: float | None = None) -> bool:
        """Wait until all tasks have been unregistered.

        Returns ``True`` if the registry is empty, ``False`` if *timeout*
        expired with tasks still active.
        """
        if not self._tasks:
            return True
        try:
            await asyncio.wait_for(self._drain_event.wait(), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "Registry: drain timed out after {}s with {} tasks still active",
                timeout,
                len(self._tasks),
            )
            return False
        else:
            return True
