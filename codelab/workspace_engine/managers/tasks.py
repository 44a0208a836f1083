"""Task scheduler -- persisted background command execution.

The TaskScheduler is a process-level singleton initialised in the app
lifespan.  It coordinates three backends:

- **PostgreSQL**: the ``background_tasks`` rows (status, output, timings)
- **Sandbox executor**: the actual command run inside the workspace
- **Registry**: live handles for cancellation, shutdown draining and
  per-workspace execution slots

Status only moves forward (``pending -> running -> completed|failed``, or
``pending -> failed`` on cancellation / recovery).  Every transition is a
conditional UPDATE guarded by the allowed previous statuses, so a late or
concurrent writer can never move a task backwards.

stdout is coalesced: chunks collect in an ``OutputBuffer`` and are appended
to the durable ``output`` array every ``flush_every`` chunks.  The terminal
transition always carries whatever is left in the buffer.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Collection
from typing import TYPE_CHECKING, Any

from loguru import logger
from sqlalchemy import cast, func, literal, select, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError

from codelab.workspace_engine.context import RunningTask
from codelab.workspace_engine.db.tables import TaskRow
from codelab.workspace_engine.errors import NotFoundError, StorageError, ValidationError
from codelab.workspace_engine.models.enums import ErrorKind, TaskStatus, TaskType
from codelab.workspace_engine.models.task import BackgroundTask
from codelab.workspace_engine.registry import ShuttingDownError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from codelab.workspace_engine.models.execution import CommandResult
    from codelab.workspace_engine.registry import TaskRegistry
    from codelab.workspace_engine.sandbox.executor import SandboxExecutor

CANCELLED_ERROR = "Cancelled"
INTERRUPTED_ERROR = "Interrupted by service restart"

_ERROR_TAIL = 4000

ALLOWED_PREVIOUS: dict[TaskStatus, tuple[TaskStatus, ...]] = {
    TaskStatus.RUNNING: (TaskStatus.PENDING,),
    TaskStatus.COMPLETED: (TaskStatus.RUNNING,),
    TaskStatus.FAILED: (TaskStatus.PENDING, TaskStatus.RUNNING),
}
"""Target status -> statuses a task may be in for the transition to apply."""


# ---------------------------------------------------------------------------
# Output coalescing
# ---------------------------------------------------------------------------


class OutputBuffer:
    """Collects stdout chunks between durable flushes.

    ``append`` is called from the sandbox output callback, so it only touches
    memory and reports whether a flush is due.
    """

    def __init__(self, flush_every: int = 10) -> None:
        if flush_every < 1:
            msg = "flush_every must be >= 1"
            raise ValueError(msg)
        self._flush_every = flush_every
        self._pending: list[str] = []

    def append(self, chunk: str) -> bool:
        """Buffer *chunk*.  Returns ``True`` once a flush is due."""
        self._pending.append(chunk)
        return len(self._pending) >= self._flush_every

    def drain(self) -> list[str]:
        """Take every pending chunk, in arrival order."""
        chunks, self._pending = self._pending, []
        return chunks

    def restore(self, chunks: list[str]) -> None:
        """Put back chunks whose flush failed, ahead of newer ones."""
        self._pending[:0] = chunks

    def __len__(self) -> int:
        return len(self._pending)


def _append_output(chunks: list[str]) -> Any:
    """SQL expression appending *chunks* to the JSONB ``output`` array."""
    return TaskRow.output.op("||")(cast(literal(chunks, JSONB), JSONB))


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def transition_task(
    db: AsyncSession,
    task_id: str,
    to: TaskStatus,
    *,
    append_output: list[str] | None = None,
    **values: Any,
) -> bool:
    """Move a task to *to* if its current status allows it.

    Returns ``True`` if the row was updated, ``False`` if the task was already
    past this point (or does not exist).  Raises ``StorageError`` on database
    failure.
    """
    allowed = [status.value for status in ALLOWED_PREVIOUS[to]]
    stmt = (
        update(TaskRow)
        .where(TaskRow.task_id == task_id, TaskRow.status.in_(allowed))
        .values(status=to.value, **values)
    )
    if append_output:
        stmt = stmt.values(output=_append_output(append_output))
    try:
        result = await db.execute(stmt)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        msg = f"Failed to move task {task_id} to {to}"
        raise StorageError(msg) from exc

    applied = result.rowcount == 1  # type: ignore[attr-defined]
    if applied:
        logger.debug("Task {} -> {}", task_id, to)
    else:
        logger.info("Task {}: transition to {} skipped (already past it)", task_id, to)
    return applied


def outcome(result: CommandResult) -> tuple[TaskStatus, str | None]:
    """Map a command result to the terminal status and error message."""
    if result.error_kind == ErrorKind.CANCELLED:
        return TaskStatus.FAILED, CANCELLED_ERROR
    if result.error_kind is not None:
        return TaskStatus.FAILED, result.error or str(result.error_kind)
    if result.exit_code == 0:
        return TaskStatus.COMPLETED, None
    detail = result.stderr.strip()[-_ERROR_TAIL:]
    return TaskStatus.FAILED, detail or f"Command exited with code {result.exit_code}"


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class TaskScheduler:
    """Dispatches and tracks background tasks.

    Request handlers pass their own ``AsyncSession``; the background runner
    opens short-lived sessions from *session_factory* for each write so it
    never holds a connection for the lifetime of a command.
    """

    def __init__(
        self,
        *,
        executor: SandboxExecutor,
        registry: TaskRegistry,
        session_factory: async_sessionmaker[AsyncSession],
        timeout: float = 600.0,
        flush_every: int = 10,
        exclusive_types: Collection[str] = ("build",),
        slot_poll_interval: float = 1.0,
    ) -> None:
        self._executor = executor
        self._registry = registry
        self._session_factory = session_factory
        self._timeout = timeout
        self._flush_every = flush_every
        self._exclusive_types = frozenset(exclusive_types)
        self._slot_poll_interval = slot_poll_interval

    # -- Create ----------------------------------------------------------------

    async def create_task(
        self,
        db: AsyncSession,
        workspace_id: str,
        type: TaskType | str,
        command: str,
    ) -> BackgroundTask:
        """Persist a pending task and start it in the background.

        Returns immediately.  Raises ``ValidationError`` on empty command or
        unknown type, ``NotFoundError`` if the workspace does not exist and
        ``ShuttingDownError`` once shutdown has begun.
        """
        if not command or not command.strip():
            msg = "Command must not be empty"
            raise ValidationError(msg)
        try:
            task_type = TaskType(type)
        except ValueError:
            msg = f"Unknown task type: {type!r}"
            raise ValidationError(msg) from None
        self._executor.workspace_root(workspace_id)
        if self._registry.is_shutting_down:
            raise ShuttingDownError

        row = TaskRow(
            task_id=str(uuid.uuid4()),
            workspace_id=workspace_id,
            type=task_type.value,
            command=command,
            status=TaskStatus.PENDING.value,
            output=[],
            progress=0,
        )
        db.add(row)
        try:
            await db.commit()
            await db.refresh(row)
        except SQLAlchemyError as exc:
            await db.rollback()
            msg = "Failed to persist task"
            raise StorageError(msg) from exc
        task = BackgroundTask.model_validate(row)

        running = RunningTask(task_id=task.task_id, workspace_id=workspace_id, type=task_type)
        try:
            self._registry.register(running)
        except ShuttingDownError:
            await transition_task(
                db,
                task.task_id,
                TaskStatus.FAILED,
                error="Service shutting down",
                progress=100,
                completed_at=func.now(),
            )
            raise
        running.handle = asyncio.create_task(self._run(running, command), name=f"task-{task.task_id}")

        logger.info("Task created: {} (workspace={}, type={})", task.task_id, workspace_id, task_type)
        return task

    # -- Read ------------------------------------------------------------------

    @staticmethod
    async def get_task(db: AsyncSession, task_id: str) -> BackgroundTask:
        """Raises ``NotFoundError`` if the task does not exist."""
        row = await db.get(TaskRow, task_id, populate_existing=True)
        if row is None:
            msg = f"Task '{task_id}' not found"
            raise NotFoundError(msg)
        return BackgroundTask.model_validate(row)

    @staticmethod
    async def list_tasks(
        db: AsyncSession,
        workspace_id: str,
        *,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[BackgroundTask]:
        """List a workspace's tasks, newest first."""
        stmt = select(TaskRow).where(TaskRow.workspace_id == workspace_id)
        if status is not None:
            stmt = stmt.where(TaskRow.status == status.value)
        stmt = stmt.order_by(TaskRow.created_at.desc(), TaskRow.task_id.desc()).limit(limit)
        result = await db.execute(stmt)
        return [BackgroundTask.model_validate(row) for row in result.scalars().all()]

    # -- Cancel ----------------------------------------------------------------

    async def cancel_task(self, db: AsyncSession, task_id: str, *, wait: float = 5.0) -> BackgroundTask:
        """Cancel a task.  Terminal tasks are returned unchanged.

        A task running in this process has its cancellation token set (which
        kills its process group); we wait up to *wait* seconds for the runner
        to record the failure.  A task with no live handle here is failed
        directly.
        """
        task = await self.get_task(db, task_id)
        if task.status.is_terminal:
            return task

        running = self._registry.get(task_id)
        if running is not None and self._registry.cancel(task_id):
            if running.handle is not None:
                await asyncio.wait({running.handle}, timeout=wait)
        else:
            await transition_task(
                db, task_id, TaskStatus.FAILED, error=CANCELLED_ERROR, progress=100, completed_at=func.now()
            )

        return await self.get_task(db, task_id)

    # -- Startup recovery ------------------------------------------------------

    @staticmethod
    async def recover_orphaned_tasks(db: AsyncSession) -> int:
        """Fail tasks left pending/running by a previous process.

        Called once at startup, before any task is dispatched, to reconcile
        PG with the empty registry.  Returns the number of tasks recovered.
        """
        stmt = (
            update(TaskRow)
            .where(TaskRow.status.in_([TaskStatus.PENDING.value, TaskStatus.RUNNING.value]))
            .values(status=TaskStatus.FAILED.value, error=INTERRUPTED_ERROR, progress=100, completed_at=func.now())
        )
        result = await db.execute(stmt)
        await db.commit()
        count = result.rowcount  # type: ignore[attr-defined]
        if count > 0:
            logger.warning("Startup recovery: marked {} orphaned tasks as failed", count)
        return count

    # -- Background execution --------------------------------------------------

    async def _transition(self, task_id: str, to: TaskStatus, **kwargs: Any) -> bool:
        async with self._session_factory() as db:
            return await transition_task(db, task_id, to, **kwargs)

    async def _flush(self, task_id: str, chunks: list[str]) -> None:
        stmt = update(TaskRow).where(TaskRow.task_id == task_id).values(output=_append_output(chunks))
        async with self._session_factory() as db:
            await db.execute(stmt)
            await db.commit()

    async def _flush_loop(self, task_id: str, buffer: OutputBuffer, wake: asyncio.Event, stop: asyncio.Event) -> None:
        """Write buffered chunks whenever a flush is due, one write at a time."""
        while True:
            await wake.wait()
            wake.clear()
            if stop.is_set():
                # The terminal transition writes whatever is left.
                return
            chunks = buffer.drain()
            if not chunks:
                continue
            try:
                await self._flush(task_id, chunks)
            except SQLAlchemyError:
                logger.exception("Task {}: output flush failed; keeping {} chunks for later", task_id, len(chunks))
                buffer.restore(chunks)

    async def _run(self, running: RunningTask, command: str) -> None:
        task_id = running.task_id
        needs_slot = running.type.value in self._exclusive_types
        slot_held = False
        buffer = OutputBuffer(self._flush_every)

        try:
            if needs_slot:
                slot_held = await self._registry.acquire_slot(
                    running.workspace_id,
                    running.type.value,
                    task_id,
                    poll_interval=self._slot_poll_interval,
                    cancel=running.cancel,
                )
            if running.cancelled:
                await self._transition(
                    task_id, TaskStatus.FAILED, error=CANCELLED_ERROR, progress=100, completed_at=func.now()
                )
                return
            if not await self._transition(task_id, TaskStatus.RUNNING, started_at=func.now()):
                # Failed directly in PG (cancelled with no live handle) before we started.
                return

            wake = asyncio.Event()
            stop = asyncio.Event()

            def on_stdout(chunk: str) -> None:
                if buffer.append(chunk):
                    wake.set()

            flusher = asyncio.create_task(self._flush_loop(task_id, buffer, wake, stop), name=f"flush-{task_id}")
            try:
                result = await self._executor.execute_command(
                    running.workspace_id,
                    command,
                    timeout=self._timeout,
                    on_stdout=on_stdout,
                    cancel=running.cancel,
                )
            finally:
                stop.set()
                wake.set()
                await flusher

            status, error = outcome(result)
            tail = buffer.drain()
            try:
                await self._transition(
                    task_id,
                    status,
                    append_output=tail,
                    exit_code=result.exit_code,
                    progress=100,
                    error=error,
                    completed_at=func.now(),
                )
            except BaseException:
                # The failure write below still owes these chunks.
                buffer.restore(tail)
                raise
            logger.info("Task {} {} (exit={}, {}ms)", task_id, status, result.exit_code, result.execution_time)
        except asyncio.CancelledError:
            logger.warning("Task {} runner cancelled", task_id)
            await self._fail_quietly(task_id, CANCELLED_ERROR, buffer)
            raise
        except Exception as exc:
            logger.exception("Task {} crashed", task_id)
            await self._fail_quietly(task_id, str(exc) or type(exc).__name__, buffer)
        finally:
            if slot_held:
                await self._registry.release_slot(running.workspace_id, running.type.value, task_id)
            self._registry.unregister(task_id)

    async def _fail_quietly(self, task_id: str, error: str, buffer: OutputBuffer) -> None:
        """Best-effort terminal write from an error path; logs instead of raising."""
        try:
            await self._transition(
                task_id,
                TaskStatus.FAILED,
                append_output=buffer.drain(),
                progress=100,
                error=error,
                completed_at=func.now(),
            )
        except StorageError:
            logger.exception("Task {}: could not record failure", task_id)
