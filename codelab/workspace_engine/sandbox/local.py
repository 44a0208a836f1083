"""Local process sandbox.

Runs commands as host subprocesses inside the workspace directory.  Each
command gets its own process group (``start_new_session=True``) so that a
timeout or cancellation can kill the shell *and* everything it spawned.

stdout and stderr are read concurrently in chunks and decoded incrementally,
so callbacks see output as it arrives and multi-byte characters are never
split across chunks.

File operations use ``anyio.to_thread.run_sync`` for non-blocking I/O.
Writes are atomic (temp file + rename in the same directory).
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import os
import signal
import tempfile
import time
from collections.abc import Mapping
from functools import partial
from pathlib import Path

from anyio import to_thread
from loguru import logger

from codelab.workspace_engine.errors import SandboxError
from codelab.workspace_engine.models.enums import ErrorKind
from codelab.workspace_engine.models.execution import CommandResult
from codelab.workspace_engine.sandbox.base import IGNORED_DIRS, DirEntry, OutputCallback

_READ_SIZE = 64 * 1024

# Grace period for pipes to drain after the process group is killed.
_KILL_DRAIN_TIMEOUT = 5.0


class LocalSandbox:
    """Host-process implementation of the Sandbox protocol."""

    def __init__(self, *, shell: str | None = None) -> None:
        self._shell = shell

    # -- Commands --------------------------------------------------------------

    async def execute(
        self,
        root: Path,
        command: str,
        *,
        timeout: float,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> CommandResult:
        run_env = dict(os.environ)
        if env:
            run_env.update(env)

        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                cwd=str(cwd or root),
                env=run_env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
                executable=self._shell,
            )
        except OSError as exc:
            msg = f"Failed to start command: {exc}"
            raise SandboxError(msg) from exc

        stdout_parts: list[str] = []
        stderr_parts: list[str] = []
        drain = asyncio.ensure_future(
            asyncio.gather(
                _pump(process.stdout, stdout_parts, on_stdout),
                _pump(process.stderr, stderr_parts, on_stderr),
                process.wait(),
            )
        )
        cancel_wait = asyncio.ensure_future(cancel.wait()) if cancel is not None else None

        error_kind: ErrorKind | None = None
        error: str | None = None
        try:
            waiters = {drain} if cancel_wait is None else {drain, cancel_wait}
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
            if drain not in done:
                if cancel_wait is not None and cancel_wait in done:
                    error_kind, error = ErrorKind.CANCELLED, "Cancelled"
                else:
                    error_kind, error = ErrorKind.TIMEOUT, f"Command timed out after {timeout:g}s"
                _kill_group(process)
                await _settle(drain)
            elif drain.exception() is not None:
                # An output callback raised; do not leave the process behind.
                _kill_group(process)
                await process.wait()
                raise drain.exception()  # type: ignore[misc]
        except asyncio.CancelledError:
            _kill_group(process)
            drain.cancel()
            raise
        finally:
            if cancel_wait is not None:
                cancel_wait.cancel()

        elapsed = int((time.monotonic() - started) * 1000)
        if error_kind is not None:
            logger.info("Command {} after {}ms: {}", error_kind, elapsed, command)

        return CommandResult(
            stdout="".join(stdout_parts),
            stderr="".join(stderr_parts),
            exit_code=process.returncode if process.returncode is not None else -1,
            execution_time=elapsed,
            error_kind=error_kind,
            error=error,
        )

    # -- Files -----------------------------------------------------------------

    async def read_text(self, path: Path) -> str:
        return await to_thread.run_sync(partial(_read_file, path))

    async def write_text(self, path: Path, content: str) -> None:
        await to_thread.run_sync(partial(_atomic_write, path, content))

    async def remove(self, path: Path) -> None:
        await to_thread.run_sync(path.unlink)

    async def exists(self, path: Path) -> bool:
        return await to_thread.run_sync(path.exists)

    async def mtime(self, path: Path) -> int | None:
        return await to_thread.run_sync(partial(_mtime, path))

    async def list_dir(self, path: Path) -> list[DirEntry]:
        return await to_thread.run_sync(partial(_list_dir, path))

    async def scan(self, root: Path) -> dict[str, int]:
        return await to_thread.run_sync(partial(_scan_tree, root))


# -- Process helpers -----------------------------------------------------------


async def _pump(stream: asyncio.StreamReader | None, parts: list[str], callback: OutputCallback | None) -> None:
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        data = await stream.read(_READ_SIZE)
        text = decoder.decode(data, final=not data)
        if text:
            parts.append(text)
            if callback is not None:
                callback(text)
        if not data:
            return


def _kill_group(process: asyncio.subprocess.Process) -> None:
    """SIGKILL the whole process group.  No-op if it already exited."""
    if process.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError, PermissionError):
        os.killpg(process.pid, signal.SIGKILL)


async def _settle(drain: asyncio.Future) -> None:
    """Wait for the readers to hit EOF after a kill, then give up on them."""
    try:
        await asyncio.wait_for(asyncio.shield(drain), _KILL_DRAIN_TIMEOUT)
    except TimeoutError:
        logger.warning("Output pipes still open {}s after kill; abandoning readers", _KILL_DRAIN_TIMEOUT)
        drain.cancel()
    except Exception:
        logger.exception("Output reader failed after kill")


# -- Sync helpers (run in thread pool) -----------------------------------------


def _atomic_write(path: Path, data: str) -> None:
    """Write *data* to a temp file beside *path*, then rename over it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.rename(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def _read_file(path: Path) -> str:
    """Read file contents.  Raises ``FileNotFoundError`` if missing."""
    return path.read_text(encoding="utf-8", errors="replace")


def _mtime(path: Path) -> int | None:
    try:
        return path.stat().st_mtime_ns
    except FileNotFoundError:
        return None


def _list_dir(path: Path) -> list[DirEntry]:
    entries: list[DirEntry] = []
    with os.scandir(path) as it:
        for entry in it:
            try:
                stat = entry.stat(follow_symlinks=False)
            except FileNotFoundError:
                continue
            entries.append(DirEntry(entry.name, entry.is_dir(follow_symlinks=False), stat.st_size, stat.st_mtime_ns))
    return entries


def _scan_tree(root: Path) -> dict[str, int]:
    snapshot: dict[str, int] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in IGNORED_DIRS]
        base = Path(dirpath)
        for name in filenames:
            full = base / name
            try:
                snapshot[full.relative_to(root).as_posix()] = full.stat().st_mtime_ns
            except FileNotFoundError:
                # Removed between listing and stat.
                continue
    return snapshot
