"""Sandbox interface.

The sandbox is the process-execution and file-storage primitive the engine
runs on.  Isolation (containers, microVMs) is provided by whatever
implements this protocol; the engine only relies on the contract below.

Paths handed to a sandbox are already resolved and checked against the
workspace root by the executor.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import NamedTuple, Protocol, runtime_checkable

from codelab.workspace_engine.models.execution import CommandResult

OutputCallback = Callable[[str], None]
"""Receives decoded output chunks in arrival order.  Must not block."""

IGNORED_DIRS: frozenset[str] = frozenset({
    "node_modules",
    ".git",
    "dist",
    "build",
    ".next",
    "__pycache__",
    ".venv",
    "venv",
    "vendor",
    ".idea",
    ".vscode",
    ".cache",
})
"""Directories skipped by file enumeration and change scanning."""


class DirEntry(NamedTuple):
    name: str
    is_dir: bool
    size: int
    mtime_ns: int


@runtime_checkable
class Sandbox(Protocol):
    """Async protocol for running commands and touching files in a workspace."""

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
        """Run *command* with *root* (or *cwd*) as working directory.

        Streams output to the callbacks, kills the process on timeout or when
        *cancel* is set, and returns whatever output was captured.  Raises
        ``SandboxError`` only if the process could not be started.
        """
        ...

    async def read_text(self, path: Path) -> str:
        """Read a text file.  Raises ``FileNotFoundError`` if missing."""
        ...

    async def write_text(self, path: Path, content: str) -> None:
        """Write a text file atomically, creating parent directories."""
        ...

    async def remove(self, path: Path) -> None:
        """Delete a file.  Raises ``FileNotFoundError`` if missing."""
        ...

    async def exists(self, path: Path) -> bool:
        ...

    async def mtime(self, path: Path) -> int | None:
        """Modification time in nanoseconds, or ``None`` if the file is missing."""
        ...

    async def list_dir(self, path: Path) -> list[DirEntry]:
        """Immediate children of *path*, unsorted.  Symlinks are not followed.

        Raises ``FileNotFoundError`` or ``NotADirectoryError``.
        """
        ...

    async def scan(self, root: Path) -> dict[str, int]:
        """Return ``{relative_path: mtime_ns}`` for every file under *root*.

        Directories in ``IGNORED_DIRS`` are skipped.
        """
        ...
