"""Sandbox executor: commands, scoped file access and presets per workspace.

The executor is the only component that knows how a ``workspace_id`` maps to
a directory.  Everything above it (tasks, indexing, search, change feed)
talks to workspaces exclusively through this class.
"""

from __future__ import annotations

import asyncio
import shlex
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath

from loguru import logger

from codelab.workspace_engine.errors import CommandTimeoutError, NotFoundError, ValidationError
from codelab.workspace_engine.models.enums import Preset
from codelab.workspace_engine.models.execution import CommandResult, DirectoryEntry
from codelab.workspace_engine.sandbox.base import IGNORED_DIRS, OutputCallback, Sandbox
from codelab.workspace_engine.sandbox.paths import WorkspaceLayout, resolve_in_workspace
from codelab.workspace_engine.sandbox.presets import PRESETS


class SandboxExecutor:
    """Runs commands and file operations scoped to a workspace root."""

    def __init__(self, layout: WorkspaceLayout, sandbox: Sandbox, *, default_timeout: float = 120.0) -> None:
        self._layout = layout
        self._sandbox = sandbox
        self._default_timeout = default_timeout

    @property
    def layout(self) -> WorkspaceLayout:
        return self._layout

    def workspace_root(self, workspace_id: str) -> Path:
        """Raises ``NotFoundError`` if the workspace directory does not exist."""
        return self._layout.require(workspace_id)

    def resolve(self, workspace_id: str, path: str) -> Path:
        return resolve_in_workspace(self.workspace_root(workspace_id), path)

    # -- Commands --------------------------------------------------------------

    async def execute_command(
        self,
        workspace_id: str,
        command: str,
        *,
        timeout: float | None = None,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> CommandResult:
        """Run *command* in the workspace.

        A non-zero exit code is returned, not raised.  On timeout the result
        carries the partial output and ``error_kind=timeout``.
        """
        if not command or not command.strip():
            msg = "Command must not be empty"
            raise ValidationError(msg)

        root = self.workspace_root(workspace_id)
        workdir = resolve_in_workspace(root, cwd) if cwd and cwd != "." else None
        budget = timeout if timeout is not None else self._default_timeout

        logger.debug("Executing in {} (timeout={}s): {}", workspace_id, budget, command)
        result = await self._sandbox.execute(
            root,
            command,
            timeout=budget,
            cwd=workdir,
            env=env,
            on_stdout=on_stdout,
            on_stderr=on_stderr,
            cancel=cancel,
        )
        logger.debug(
            "Command finished in {} (exit={}, {}ms, error_kind={})",
            workspace_id,
            result.exit_code,
            result.execution_time,
            result.error_kind,
        )
        return result

    # -- Files -----------------------------------------------------------------

    async def read_file(self, workspace_id: str, path: str) -> str:
        """Raises ``NotFoundError`` if missing, ``PathViolationError`` if outside the root."""
        real = self.resolve(workspace_id, path)
        try:
            return await self._sandbox.read_text(real)
        except FileNotFoundError:
            msg = f"File '{path}' not found in workspace '{workspace_id}'"
            raise NotFoundError(msg) from None
        except IsADirectoryError:
            msg = f"'{path}' is a directory"
            raise ValidationError(msg) from None

    async def write_file(self, workspace_id: str, path: str, content: str) -> bool:
        """Write *content* atomically.  Returns ``True`` if the file was created."""
        real = self.resolve(workspace_id, path)
        created = not await self._sandbox.exists(real)
        await self._sandbox.write_text(real, content)
        return created

    async def delete_file(self, workspace_id: str, path: str) -> None:
        real = self.resolve(workspace_id, path)
        try:
            await self._sandbox.remove(real)
        except FileNotFoundError:
            msg = f"File '{path}' not found in workspace '{workspace_id}'"
            raise NotFoundError(msg) from None

    async def file_exists(self, workspace_id: str, path: str) -> bool:
        return await self._sandbox.exists(self.resolve(workspace_id, path))

    async def file_mtime(self, workspace_id: str, path: str) -> int | None:
        return await self._sandbox.mtime(self.resolve(workspace_id, path))

    async def list_directory(self, workspace_id: str, path: str = ".") -> list[DirectoryEntry]:
        """Immediate children of *path*: directories first, then by name."""
        root = self.workspace_root(workspace_id)
        real = resolve_in_workspace(root, path)
        rel = real.relative_to(root.resolve())
        try:
            entries = await self._sandbox.list_dir(real)
        except FileNotFoundError:
            msg = f"Directory '{path}' not found in workspace '{workspace_id}'"
            raise NotFoundError(msg) from None
        except NotADirectoryError:
            msg = f"'{path}' is not a directory"
            raise ValidationError(msg) from None
        return [
            DirectoryEntry(
                path=(rel / entry.name).as_posix(),
                name=entry.name,
                is_directory=entry.is_dir,
                size=entry.size,
                modified_at=datetime.fromtimestamp(entry.mtime_ns / 1e9, UTC),
            )
            for entry in sorted(entries, key=lambda entry: (not entry.is_dir, entry.name))
        ]

    async def scan(self, workspace_id: str) -> dict[str, int]:
        """Return ``{relative_path: mtime_ns}`` for the whole workspace."""
        return await self._sandbox.scan(self.workspace_root(workspace_id))

    async def list_files(
        self,
        workspace_id: str,
        pattern: str,
        *,
        path: str = ".",
        limit: int = 200,
        timeout: float | None = None,
    ) -> list[str]:
        """Enumerate files whose name matches *pattern* via ``find``.

        Ignored directories are pruned.  Results are sorted and capped at
        *limit*; paths are relative to the workspace root.
        """
        root = self.workspace_root(workspace_id)
        start = resolve_in_workspace(root, path)
        rel_start = start.relative_to(root.resolve()).as_posix()
        prune = " -o ".join(f"-name {shlex.quote(name)}" for name in sorted(IGNORED_DIRS))
        command = (
            f"find {shlex.quote(rel_start)} -type d \\( {prune} \\) -prune"
            f" -o -type f -name {shlex.quote(pattern)} -print"
            f" | LC_ALL=C sort | head -n {int(limit)}"
        )
        result = await self.execute_command(workspace_id, command, timeout=timeout)
        if result.timed_out:
            msg = f"File enumeration timed out in workspace '{workspace_id}'"
            raise CommandTimeoutError(msg, stdout=result.stdout, stderr=result.stderr)
        return [str(PurePosixPath(line)) for line in result.stdout.splitlines() if line.strip()]

    # -- Presets ---------------------------------------------------------------

    async def run_preset(self, workspace_id: str, preset: Preset | str, *, cwd: str = ".") -> CommandResult:
        """Detect the toolchain and run the named preset."""
        try:
            spec = PRESETS[Preset(preset)]
        except ValueError:
            msg = f"Unknown preset: {preset!r}"
            raise ValidationError(msg) from None
        self.workspace_root(workspace_id)
        logger.info("Running preset {} in workspace {}", spec.preset, workspace_id)
        return await spec.handler(self, workspace_id, cwd, spec.timeout)

    async def install_dependencies(self, workspace_id: str, *, cwd: str = ".") -> CommandResult:
        return await self.run_preset(workspace_id, Preset.INSTALL, cwd=cwd)

    async def run_build(self, workspace_id: str, *, cwd: str = ".") -> CommandResult:
        return await self.run_preset(workspace_id, Preset.BUILD, cwd=cwd)

    async def run_tests(self, workspace_id: str, *, cwd: str = ".") -> CommandResult:
        return await self.run_preset(workspace_id, Preset.TEST, cwd=cwd)

    async def run_lint(self, workspace_id: str, *, cwd: str = ".") -> CommandResult:
        return await self.run_preset(workspace_id, Preset.LINT, cwd=cwd)
