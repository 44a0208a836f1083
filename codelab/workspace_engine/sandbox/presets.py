"""Named command presets (install / build / test / lint).

Each preset inspects the workspace manifests to pick a toolchain command and
runs it through the executor with its own time budget.  The registry is
static and assembled at import time.

When no toolchain is detected the preset returns a zero-exit result whose
stdout says so; that is a normal outcome, not an error.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from codelab.workspace_engine.errors import NotFoundError
from codelab.workspace_engine.models.enums import Preset
from codelab.workspace_engine.models.execution import CommandResult

if TYPE_CHECKING:
    from codelab.workspace_engine.sandbox.executor import SandboxExecutor

PresetHandler = Callable[["SandboxExecutor", str, str, float], Awaitable[CommandResult]]


@dataclass(frozen=True)
class PresetSpec:
    preset: Preset
    timeout: float
    """Seconds."""
    handler: PresetHandler


def _join(cwd: str, name: str) -> str:
    return str(PurePosixPath(cwd) / name)


async def _has(executor: SandboxExecutor, workspace_id: str, cwd: str, name: str) -> bool:
    return await executor.file_exists(workspace_id, _join(cwd, name))


async def _npm_script(executor: SandboxExecutor, workspace_id: str, cwd: str, script: str) -> bool:
    """True if ``package.json`` defines *script*.  Malformed manifests count as no."""
    try:
        raw = await executor.read_file(workspace_id, _join(cwd, "package.json"))
    except NotFoundError:
        return False
    try:
        scripts = json.loads(raw).get("scripts") or {}
    except (ValueError, AttributeError):
        return False
    return isinstance(scripts, dict) and script in scripts


async def _run(executor: SandboxExecutor, workspace_id: str, cwd: str, timeout: float, command: str) -> CommandResult:
    return await executor.execute_command(workspace_id, command, cwd=cwd, timeout=timeout)


def _nothing(message: str) -> CommandResult:
    return CommandResult(stdout=message, exit_code=0)


# -- Handlers ------------------------------------------------------------------


async def _install(executor: SandboxExecutor, workspace_id: str, cwd: str, timeout: float) -> CommandResult:
    if await _has(executor, workspace_id, cwd, "package.json"):
        if await _has(executor, workspace_id, cwd, "pnpm-lock.yaml"):
            command = "pnpm install"
        elif await _has(executor, workspace_id, cwd, "yarn.lock"):
            command = "yarn install"
        else:
            command = "npm install"
        return await _run(executor, workspace_id, cwd, timeout, command)
    if await _has(executor, workspace_id, cwd, "requirements.txt"):
        return await _run(executor, workspace_id, cwd, timeout, "pip install -r requirements.txt")
    if await _has(executor, workspace_id, cwd, "go.mod"):
        return await _run(executor, workspace_id, cwd, timeout, "go mod download")
    if await _has(executor, workspace_id, cwd, "Cargo.toml"):
        return await _run(executor, workspace_id, cwd, timeout, "cargo build")
    return _nothing("No package manager detected")


async def _build(executor: SandboxExecutor, workspace_id: str, cwd: str, timeout: float) -> CommandResult:
    if await _npm_script(executor, workspace_id, cwd, "build"):
        return await _run(executor, workspace_id, cwd, timeout, "npm run build")
    if await _has(executor, workspace_id, cwd, "Cargo.toml"):
        return await _run(executor, workspace_id, cwd, timeout, "cargo build --release")
    if await _has(executor, workspace_id, cwd, "go.mod"):
        return await _run(executor, workspace_id, cwd, timeout, "go build ./...")
    return _nothing("No build configuration detected")


async def _test(executor: SandboxExecutor, workspace_id: str, cwd: str, timeout: float) -> CommandResult:
    if await _npm_script(executor, workspace_id, cwd, "test"):
        return await _run(executor, workspace_id, cwd, timeout, "npm test")
    for manifest in ("pyproject.toml", "pytest.ini", "setup.py", "requirements.txt"):
        if await _has(executor, workspace_id, cwd, manifest):
            return await _run(executor, workspace_id, cwd, timeout, "pytest")
    if await _has(executor, workspace_id, cwd, "go.mod"):
        return await _run(executor, workspace_id, cwd, timeout, "go test ./...")
    return _nothing("No test configuration detected")


async def _lint(executor: SandboxExecutor, workspace_id: str, cwd: str, timeout: float) -> CommandResult:
    if await _npm_script(executor, workspace_id, cwd, "lint"):
        return await _run(executor, workspace_id, cwd, timeout, "npm run lint")
    for manifest in ("pyproject.toml", "ruff.toml", "requirements.txt"):
        if await _has(executor, workspace_id, cwd, manifest):
            return await _run(executor, workspace_id, cwd, timeout, "ruff check .")
    if await _has(executor, workspace_id, cwd, "go.mod"):
        return await _run(executor, workspace_id, cwd, timeout, "go vet ./...")
    return _nothing("No linter configuration detected")


PRESETS: dict[Preset, PresetSpec] = {
    Preset.INSTALL: PresetSpec(Preset.INSTALL, timeout=300.0, handler=_install),
    Preset.BUILD: PresetSpec(Preset.BUILD, timeout=600.0, handler=_build),
    Preset.TEST: PresetSpec(Preset.TEST, timeout=600.0, handler=_test),
    Preset.LINT: PresetSpec(Preset.LINT, timeout=120.0, handler=_lint),
}
