"""Unit tests for SandboxExecutor: commands, scoped files, listing, presets."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from codelab.workspace_engine.errors import NotFoundError, PathViolationError, ValidationError
from codelab.workspace_engine.models.enums import ErrorKind, Preset
from codelab.workspace_engine.models.execution import CommandResult
from codelab.workspace_engine.sandbox.executor import SandboxExecutor

# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def test_execute_command(executor: SandboxExecutor, workspace: Path) -> None:
    result = await executor.execute_command("ws1", "echo hello")
    assert result.stdout == "hello\n"
    assert result.exit_code == 0


async def test_non_zero_exit_is_data(executor: SandboxExecutor, workspace: Path) -> None:
    result = await executor.execute_command("ws1", "exit 7")
    assert result.exit_code == 7
    assert result.error_kind is None


async def test_execute_command_timeout(executor: SandboxExecutor, workspace: Path) -> None:
    result = await executor.execute_command("ws1", "echo partial; sleep 10", timeout=0.3)
    assert result.error_kind == ErrorKind.TIMEOUT
    assert result.stdout == "partial\n"


async def test_execute_command_missing_workspace(executor: SandboxExecutor) -> None:
    with pytest.raises(NotFoundError):
        await executor.execute_command("nope", "echo hi")


async def test_execute_command_empty(executor: SandboxExecutor, workspace: Path) -> None:
    with pytest.raises(ValidationError):
        await executor.execute_command("ws1", "   ")


async def test_execute_command_cwd_must_stay_inside(executor: SandboxExecutor, workspace: Path) -> None:
    with pytest.raises(PathViolationError):
        await executor.execute_command("ws1", "pwd", cwd="../..")


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


async def test_write_read_delete(executor: SandboxExecutor, workspace: Path) -> None:
    created = await executor.write_file("ws1", "src/app.ts", "export const a = 1;\n")
    assert created is True
    assert (workspace / "src" / "app.ts").read_text() == "export const a = 1;\n"

    created = await executor.write_file("ws1", "/workspace/src/app.ts", "export const a = 2;\n")
    assert created is False
    assert await executor.read_file("ws1", "src/app.ts") == "export const a = 2;\n"
    assert await executor.file_exists("ws1", "src/app.ts") is True

    await executor.delete_file("ws1", "src/app.ts")
    assert await executor.file_exists("ws1", "src/app.ts") is False


async def test_read_missing_file(executor: SandboxExecutor, workspace: Path) -> None:
    with pytest.raises(NotFoundError):
        await executor.read_file("ws1", "missing.txt")
    with pytest.raises(NotFoundError):
        await executor.delete_file("ws1", "missing.txt")


async def test_read_directory(executor: SandboxExecutor, workspace: Path) -> None:
    (workspace / "src").mkdir()
    with pytest.raises(ValidationError):
        await executor.read_file("ws1", "src")


@pytest.mark.parametrize("path", ["../escape.txt", "/etc/passwd", "a/../../escape.txt"])
async def test_file_ops_reject_escapes(executor: SandboxExecutor, workspace: Path, path: str) -> None:
    with pytest.raises(PathViolationError):
        await executor.read_file("ws1", path)
    with pytest.raises(PathViolationError):
        await executor.write_file("ws1", path, "x")
    with pytest.raises(PathViolationError):
        await executor.delete_file("ws1", path)
    assert not (workspace.parent / "escape.txt").exists()


async def test_file_ops_reject_nul_byte(executor: SandboxExecutor, workspace: Path) -> None:
    with pytest.raises(ValidationError):
        await executor.read_file("ws1", "a\x00b")
    with pytest.raises(ValidationError):
        await executor.write_file("ws1", "a\x00b", "x")


async def test_workspaces_are_isolated(executor: SandboxExecutor, workspace: Path) -> None:
    executor.layout.ensure("ws2")
    await executor.write_file("ws2", "secret.txt", "ws2 only")
    with pytest.raises(PathViolationError):
        await executor.read_file("ws1", "../ws2/secret.txt")
    with pytest.raises(NotFoundError):
        await executor.read_file("ws1", "secret.txt")


async def test_list_files(executor: SandboxExecutor, workspace: Path) -> None:
    for rel in ("src/b.ts", "src/a.ts", "lib/util.ts", "node_modules/pkg/index.ts", "dist/out.ts", "src/style.css"):
        target = workspace / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text("x")

    assert await executor.list_files("ws1", "*.ts") == ["lib/util.ts", "src/a.ts", "src/b.ts"]
    assert await executor.list_files("ws1", "*.ts", path="src") == ["src/a.ts", "src/b.ts"]
    assert await executor.list_files("ws1", "*.ts", limit=1) == ["lib/util.ts"]
    assert await executor.list_files("ws1", "*.py") == []


async def test_list_files_quotes_pattern(executor: SandboxExecutor, workspace: Path) -> None:
    (workspace / "a.ts").write_text("x")
    assert await executor.list_files("ws1", "*.ts; touch pwned") == []
    assert not (workspace / "pwned").exists()


async def test_list_directory(executor: SandboxExecutor, workspace: Path) -> None:
    (workspace / "src" / "nested").mkdir(parents=True)
    (workspace / "src" / "b.ts").write_text("bb")
    (workspace / "src" / "a.ts").write_text("a")
    (workspace / "outside.txt").symlink_to("/etc/hostname")

    entries = await executor.list_directory("ws1", "src")
    assert [(e.path, e.is_directory) for e in entries] == [
        ("src/nested", True),
        ("src/a.ts", False),
        ("src/b.ts", False),
    ]
    assert entries[2].size == 2
    assert entries[2].modified_at.tzinfo is not None

    top = {e.name: e for e in await executor.list_directory("ws1")}
    assert set(top) == {"src", "outside.txt"}
    assert top["outside.txt"].is_directory is False


async def test_list_directory_errors(executor: SandboxExecutor, workspace: Path) -> None:
    (workspace / "file.txt").write_text("x")
    with pytest.raises(NotFoundError):
        await executor.list_directory("ws1", "missing")
    with pytest.raises(ValidationError):
        await executor.list_directory("ws1", "file.txt")
    with pytest.raises(PathViolationError):
        await executor.list_directory("ws1", "..")


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------


@pytest.fixture
def recorded(executor: SandboxExecutor, monkeypatch: pytest.MonkeyPatch) -> AsyncMock:
    """Replace command execution; file detection still hits the real workspace."""
    mock = AsyncMock(return_value=CommandResult(stdout="ok", exit_code=0))
    monkeypatch.setattr(executor, "execute_command", mock)
    return mock


def _write(workspace: Path, name: str, content: str = "") -> None:
    (workspace / name).write_text(content)


@pytest.mark.parametrize(
    ("files", "expected"),
    [
        ({"package.json": "{}", "pnpm-lock.yaml": ""}, "pnpm install"),
        ({"package.json": "{}", "yarn.lock": ""}, "yarn install"),
        ({"package.json": "{}"}, "npm install"),
        ({"requirements.txt": "requests\n"}, "pip install -r requirements.txt"),
        ({"go.mod": "module x\n"}, "go mod download"),
        ({"Cargo.toml": "[package]\n"}, "cargo build"),
    ],
)
async def test_install_detection(
    executor: SandboxExecutor, workspace: Path, recorded: AsyncMock, files: dict[str, str], expected: str
) -> None:
    for name, content in files.items():
        _write(workspace, name, content)
    await executor.install_dependencies("ws1")
    recorded.assert_awaited_once()
    assert recorded.await_args.args == ("ws1", expected)
    assert recorded.await_args.kwargs["timeout"] == 300.0


async def test_build_uses_npm_script_only_when_defined(
    executor: SandboxExecutor, workspace: Path, recorded: AsyncMock
) -> None:
    _write(workspace, "package.json", json.dumps({"scripts": {"test": "jest"}}))
    result = await executor.run_build("ws1")
    recorded.assert_not_awaited()
    assert result.ok
    assert result.stdout == "No build configuration detected"

    _write(workspace, "package.json", json.dumps({"scripts": {"build": "tsc"}}))
    await executor.run_build("ws1")
    assert recorded.await_args.args == ("ws1", "npm run build")
    assert recorded.await_args.kwargs["timeout"] == 600.0


async def test_build_rust_and_go(executor: SandboxExecutor, workspace: Path, recorded: AsyncMock) -> None:
    _write(workspace, "go.mod", "module x\n")
    await executor.run_build("ws1")
    assert recorded.await_args.args == ("ws1", "go build ./...")

    _write(workspace, "Cargo.toml", "[package]\n")
    await executor.run_build("ws1")
    assert recorded.await_args.args == ("ws1", "cargo build --release")


async def test_test_and_lint_detection(executor: SandboxExecutor, workspace: Path, recorded: AsyncMock) -> None:
    _write(workspace, "pyproject.toml", "[project]\nname = 'x'\n")
    await executor.run_tests("ws1")
    assert recorded.await_args.args == ("ws1", "pytest")
    await executor.run_lint("ws1")
    assert recorded.await_args.args == ("ws1", "ruff check .")
    assert recorded.await_args.kwargs["timeout"] == 120.0


async def test_presets_with_nothing_detected(executor: SandboxExecutor, workspace: Path, recorded: AsyncMock) -> None:
    for preset, message in (
        (Preset.INSTALL, "No package manager detected"),
        (Preset.BUILD, "No build configuration detected"),
        (Preset.TEST, "No test configuration detected"),
        (Preset.LINT, "No linter configuration detected"),
    ):
        result = await executor.run_preset("ws1", preset)
        assert result.exit_code == 0
        assert result.stdout == message
    recorded.assert_not_awaited()


async def test_preset_in_subdirectory(executor: SandboxExecutor, workspace: Path, recorded: AsyncMock) -> None:
    (workspace / "web").mkdir()
    _write(workspace / "web", "package.json", json.dumps({"scripts": {"lint": "eslint ."}}))
    await executor.run_lint("ws1", cwd="web")
    assert recorded.await_args.args == ("ws1", "npm run lint")
    assert recorded.await_args.kwargs["cwd"] == "web"


async def test_unknown_preset(executor: SandboxExecutor, workspace: Path) -> None:
    with pytest.raises(ValidationError):
        await executor.run_preset("ws1", "deploy")


async def test_preset_missing_workspace(executor: SandboxExecutor) -> None:
    with pytest.raises(NotFoundError):
        await executor.run_preset("ghost", Preset.BUILD)


async def test_preset_runs_real_command(executor: SandboxExecutor, workspace: Path) -> None:
    """End to end: detection plus the actual subprocess (``npm`` stand-in via PATH)."""
    bin_dir = workspace / "bin"
    bin_dir.mkdir()
    fake_npm = bin_dir / "npm"
    fake_npm.write_text('#!/bin/sh\necho "npm $@"\n')
    fake_npm.chmod(0o755)
    _write(workspace, "package.json", json.dumps({"scripts": {"build": "tsc"}}))

    original = executor.execute_command

    async def with_path(workspace_id: str, command: str, **kwargs: object) -> CommandResult:
        return await original(workspace_id, f'PATH="{bin_dir}:$PATH" {command}', **kwargs)  # type: ignore[arg-type]

    executor.execute_command = with_path  # type: ignore[method-assign]
    result = await executor.run_build("ws1")
    assert result.ok
    assert result.stdout == "npm run build\n"
