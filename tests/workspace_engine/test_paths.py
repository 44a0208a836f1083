"""Unit tests for workspace layout and scoped path resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from codelab.workspace_engine.errors import NotFoundError, PathViolationError, ValidationError
from codelab.workspace_engine.sandbox.paths import WorkspaceLayout, resolve_in_workspace


def test_layout_without_prefix(tmp_path: Path) -> None:
    layout = WorkspaceLayout(data_root=tmp_path)
    assert layout.root("ws1") == tmp_path / "workspaces" / "ws1"


def test_layout_with_prefix(tmp_path: Path) -> None:
    layout = WorkspaceLayout(data_root=tmp_path, prefix="alice")
    assert layout.root("ws1") == tmp_path / "alice" / "workspaces" / "ws1"


@pytest.mark.parametrize("workspace_id", ["", "..", "a/b", "../etc", ".hidden", "a" * 200])
def test_layout_rejects_bad_ids(tmp_path: Path, workspace_id: str) -> None:
    with pytest.raises(ValidationError):
        WorkspaceLayout(data_root=tmp_path).root(workspace_id)


def test_require_missing_workspace(tmp_path: Path) -> None:
    layout = WorkspaceLayout(data_root=tmp_path)
    with pytest.raises(NotFoundError):
        layout.require("ws1")
    layout.ensure("ws1")
    assert layout.require("ws1").is_dir()


def test_resolve_relative(workspace: Path) -> None:
    assert resolve_in_workspace(workspace, "src/main.py") == workspace.resolve() / "src" / "main.py"
    assert resolve_in_workspace(workspace, ".") == workspace.resolve()


def test_resolve_virtual_root(workspace: Path) -> None:
    assert resolve_in_workspace(workspace, "/workspace/src/a.ts") == workspace.resolve() / "src" / "a.ts"
    assert resolve_in_workspace(workspace, "/workspace") == workspace.resolve()


@pytest.mark.parametrize("path", ["../outside.txt", "src/../../x", "/etc/passwd", "/workspace/../etc/passwd"])
def test_resolve_rejects_escapes(workspace: Path, path: str) -> None:
    with pytest.raises(PathViolationError):
        resolve_in_workspace(workspace, path)


def test_resolve_rejects_symlink_escape(workspace: Path, tmp_path: Path) -> None:
    secret = tmp_path / "secret.txt"
    secret.write_text("top secret")
    (workspace / "link.txt").symlink_to(secret)
    (workspace / "linkdir").symlink_to(tmp_path)

    with pytest.raises(PathViolationError):
        resolve_in_workspace(workspace, "link.txt")
    with pytest.raises(PathViolationError):
        resolve_in_workspace(workspace, "linkdir/secret.txt")


def test_resolve_allows_symlink_inside(workspace: Path) -> None:
    (workspace / "real.txt").write_text("x")
    (workspace / "alias.txt").symlink_to(workspace / "real.txt")
    assert resolve_in_workspace(workspace, "alias.txt") == workspace.resolve() / "real.txt"


def test_resolve_rejects_empty(workspace: Path) -> None:
    with pytest.raises(ValidationError):
        resolve_in_workspace(workspace, "  ")


@pytest.mark.parametrize("path", ["a\x00b", "/workspace/src/\x00.ts"])
def test_resolve_rejects_nul_byte(workspace: Path, path: str) -> None:
    with pytest.raises(ValidationError):
        resolve_in_workspace(workspace, path)
