"""Workspace path layout and scoped path resolution.

Workspaces live on the host under::

    {data_root}/{prefix}/workspaces/{workspace_id}/

Callers address files relative to the workspace root.  Absolute paths are
accepted only under the virtual root ``/workspace`` (what commands running in
the sandbox see); anything else absolute is rejected.

Every path is resolved with symlinks followed before the containment check,
so ``../`` sequences and symlinks pointing outside the root are both refused
with ``PathViolationError``.
"""

from __future__ import annotations

import re
from pathlib import Path, PurePosixPath

from codelab.workspace_engine.errors import NotFoundError, PathViolationError, ValidationError

VIRTUAL_WORKSPACE_ROOT = PurePosixPath("/workspace")
"""Root path presented to commands running inside a workspace."""

_WORKSPACE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


class WorkspaceLayout:
    """Maps workspace IDs to real directories on the host."""

    def __init__(self, *, data_root: str | Path, prefix: str | None = None) -> None:
        base = Path(data_root)
        if prefix:
            base = base / prefix
        self._base = base / "workspaces"

    @property
    def base(self) -> Path:
        return self._base

    def root(self, workspace_id: str) -> Path:
        """Real host path for a workspace (not checked for existence)."""
        if not _WORKSPACE_ID_RE.match(workspace_id) or ".." in workspace_id:
            msg = f"Invalid workspace id: {workspace_id!r}"
            raise ValidationError(msg)
        return self._base / workspace_id

    def exists(self, workspace_id: str) -> bool:
        return self.root(workspace_id).is_dir()

    def require(self, workspace_id: str) -> Path:
        """Return the workspace root.  Raises ``NotFoundError`` if missing."""
        root = self.root(workspace_id)
        if not root.is_dir():
            msg = f"Workspace '{workspace_id}' not found"
            raise NotFoundError(msg)
        return root

    def ensure(self, workspace_id: str) -> Path:
        """Create the workspace directory (idempotent).  Used by tooling and tests."""
        root = self.root(workspace_id)
        root.mkdir(parents=True, exist_ok=True)
        return root


def resolve_in_workspace(root: Path, path: str) -> Path:
    """Resolve *path* against *root*, refusing anything that escapes it."""
    if not path or not path.strip():
        msg = "Path must not be empty"
        raise ValidationError(msg)

    pure = PurePosixPath(path)
    if pure.is_absolute():
        if pure != VIRTUAL_WORKSPACE_ROOT and VIRTUAL_WORKSPACE_ROOT not in pure.parents:
            msg = f"Path '{path}' is outside the workspace"
            raise PathViolationError(msg)
        pure = pure.relative_to(VIRTUAL_WORKSPACE_ROOT)

    real_root = root.resolve()
    try:
        candidate = (real_root / pure).resolve()
    except ValueError:
        # Embedded NUL byte.
        msg = f"Invalid path: {path!r}"
        raise ValidationError(msg) from None
    if candidate != real_root and not candidate.is_relative_to(real_root):
        msg = f"Path '{path}' resolves outside the workspace"
        raise PathViolationError(msg)
    return candidate


def relative_to_root(root: Path, real_path: Path) -> str:
    """POSIX-style path of *real_path* relative to the workspace root."""
    return real_path.relative_to(root.resolve()).as_posix()
