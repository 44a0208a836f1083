"""Sandboxed command execution and scoped file access."""

from codelab.workspace_engine.sandbox.base import IGNORED_DIRS, OutputCallback, Sandbox
from codelab.workspace_engine.sandbox.executor import SandboxExecutor
from codelab.workspace_engine.sandbox.local import LocalSandbox
from codelab.workspace_engine.sandbox.paths import WorkspaceLayout, resolve_in_workspace
from codelab.workspace_engine.sandbox.presets import PRESETS, PresetSpec

__all__ = [
    "IGNORED_DIRS",
    "PRESETS",
    "LocalSandbox",
    "OutputCallback",
    "PresetSpec",
    "Sandbox",
    "SandboxExecutor",
    "WorkspaceLayout",
    "resolve_in_workspace",
]
