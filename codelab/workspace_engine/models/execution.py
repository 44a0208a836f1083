"""Command results and directory listings returned by the sandbox executor."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from codelab.workspace_engine.models.enums import ErrorKind


class CommandResult(BaseModel):
    """Outcome of a single command invocation.

    Immutable and never persisted by the executor.  A non-zero ``exit_code``
    is a normal result; ``error_kind`` is only set when the process was
    killed (timeout or cancellation).
    """

    model_config = ConfigDict(frozen=True)

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    execution_time: int = 0
    """Wall-clock duration in milliseconds."""

    error_kind: ErrorKind | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and self.error_kind is None

    @property
    def timed_out(self) -> bool:
        return self.error_kind == ErrorKind.TIMEOUT


class DirectoryEntry(BaseModel):
    """One child of a listed directory."""

    model_config = ConfigDict(frozen=True)

    path: str
    """Relative to the workspace root."""

    name: str
    is_directory: bool
    size: int
    modified_at: datetime
