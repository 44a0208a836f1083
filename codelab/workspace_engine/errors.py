"""Domain exceptions for the workspace engine.

Managers and the sandbox layer raise these; routers translate them into HTTP
responses.  Each exception subclasses the closest builtin so callers that
only know ``LookupError`` / ``ValueError`` still catch them.

A command exiting non-zero is *not* an error -- it is reported through
``CommandResult.exit_code``.
"""

from __future__ import annotations

from codelab.workspace_engine.models.enums import ErrorKind


class EngineError(Exception):
    """Base class for all workspace engine errors."""

    kind: ErrorKind = ErrorKind.SANDBOX


class ValidationError(EngineError, ValueError):
    """Raised on bad or missing input."""

    kind = ErrorKind.VALIDATION


class NotFoundError(EngineError, LookupError):
    """Raised when a workspace, task or index is absent."""

    kind = ErrorKind.NOT_FOUND


class CommandTimeoutError(EngineError, TimeoutError):
    """Raised when a command exceeded its time budget.

    Carries the partial output captured before the process was killed.
    """

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str, *, stdout: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr


class PathViolationError(EngineError, PermissionError):
    """Raised when a file path resolves outside its workspace root."""

    kind = ErrorKind.PATH_VIOLATION


class SandboxError(EngineError):
    """Raised when a process cannot be started or the sandbox is unreachable."""

    kind = ErrorKind.SANDBOX


class StorageError(EngineError):
    """Raised when a persistence operation fails."""

    kind = ErrorKind.STORAGE


class EmbeddingError(EngineError):
    """Raised when a single embedding request fails.  Recoverable."""

    kind = ErrorKind.EMBEDDING
