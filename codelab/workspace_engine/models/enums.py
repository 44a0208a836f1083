"""Shared enumerations used across the workspace engine."""

from __future__ import annotations

from enum import StrEnum

# -- Tasks -------------------------------------------------------------------


class TaskStatus(StrEnum):
    """Durable background task status persisted in PG."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class TaskType(StrEnum):
    SHELL = "shell"
    INSTALL = "install"
    BUILD = "build"
    TEST = "test"
    LINT = "lint"
    DEPLOY = "deploy"
    CUSTOM = "custom"


# -- Execution ---------------------------------------------------------------


class Preset(StrEnum):
    """Well-known command presets runnable synchronously."""

    INSTALL = "install"
    BUILD = "build"
    TEST = "test"
    LINT = "lint"


class ErrorKind(StrEnum):
    """Machine-readable error classification shared by results and exceptions."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    PATH_VIOLATION = "path_violation"
    SANDBOX = "sandbox"
    STORAGE = "storage"
    EMBEDDING = "embedding"


# -- Code intelligence -------------------------------------------------------


class SymbolKind(StrEnum):
    FUNCTION = "function"
    CLASS = "class"
    INTERFACE = "interface"
    TYPE = "type"
    VARIABLE = "variable"
    ENUM = "enum"


class DependencyType(StrEnum):
    PRODUCTION = "production"
    DEVELOPMENT = "development"


class DependencySource(StrEnum):
    NPM = "npm"
    PIP = "pip"
    GO = "go"
    CARGO = "cargo"


# -- Change feed -------------------------------------------------------------


class ChangeType(StrEnum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
