"""Data models for the workspace engine."""

from codelab.workspace_engine.models.api import (
    FileContent,
    FileWrite,
    IndexBuildRequest,
    PresetRunResponse,
    SearchRequest,
    TaskAccepted,
    TaskCreate,
)
from codelab.workspace_engine.models.changes import FileChange
from codelab.workspace_engine.models.enums import (
    ChangeType,
    DependencySource,
    DependencyType,
    ErrorKind,
    Preset,
    SymbolKind,
    TaskStatus,
    TaskType,
)
from codelab.workspace_engine.models.execution import CommandResult, DirectoryEntry
from codelab.workspace_engine.models.index import (
    Dependency,
    IndexBuildResult,
    IndexedFile,
    IndexSearchResult,
    IndexSnapshot,
    IndexStats,
    IndexStatus,
    SourceFile,
    Symbol,
)
from codelab.workspace_engine.models.search import ChunkRecord, SearchHit
from codelab.workspace_engine.models.task import BackgroundTask

__all__ = [
    # Tasks
    "BackgroundTask",
    # Enums
    "ChangeType",
    # Search
    "ChunkRecord",
    # Execution
    "CommandResult",
    # Index
    "Dependency",
    "DependencySource",
    "DependencyType",
    "DirectoryEntry",
    "ErrorKind",
    # Change feed
    "FileChange",
    # API schemas
    "FileContent",
    "FileWrite",
    "IndexBuildRequest",
    "IndexBuildResult",
    "IndexSearchResult",
    "IndexSnapshot",
    "IndexStats",
    "IndexStatus",
    "IndexedFile",
    "Preset",
    "PresetRunResponse",
    "SearchHit",
    "SearchRequest",
    "SourceFile",
    "Symbol",
    "SymbolKind",
    "TaskAccepted",
    "TaskCreate",
    "TaskStatus",
    "TaskType",
]
