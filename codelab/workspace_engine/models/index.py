"""Codebase index snapshot models.

A snapshot is written as a single row per workspace; its nested lists are
stored as JSONB and validated back through these models on read.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from codelab.workspace_engine.models.enums import DependencySource, DependencyType, SymbolKind


class Symbol(BaseModel):
    name: str
    kind: SymbolKind
    file: str
    line: int
    signature: str = ""


class Dependency(BaseModel):
    name: str
    version: str = "*"
    type: DependencyType = DependencyType.PRODUCTION
    source: DependencySource


class IndexedFile(BaseModel):
    path: str
    language: str
    size: int
    hash: str
    imports: list[str] = Field(default_factory=list)
    exports: list[str] = Field(default_factory=list)
    symbol_count: int = 0


class SourceFile(BaseModel):
    """A file read during indexing, handed to the embedding store."""

    path: str
    content: str


class IndexSnapshot(BaseModel):
    """Full index for one workspace.  Rebuilt wholesale, never merged."""

    workspace_id: str
    root_path: str = "."
    files: list[IndexedFile] = Field(default_factory=list)
    symbols: list[Symbol] = Field(default_factory=list)
    dependencies: list[Dependency] = Field(default_factory=list)
    last_indexed_at: datetime | None = None


class IndexStats(BaseModel):
    files: int = 0
    symbols: int = 0
    dependencies: int = 0
    chunks: int = 0


class IndexStatus(BaseModel):
    indexed: bool
    last_indexed_at: datetime | None = None
    stats: IndexStats | None = None


class IndexBuildResult(BaseModel):
    files: int
    symbols: int
    dependencies: int
    embeddings_generated: int = 0


class IndexSearchResult(BaseModel):
    """Files matched by path, import or export, and matching symbols."""

    files: list[IndexedFile] = Field(default_factory=list)
    symbols: list[Symbol] = Field(default_factory=list)
