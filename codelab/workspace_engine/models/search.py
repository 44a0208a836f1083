"""Semantic search models."""

from __future__ import annotations

from pydantic import BaseModel


class ChunkRecord(BaseModel):
    """An embedded slice of a source file, ready to be stored."""

    workspace_id: str
    file_path: str
    chunk_index: int
    content: str
    vector: list[float]


class SearchHit(BaseModel):
    path: str
    content: str
    similarity: float
