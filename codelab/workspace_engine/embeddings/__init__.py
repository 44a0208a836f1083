"""Embedding providers."""

from codelab.workspace_engine.embeddings.base import EmbeddingClient
from codelab.workspace_engine.embeddings.http import HttpEmbeddingClient

__all__ = ["EmbeddingClient", "HttpEmbeddingClient"]
