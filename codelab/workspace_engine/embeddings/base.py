"""Embedding client interface."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class EmbeddingClient(Protocol):
    """Turns one text into one vector.

    Implementations raise ``EmbeddingError`` on any failure so callers can
    skip the chunk and continue.
    """

    @property
    def model(self) -> str: ...

    async def embed(self, text: str) -> list[float]: ...

    async def aclose(self) -> None: ...
