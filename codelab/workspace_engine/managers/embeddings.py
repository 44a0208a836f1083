"""Semantic search -- chunk embeddings stored in pgvector.

Files are split into line-aligned chunks, each chunk is embedded with its
file path as context, and the vectors are stored in ``code_embeddings``.
Regeneration replaces all of a workspace's chunks in one transaction, serialized
per workspace with an advisory lock.

Outbound embedding calls are bounded twice: files are processed in batches,
and within a batch a semaphore caps the number of in-flight requests.  A
failed chunk is logged and skipped; it never aborts the batch.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import TYPE_CHECKING

from loguru import logger
from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError

from codelab.workspace_engine.codeintel.chunking import chunk_text
from codelab.workspace_engine.db.engine import lock_workspace
from codelab.workspace_engine.db.tables import EmbeddingRow
from codelab.workspace_engine.errors import EmbeddingError, StorageError, ValidationError
from codelab.workspace_engine.models.search import ChunkRecord, SearchHit

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from codelab.workspace_engine.embeddings.base import EmbeddingClient
    from codelab.workspace_engine.models.index import SourceFile


def embedding_input(path: str, chunk: str) -> str:
    """Text sent to the embedding model for one chunk."""
    return f"File: {path}\n\n{chunk}"


class SemanticSearch:
    """Generates, stores and queries code embeddings for workspaces."""

    def __init__(
        self,
        client: EmbeddingClient,
        *,
        chunk_size: int = 1000,
        batch_size: int = 20,
        concurrency: int = 4,
    ) -> None:
        self._client = client
        self._chunk_size = chunk_size
        self._batch_size = batch_size
        self._concurrency = concurrency

    async def aclose(self) -> None:
        await self._client.aclose()

    # -- Embedding -------------------------------------------------------------

    async def _embed_chunk(self, semaphore: asyncio.Semaphore, path: str, index: int, chunk: str) -> list[float] | None:
        async with semaphore:
            try:
                return await self._client.embed(embedding_input(path, chunk))
            except EmbeddingError as exc:
                logger.warning("Skipping chunk {} of {}: {}", index, path, exc)
                return None

    async def embed_files(self, workspace_id: str, files: Sequence[SourceFile]) -> list[ChunkRecord]:
        """Chunk and embed *files*.  Failed chunks are left out of the result."""
        records: list[ChunkRecord] = []
        for start in range(0, len(files), self._batch_size):
            batch = files[start : start + self._batch_size]
            jobs = [
                (source.path, index, chunk)
                for source in batch
                for index, chunk in enumerate(chunk_text(source.content, self._chunk_size))
                if chunk.strip()
            ]
            semaphore = asyncio.Semaphore(self._concurrency)
            vectors = await asyncio.gather(
                *(self._embed_chunk(semaphore, path, index, chunk) for path, index, chunk in jobs)
            )
            for (path, index, chunk), vector in zip(jobs, vectors, strict=True):
                if vector is not None:
                    records.append(
                        ChunkRecord(
                            workspace_id=workspace_id, file_path=path, chunk_index=index, content=chunk, vector=vector
                        )
                    )
            logger.debug(
                "Embedded batch {}-{} of {} files for {} ({} chunks)",
                start,
                start + len(batch),
                len(files),
                workspace_id,
                len(jobs),
            )
        return records

    # -- Storage ---------------------------------------------------------------

    @staticmethod
    async def replace_chunks(db: AsyncSession, workspace_id: str, records: Sequence[ChunkRecord]) -> int:
        """Delete every chunk of the workspace and insert *records*, atomically."""
        if any(record.workspace_id != workspace_id for record in records):
            msg = "All chunks must belong to the workspace being replaced"
            raise ValidationError(msg)
        try:
            await lock_workspace(db, "embeddings", workspace_id)
            await db.execute(delete(EmbeddingRow).where(EmbeddingRow.workspace_id == workspace_id))
            if records:
                await db.execute(
                    insert(EmbeddingRow),
                    [
                        {
                            "workspace_id": record.workspace_id,
                            "file_path": record.file_path,
                            "chunk_index": record.chunk_index,
                            "content": record.content,
                            "embedding": record.vector,
                        }
                        for record in records
                    ],
                )
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            msg = f"Failed to store embeddings for workspace '{workspace_id}'"
            raise StorageError(msg) from exc
        return len(records)

    async def generate_embeddings(self, db: AsyncSession, workspace_id: str, files: Sequence[SourceFile]) -> int:
        """Re-embed *files* and swap them in.  Returns the number of stored chunks."""
        records = await self.embed_files(workspace_id, files)
        stored = await self.replace_chunks(db, workspace_id, records)
        logger.info("Stored {} embedding chunks for workspace {}", stored, workspace_id)
        return stored

    @staticmethod
    async def count_chunks(db: AsyncSession, workspace_id: str) -> int:
        stmt = select(func.count()).select_from(EmbeddingRow).where(EmbeddingRow.workspace_id == workspace_id)
        result = await db.execute(stmt)
        return result.scalar_one()

    # -- Query -----------------------------------------------------------------

    async def search(self, db: AsyncSession, workspace_id: str, query: str, *, limit: int = 10) -> list[SearchHit]:
        """Nearest chunks to *query* within one workspace, most similar first.

        Raises ``EmbeddingError`` if the query itself cannot be embedded.
        """
        if not query or not query.strip():
            msg = "Query must not be empty"
            raise ValidationError(msg)
        if limit < 1:
            msg = "Limit must be positive"
            raise ValidationError(msg)

        vector = await self._client.embed(query)
        distance = EmbeddingRow.embedding.cosine_distance(vector)
        stmt = (
            select(EmbeddingRow.workspace_id, EmbeddingRow.file_path, EmbeddingRow.content, distance.label("distance"))
            .where(EmbeddingRow.workspace_id == workspace_id)
            .order_by(distance)
            .limit(limit)
        )
        try:
            result = await db.execute(stmt)
        except SQLAlchemyError as exc:
            msg = f"Search failed for workspace '{workspace_id}'"
            raise StorageError(msg) from exc

        hits: list[SearchHit] = []
        for row in result:
            if row.workspace_id != workspace_id:
                logger.error("Search for {} returned a chunk of {}; dropped", workspace_id, row.workspace_id)
                continue
            hits.append(SearchHit(path=row.file_path, content=row.content, similarity=1.0 - float(row.distance)))
        return hits
