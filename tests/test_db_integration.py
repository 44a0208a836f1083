"""Schema and fixture checks against a migrated PostgreSQL (pgvector) container.

Covers the tables, extension and indexes created by migration 0001, plus
the savepoint isolation every other integration test relies on.
"""

from __future__ import annotations

import pytest
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from codelab.workspace_engine.db.tables import TaskRow

pytestmark = pytest.mark.integration


async def test_alembic_migrations_applied(db_session: AsyncSession):
    """All tables from the initial migration should exist."""
    result = await db_session.execute(
        text("SELECT table_name FROM information_schema.tables WHERE table_schema = 'public' ORDER BY table_name")
    )
    tables = sorted(row[0] for row in result)
    assert "background_tasks" in tables
    assert "codebase_indexes" in tables
    assert "code_embeddings" in tables


async def test_pgvector_extension_installed(db_session: AsyncSession):
    result = await db_session.execute(text("SELECT extname FROM pg_extension WHERE extname = 'vector'"))
    assert result.scalar_one() == "vector"


async def test_savepoint_rollback_isolation(db_session: AsyncSession):
    """Rows inserted in a test should not persist to the next test."""
    task = TaskRow(
        task_id="test-task-1",
        workspace_id="ws1",
        type="shell",
        command="echo hi",
    )
    db_session.add(task)
    await db_session.commit()  # commits savepoint, not the real txn

    result = await db_session.execute(select(TaskRow).where(TaskRow.task_id == "test-task-1"))
    row = result.scalar_one()
    assert row.status == "pending"
    assert row.output == []


async def test_savepoint_rollback_clean_state(db_session: AsyncSession):
    """Previous test's data should have been rolled back."""
    result = await db_session.execute(select(TaskRow).where(TaskRow.task_id == "test-task-1"))
    row = result.scalar_one_or_none()
    assert row is None, "Savepoint rollback did not clean up previous test's data"


async def test_redis_connection(redis_client):
    """Redis client should be functional."""
    await redis_client.set("test_key", "test_value")
    value = await redis_client.get("test_key")
    assert value == b"test_value"


async def test_embedding_indexes_created(db_session: AsyncSession):
    result = await db_session.execute(
        text("SELECT indexname, indexdef FROM pg_indexes WHERE tablename = 'code_embeddings' ORDER BY indexname")
    )
    indexes = dict(result.all())
    assert "USING hnsw" in indexes["ix_code_embeddings_embedding_hnsw"]
    assert "vector_cosine_ops" in indexes["ix_code_embeddings_embedding_hnsw"]
    assert "ix_code_embeddings_workspace_id" in indexes
    assert "uq_code_embeddings_chunk" in indexes


async def test_duplicate_chunk_rejected(db_session: AsyncSession):
    """One row per (workspace, file, chunk index)."""
    from sqlalchemy.exc import IntegrityError

    from codelab.workspace_engine.db.tables import EMBEDDING_DIMENSIONS, EmbeddingRow

    def chunk() -> EmbeddingRow:
        return EmbeddingRow(
            workspace_id="ws1",
            file_path="a.ts",
            chunk_index=0,
            content="x",
            embedding=[0.0] * EMBEDDING_DIMENSIONS,
        )

    db_session.add(chunk())
    await db_session.flush()
    db_session.add(chunk())
    with pytest.raises(IntegrityError):
        await db_session.flush()
