"""SQLAlchemy ORM models for PostgreSQL.

These are the single source of truth for the database schema.  Alembic reads
``Base.metadata`` to autogenerate migration scripts.

Uses SQLAlchemy 2.0 declarative style with ``Mapped`` type annotations.
Embedding vectors use the ``pgvector`` extension.
"""

from __future__ import annotations

from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import BigInteger, DateTime, Identity, Index, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Timezone-aware timestamp type for all datetime columns.
TimestampTZ = DateTime(timezone=True)

EMBEDDING_DIMENSIONS = 1536
"""Vector width of ``code_embeddings.embedding``.  Changing it needs a migration."""


class Base(DeclarativeBase):
    """Declarative base with naming convention for constraints."""

    pass


Base.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class TaskRow(Base):
    __tablename__ = "background_tasks"
    __table_args__ = (
        Index("ix_background_tasks_workspace_id", "workspace_id"),
        Index("ix_background_tasks_status", "status"),
    )

    task_id: Mapped[str] = mapped_column(primary_key=True)
    workspace_id: Mapped[str]
    type: Mapped[str]
    command: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(server_default="pending")
    output: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    progress: Mapped[int] = mapped_column(default=0, server_default="0")
    exit_code: Mapped[int | None]
    error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    started_at: Mapped[datetime | None] = mapped_column(TimestampTZ)
    completed_at: Mapped[datetime | None] = mapped_column(TimestampTZ)


class CodebaseIndexRow(Base):
    """One row per workspace; replaced wholesale on every rebuild."""

    __tablename__ = "codebase_indexes"

    workspace_id: Mapped[str] = mapped_column(primary_key=True)
    root_path: Mapped[str] = mapped_column(server_default=".")
    files: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    symbols: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    dependencies: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    last_indexed_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())


class EmbeddingRow(Base):
    __tablename__ = "code_embeddings"
    __table_args__ = (
        UniqueConstraint("workspace_id", "file_path", "chunk_index", name="uq_code_embeddings_chunk"),
        Index("ix_code_embeddings_workspace_id", "workspace_id"),
        Index(
            "ix_code_embeddings_embedding_hnsw",
            "embedding",
            postgresql_using="hnsw",
            postgresql_with={"m": 16, "ef_construction": 64},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, Identity(), primary_key=True)
    workspace_id: Mapped[str]
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    chunk_index: Mapped[int]
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding = mapped_column(Vector(EMBEDDING_DIMENSIONS), nullable=False)
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
