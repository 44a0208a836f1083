"""Alembic migration environment.

The URL comes from an explicit ``sqlalchemy.url`` (tests) or from
CODELAB_DATABASE_URL.  Migrations run over the same async psycopg engine the
service uses, bridged with ``connection.run_sync``.

``code_embeddings.embedding`` is a pgvector column; autogenerate renders it
as ``pgvector.sqlalchemy.Vector`` and adds the import to the revision.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig
from typing import Any

from alembic import context
from alembic.autogenerate.api import AutogenContext
from pgvector.sqlalchemy import Vector
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from codelab.workspace_engine.db.engine import normalize_url
from codelab.workspace_engine.db.tables import Base
from codelab.workspace_engine.settings import CodelabSettings

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def _database_url() -> str:
    url = config.get_main_option("sqlalchemy.url") or CodelabSettings().database_url
    if not url:
        msg = "CODELAB_DATABASE_URL is not set. Cannot run migrations."
        raise RuntimeError(msg)
    return normalize_url(url)


def _render_item(type_: str, obj: Any, autogen_context: AutogenContext) -> str | bool:
    if type_ == "type" and isinstance(obj, Vector):
        autogen_context.imports.add("from pgvector.sqlalchemy import Vector")
        return f"Vector({obj.dim})"
    return False


def _include_object(obj: Any, name: str | None, type_: str, reflected: bool, compare_to: Any) -> bool:
    # Tables created outside our models (e.g. by other services) are left alone.
    return not (type_ == "table" and reflected and compare_to is None)


_OPTIONS: dict[str, Any] = {
    "target_metadata": target_metadata,
    "include_object": _include_object,
    "render_item": _render_item,
    "compare_type": True,
    "compare_server_default": True,
}


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of executing it (``alembic upgrade --sql``)."""
    context.configure(url=_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"}, **_OPTIONS)
    with context.begin_transaction():
        context.run_migrations()


def _run_sync(connection: Connection) -> None:
    context.configure(connection=connection, **_OPTIONS)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_async_engine(_database_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_sync)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
