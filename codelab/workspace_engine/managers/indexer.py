"""Codebase indexer -- symbols, imports, exports and dependencies per workspace.

Files are enumerated and read exclusively through the sandbox executor, so
the indexer never touches the host filesystem directly and inherits the
executor's path checks.

An index is a single ``codebase_indexes`` row per workspace.  A rebuild
deletes the previous row and inserts the new one in one transaction, under a
per-workspace advisory lock so concurrent rebuilds queue up.  Readers see
either the old snapshot or the new one.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from loguru import logger
from sqlalchemy import delete, insert
from sqlalchemy.exc import SQLAlchemyError

from codelab.workspace_engine.codeintel.languages import FILE_PATTERNS
from codelab.workspace_engine.codeintel.manifests import MANIFEST_PARSERS
from codelab.workspace_engine.codeintel.symbols import analyze_file
from codelab.workspace_engine.db.engine import lock_workspace
from codelab.workspace_engine.db.tables import CodebaseIndexRow
from codelab.workspace_engine.errors import NotFoundError, PathViolationError, StorageError, ValidationError
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

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from codelab.workspace_engine.managers.embeddings import SemanticSearch
    from codelab.workspace_engine.sandbox.executor import SandboxExecutor


class CodebaseIndexer:
    """Builds, stores and queries codebase index snapshots.

    Instantiated once during app lifespan.  *search* is optional; without it
    ``build_index(include_embeddings=True)`` is rejected.
    """

    def __init__(
        self,
        executor: SandboxExecutor,
        *,
        search: SemanticSearch | None = None,
        max_files_per_pattern: int = 200,
        timeout: float = 120.0,
    ) -> None:
        self._executor = executor
        self._search = search
        self._max_files = max_files_per_pattern
        self._timeout = timeout

    # -- Build -----------------------------------------------------------------

    async def build_snapshot(self, workspace_id: str, root_path: str = ".") -> tuple[IndexSnapshot, list[SourceFile]]:
        """Scan the workspace and return the snapshot plus the file contents read.

        Pure with respect to storage: nothing is persisted.
        """
        files: list[IndexedFile] = []
        symbols: list[Symbol] = []
        sources: list[SourceFile] = []
        seen: set[str] = set()

        for pattern in FILE_PATTERNS:
            paths = await self._executor.list_files(
                workspace_id,
                pattern,
                path=root_path,
                limit=self._max_files,
                timeout=self._timeout,
            )
            for path in paths:
                if path in seen:
                    continue
                seen.add(path)
                try:
                    content = await self._executor.read_file(workspace_id, path)
                except (NotFoundError, ValidationError, PathViolationError, OSError) as exc:
                    # Vanished, unreadable or a symlink leaving the workspace.
                    logger.debug("Index {}: skipping {} ({})", workspace_id, path, exc)
                    continue
                indexed, file_symbols = analyze_file(path, content)
                files.append(indexed)
                symbols.extend(file_symbols)
                sources.append(SourceFile(path=path, content=content))

        snapshot = IndexSnapshot(
            workspace_id=workspace_id,
            root_path=root_path,
            files=files,
            symbols=symbols,
            dependencies=await self._parse_dependencies(workspace_id, root_path),
            last_indexed_at=datetime.now(UTC),
        )
        return snapshot, sources

    async def _parse_dependencies(self, workspace_id: str, root_path: str) -> list[Dependency]:
        deps: list[Dependency] = []
        for name, parser in MANIFEST_PARSERS.items():
            path = str(PurePosixPath(root_path) / name)
            try:
                text = await self._executor.read_file(workspace_id, path)
            except NotFoundError:
                continue
            try:
                deps.extend(parser(text))
            except ValueError as exc:
                logger.warning("Index {}: ignoring malformed {} ({})", workspace_id, path, exc)
        return deps

    @staticmethod
    async def save_snapshot(db: AsyncSession, snapshot: IndexSnapshot) -> None:
        """Replace the workspace's index row with *snapshot* in one transaction."""
        data = snapshot.model_dump(mode="json")
        try:
            await lock_workspace(db, "index", snapshot.workspace_id)
            await db.execute(delete(CodebaseIndexRow).where(CodebaseIndexRow.workspace_id == snapshot.workspace_id))
            await db.execute(
                insert(CodebaseIndexRow).values(
                    workspace_id=snapshot.workspace_id,
                    root_path=snapshot.root_path,
                    files=data["files"],
                    symbols=data["symbols"],
                    dependencies=data["dependencies"],
                    last_indexed_at=snapshot.last_indexed_at or datetime.now(UTC),
                )
            )
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            msg = f"Failed to store index for workspace '{snapshot.workspace_id}'"
            raise StorageError(msg) from exc

    async def build_index(
        self,
        db: AsyncSession,
        workspace_id: str,
        root_path: str = ".",
        *,
        include_embeddings: bool = False,
    ) -> IndexBuildResult:
        """Rebuild the workspace index, optionally regenerating embeddings."""
        if include_embeddings and self._search is None:
            msg = "Semantic search is not configured"
            raise ValidationError(msg)
        self._executor.workspace_root(workspace_id)

        snapshot, sources = await self.build_snapshot(workspace_id, root_path)
        await self.save_snapshot(db, snapshot)
        logger.info(
            "Indexed workspace {}: {} files, {} symbols, {} dependencies",
            workspace_id,
            len(snapshot.files),
            len(snapshot.symbols),
            len(snapshot.dependencies),
        )

        embeddings = 0
        if include_embeddings and self._search is not None:
            embeddings = await self._search.generate_embeddings(db, workspace_id, sources)

        return IndexBuildResult(
            files=len(snapshot.files),
            symbols=len(snapshot.symbols),
            dependencies=len(snapshot.dependencies),
            embeddings_generated=embeddings,
        )

    # -- Read ------------------------------------------------------------------

    @staticmethod
    async def get_index(db: AsyncSession, workspace_id: str) -> IndexSnapshot:
        """Raises ``NotFoundError`` if the workspace was never indexed."""
        row = await db.get(CodebaseIndexRow, workspace_id, populate_existing=True)
        if row is None:
            msg = f"Workspace '{workspace_id}' has no index"
            raise NotFoundError(msg)
        return IndexSnapshot(
            workspace_id=row.workspace_id,
            root_path=row.root_path,
            files=row.files,
            symbols=row.symbols,
            dependencies=row.dependencies,
            last_indexed_at=row.last_indexed_at,
        )

    async def get_index_status(self, db: AsyncSession, workspace_id: str) -> IndexStatus:
        """``{indexed: false}`` when there is no index; not an error."""
        try:
            snapshot = await self.get_index(db, workspace_id)
        except NotFoundError:
            return IndexStatus(indexed=False)
        chunks = await self._search.count_chunks(db, workspace_id) if self._search is not None else 0
        return IndexStatus(
            indexed=True,
            last_indexed_at=snapshot.last_indexed_at,
            stats=IndexStats(
                files=len(snapshot.files),
                symbols=len(snapshot.symbols),
                dependencies=len(snapshot.dependencies),
                chunks=chunks,
            ),
        )

    async def search_symbols(self, db: AsyncSession, workspace_id: str, query: str, *, limit: int = 50) -> list[Symbol]:
        """Case-insensitive substring match over symbol names and signatures.

        Exact name matches rank first, then name prefixes, then the rest.
        """
        needle = _needle(query)
        snapshot = await self.get_index(db, workspace_id)
        return _rank_symbols(snapshot.symbols, needle)[:limit]

    async def search(self, db: AsyncSession, workspace_id: str, query: str, *, limit: int = 50) -> IndexSearchResult:
        """Files whose path, imports or exports contain *query*, plus matching symbols.

        Path matches rank ahead of import/export matches.  Both lists are
        capped at *limit* independently.
        """
        needle = _needle(query)
        snapshot = await self.get_index(db, workspace_id)
        by_path: list[IndexedFile] = []
        by_content: list[IndexedFile] = []
        for indexed in snapshot.files:
            if needle in indexed.path.lower():
                by_path.append(indexed)
            elif any(needle in name.lower() for name in [*indexed.imports, *indexed.exports]):
                by_content.append(indexed)
        return IndexSearchResult(
            files=[*by_path, *by_content][:limit],
            symbols=_rank_symbols(snapshot.symbols, needle)[:limit],
        )


def _needle(query: str) -> str:
    needle = query.strip().lower()
    if not needle:
        msg = "Query must not be empty"
        raise ValidationError(msg)
    return needle


def _rank_symbols(symbols: list[Symbol], needle: str) -> list[Symbol]:
    ranked: list[tuple[int, int, Symbol]] = []
    for position, symbol in enumerate(symbols):
        name = symbol.name.lower()
        if name == needle:
            rank = 0
        elif name.startswith(needle):
            rank = 1
        elif needle in name or needle in symbol.signature.lower():
            rank = 2
        else:
            continue
        ranked.append((rank, position, symbol))
    ranked.sort(key=lambda item: (item[0], item[1]))
    return [symbol for _, _, symbol in ranked]
