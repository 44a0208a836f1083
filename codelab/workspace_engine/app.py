from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi.routing import APIRouter
from loguru import logger

from codelab.workspace_engine.db.engine import create_engine, create_session_factory
from codelab.workspace_engine.db.tables import EMBEDDING_DIMENSIONS
from codelab.workspace_engine.embeddings.http import HttpEmbeddingClient
from codelab.workspace_engine.log import setup_logging
from codelab.workspace_engine.managers.embeddings import SemanticSearch
from codelab.workspace_engine.managers.indexer import CodebaseIndexer
from codelab.workspace_engine.managers.tasks import TaskScheduler
from codelab.workspace_engine.managers.watcher import FileChangeWatcher
from codelab.workspace_engine.registry import TaskRegistry
from codelab.workspace_engine.sandbox.executor import SandboxExecutor
from codelab.workspace_engine.sandbox.local import LocalSandbox
from codelab.workspace_engine.sandbox.paths import WorkspaceLayout
from codelab.workspace_engine.settings import CodelabSettings, get_settings
from codelab.workspace_engine.store.base import ChangeJournal
from codelab.workspace_engine.store.memory import MemoryChangeJournal
from codelab.workspace_engine.store.redis import RedisChangeJournal


def _create_journal(settings: CodelabSettings, redis: aioredis.Redis | None) -> ChangeJournal:
    """Create the change journal backend based on configuration."""
    if redis is not None:
        return RedisChangeJournal(redis, retention=settings.change_retention)
    return MemoryChangeJournal(retention=settings.change_retention)


def _create_search(settings: CodelabSettings) -> SemanticSearch | None:
    if settings.embedding_api_key is None:
        logger.warning("CODELAB_EMBEDDING_API_KEY not set -- semantic search disabled")
        return None
    if settings.embedding_dimensions != EMBEDDING_DIMENSIONS:
        msg = (
            f"CODELAB_EMBEDDING_DIMENSIONS={settings.embedding_dimensions} does not match "
            f"the code_embeddings column width ({EMBEDDING_DIMENSIONS})"
        )
        raise RuntimeError(msg)
    client = HttpEmbeddingClient(
        base_url=settings.embedding_base_url,
        model=settings.embedding_model,
        dimensions=settings.embedding_dimensions,
        api_key=settings.embedding_api_key.get_secret_value(),
    )
    logger.info("Embeddings: {} via {}", settings.embedding_model, settings.embedding_base_url)
    return SemanticSearch(
        client,
        chunk_size=settings.chunk_size,
        batch_size=settings.embedding_batch_size,
        concurrency=settings.embedding_concurrency,
    )


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level, json=settings.log_json)

    logger.info("Workspace Engine starting (host={}, port={})", settings.host, settings.port)
    prefix_info = f", prefix={settings.data_prefix}" if settings.data_prefix else ""
    logger.info("Data root: {}{}", settings.data_root, prefix_info)

    # -- Initialise state fields (always present, possibly None) ----------------
    _app.state.db_engine = None
    _app.state.db_session_factory = None
    _app.state.redis = None
    _app.state.registry = None
    _app.state.scheduler = None
    _app.state.indexer = None
    _app.state.search = None

    # -- Database --------------------------------------------------------------
    if settings.database_url:
        engine = create_engine(settings.database_url)
        _app.state.db_engine = engine
        _app.state.db_session_factory = create_session_factory(engine)
        logger.info("PostgreSQL: connected (pool_size=5, max_overflow=10)")
    else:
        logger.warning("CODELAB_DATABASE_URL not set -- tasks, index and search disabled")

    # -- Redis -----------------------------------------------------------------
    if settings.redis_url:
        _app.state.redis = aioredis.from_url(
            settings.redis_url,
            decode_responses=False,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
        logger.info("Redis: connected")
    else:
        logger.warning("CODELAB_REDIS_URL not set -- slots and change journal are process-local")

    # -- Sandbox ---------------------------------------------------------------
    layout = WorkspaceLayout(data_root=settings.data_root, prefix=settings.data_prefix)
    executor = SandboxExecutor(layout, LocalSandbox(), default_timeout=settings.command_timeout)
    _app.state.executor = executor

    registry = TaskRegistry(redis=_app.state.redis, slot_ttl=settings.slot_ttl)
    _app.state.registry = registry

    # -- Change feed -----------------------------------------------------------
    _app.state.watcher = FileChangeWatcher(executor, _create_journal(settings, _app.state.redis))

    # -- Managers --------------------------------------------------------------
    if _app.state.db_session_factory is not None:
        _app.state.scheduler = TaskScheduler(
            executor=executor,
            registry=registry,
            session_factory=_app.state.db_session_factory,
            timeout=settings.task_timeout,
            flush_every=settings.task_flush_every,
            exclusive_types=settings.exclusive_task_types,
            slot_poll_interval=settings.slot_poll_interval,
        )
        _app.state.search = _create_search(settings)
        _app.state.indexer = CodebaseIndexer(
            executor,
            search=_app.state.search,
            max_files_per_pattern=settings.max_files_per_pattern,
            timeout=settings.command_timeout,
        )
        logger.info("TaskScheduler / CodebaseIndexer: initialised")

        # Startup recovery: fail tasks orphaned by a previous process.
        async with _app.state.db_session_factory() as db:
            recovered = await TaskScheduler.recover_orphaned_tasks(db)
            if recovered > 0:
                logger.info("Startup recovery: {} orphaned tasks marked as failed", recovered)

    yield

    # -- Shutdown --------------------------------------------------------------
    logger.info("Workspace Engine shutting down (active_tasks={})", registry.active_count)

    # 1. Stop accepting new tasks.
    registry.begin_shutdown()

    # 2. Wait for running tasks to complete naturally.
    if registry.active_count > 0:
        timeout = settings.graceful_shutdown_timeout
        logger.info("Waiting for {} active tasks to finish (timeout={}s)...", registry.active_count, timeout)
        drained = await registry.wait_until_drained(timeout=timeout)
        if not drained:
            # Last resort: kill remaining processes; runners record them as failed.
            cancelled = registry.cancel_all()
            logger.warning("Cancelled {} tasks after timeout", cancelled)
            await registry.wait_until_drained(timeout=10.0)

    if _app.state.search is not None:
        await _app.state.search.aclose()

    # Close Redis client (returns pooled connections).
    if _app.state.redis is not None:
        await _app.state.redis.aclose()
        logger.info("Redis: closed")

    # Dispose DB engine (closes all pooled connections).
    if _app.state.db_engine is not None:
        await _app.state.db_engine.dispose()
        logger.info("PostgreSQL: disposed")


app = FastAPI(title="Codelab Workspace Engine", lifespan=lifespan)

# ---------------------------------------------------------------------------
# API router -- all endpoints live under /api
# ---------------------------------------------------------------------------
api = APIRouter(prefix="/api")


@api.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


from codelab.workspace_engine.routers.changes import router as changes_router  # noqa: E402
from codelab.workspace_engine.routers.files import router as files_router  # noqa: E402
from codelab.workspace_engine.routers.index import router as index_router  # noqa: E402
from codelab.workspace_engine.routers.presets import router as presets_router  # noqa: E402
from codelab.workspace_engine.routers.search import router as search_router  # noqa: E402
from codelab.workspace_engine.routers.tasks import router as tasks_router  # noqa: E402

api.include_router(tasks_router)
api.include_router(presets_router)
api.include_router(index_router)
api.include_router(search_router)
api.include_router(changes_router)
api.include_router(files_router)

app.include_router(api)
