import asyncio
from pathlib import Path

import click


@click.group()
def main() -> None:
    """Codelab - workspace execution and code-intelligence engine."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: CODELAB_HOST).")
@click.option("--port", default=None, type=int, help="Bind port (default: CODELAB_PORT).")
@click.option("--reload", is_flag=True, default=False, help="Restart on source changes (development only).")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Run the Workspace Engine HTTP server."""
    import uvicorn

    from codelab.workspace_engine.settings import get_settings

    settings = get_settings()
    uvicorn.run(
        "codelab.workspace_engine.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="warning",
        # The lifespan drains tasks for graceful_shutdown_timeout, then kills
        # leftovers and closes Redis and the DB pool.
        timeout_graceful_shutdown=settings.graceful_shutdown_timeout + 60,
    )


@main.command()
@click.argument("workspace_id")
@click.option("--interval", type=float, default=None, help="Poll period in seconds.")
def watch(workspace_id: str, interval: float | None) -> None:
    """Print file changes in a local workspace as they happen (Ctrl-C to stop)."""
    from codelab.workspace_engine.log import setup_logging
    from codelab.workspace_engine.managers.watcher import ChangePoller, FileChangeWatcher
    from codelab.workspace_engine.models.changes import FileChange
    from codelab.workspace_engine.sandbox.executor import SandboxExecutor
    from codelab.workspace_engine.sandbox.local import LocalSandbox
    from codelab.workspace_engine.sandbox.paths import WorkspaceLayout
    from codelab.workspace_engine.settings import get_settings
    from codelab.workspace_engine.store.memory import MemoryChangeJournal

    settings = get_settings()
    setup_logging(settings.log_level, json=settings.log_json)
    layout = WorkspaceLayout(data_root=settings.data_root, prefix=settings.data_prefix)
    executor = SandboxExecutor(layout, LocalSandbox(), default_timeout=settings.command_timeout)
    watcher = FileChangeWatcher(executor, MemoryChangeJournal(retention=settings.change_retention))
    poller = ChangePoller(watcher, workspace_id, interval=interval or settings.change_poll_interval)

    async def echo(changes: list[FileChange]) -> None:
        for change in changes:
            click.echo(f"{change.timestamp.isoformat()}  {change.type.value:<8}  {change.path}")

    try:
        asyncio.run(poller.run(echo, asyncio.Event()))
    except KeyboardInterrupt:
        pass


# ---------------------------------------------------------------------------
# Database management (Alembic, packaged with workspace_engine)
# ---------------------------------------------------------------------------


def _alembic(action: str, *args: object, **kwargs: object) -> None:
    """Run an ``alembic.command`` function against the packaged alembic.ini."""
    from alembic import command
    from alembic.config import Config

    config = Config(str(Path(__file__).parent / "workspace_engine" / "alembic.ini"))
    getattr(command, action)(config, *args, **kwargs)


@main.group()
def db() -> None:
    """Schema migrations for background_tasks, codebase_indexes and code_embeddings."""


@db.command()
@click.option("--revision", default="head", help="Target revision (default: head).")
def upgrade(revision: str) -> None:
    """Apply migrations (also installs the pgvector extension)."""
    _alembic("upgrade", revision)
    click.echo(f"Database upgraded to {revision}.")


@db.command()
@click.option("--revision", default="-1", help="Target revision (default: one step back).")
def downgrade(revision: str) -> None:
    """Revert migrations."""
    _alembic("downgrade", revision)
    click.echo(f"Database downgraded to {revision}.")


@db.command()
@click.argument("message")
def migrate(message: str) -> None:
    """Autogenerate a migration from changes in db/tables.py."""
    _alembic("revision", message=message, autogenerate=True)
    click.echo(f"Migration generated: {message}")


@db.command()
def current() -> None:
    """Show the applied revision."""
    _alembic("current", verbose=True)


@db.command()
def history() -> None:
    """List all revisions."""
    _alembic("history", verbose=True)


if __name__ == "__main__":
    main()
