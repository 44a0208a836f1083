"""Service configuration loaded from CODELAB_* environment variables."""

from __future__ import annotations

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CodelabSettings(BaseSettings):
    """Workspace engine settings.

    All fields are read from environment variables with the ``CODELAB_`` prefix.
    For example, ``CODELAB_LOG_LEVEL=DEBUG`` maps to ``log_level``.
    """

    model_config = SettingsConfigDict(
        env_prefix="CODELAB_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"
    log_json: bool = False
    """Emit serialized JSON lines instead of the coloured console format."""

    # -- Infrastructure --------------------------------------------------------
    database_url: str | None = None
    """PostgreSQL connection string (psycopg, pgvector extension required)."""

    redis_url: str | None = None
    """Redis connection string.  Enables shared leases and the change journal."""

    # -- Workspace storage -----------------------------------------------------
    data_root: str = "./data"
    """Root directory holding ``workspaces/{workspace_id}/`` trees."""

    data_prefix: str | None = None
    """Optional namespace inserted as ``{data_root}/{data_prefix}/workspaces/...``."""

    # -- Execution -------------------------------------------------------------
    command_timeout: float = 120.0
    """Default budget (seconds) for ad-hoc commands, indexing and search."""

    task_timeout: float = 600.0
    """Budget (seconds) for background tasks (long builds)."""

    task_flush_every: int = 10
    """Number of buffered stdout chunks between durable output flushes."""

    exclusive_task_types: list[str] = Field(default_factory=lambda: ["build"])
    """Task types limited to one concurrent run per workspace."""

    slot_ttl: int = 900
    """Lease TTL (seconds) for per-workspace execution slots.  Must exceed ``task_timeout``."""

    slot_poll_interval: float = 1.0

    # -- Indexing --------------------------------------------------------------
    max_files_per_pattern: int = 200

    # -- Embeddings ------------------------------------------------------------
    embedding_base_url: str = "https://api.openai.com/v1"
    embedding_api_key: SecretStr | None = None
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_batch_size: int = 20
    """Files embedded per batch."""

    embedding_concurrency: int = 4
    """Maximum in-flight embedding requests within a batch."""

    chunk_size: int = 1000
    """Maximum characters per embedding chunk (boundaries fall on line breaks)."""

    # -- Change feed -----------------------------------------------------------
    change_poll_interval: float = 5.0
    change_retention: int = 86400
    """Seconds a journalled file change stays visible to pollers."""

    # -- Server ----------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000
    graceful_shutdown_timeout: int = 900
    """Seconds to wait for running tasks to finish during shutdown.

    After this timeout, remaining tasks are cancelled (their processes are
    killed and they terminate as failed).
    """

    @model_validator(mode="after")
    def _validate_slot_ttl(self) -> CodelabSettings:
        # An exclusive slot must not expire while its task can still be running.
        if self.slot_ttl <= self.task_timeout:
            msg = f"slot_ttl ({self.slot_ttl}s) must exceed task_timeout ({self.task_timeout:g}s)"
            raise ValueError(msg)
        return self


def get_settings() -> CodelabSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> CodelabSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return CodelabSettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
