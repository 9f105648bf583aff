"""Application settings and configuration.

This module defines all configuration options for the Pageviews service and
its client-side reconciliation core. Settings are loaded from environment
variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Pageviews", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./pageviews.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Redis configuration for cross-process change notifications
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    change_bus_backend: str = Field(default="memory", alias="VIEWS_CHANGE_BUS")
    change_bus_channel: str = Field(
        default="pageviews:changes",
        alias="VIEWS_CHANGE_BUS_CHANNEL",
    )

    # Local counter store
    views_storage_key: str = Field(default="blog-view-counts", alias="VIEWS_STORAGE_KEY")
    views_session_key: str = Field(
        default="current-session-views",
        alias="VIEWS_SESSION_KEY",
    )
    views_local_path: str | None = Field(default=None, alias="VIEWS_LOCAL_PATH")

    # Reconciliation policy
    views_cache_ttl_ms: int = Field(default=60_000, alias="VIEWS_CACHE_TTL_MS")
    views_popular_default_limit: int = Field(default=5, alias="VIEWS_POPULAR_DEFAULT_LIMIT")
    views_popular_max_limit: int = Field(default=50, alias="VIEWS_POPULAR_MAX_LIMIT")
    views_increment_delay_seconds: float = Field(
        default=5.0,
        alias="VIEWS_INCREMENT_DELAY_SECONDS",
    )
    views_retry_failed_increments: bool = Field(
        default=False,
        alias="VIEWS_RETRY_FAILED_INCREMENTS",
    )

    # Remote counter service as seen by the client core
    remote_base_url: str = Field(
        default="http://localhost:8000/api/v1",
        alias="VIEWS_REMOTE_BASE_URL",
    )
    remote_timeout_seconds: float = Field(default=5.0, alias="VIEWS_REMOTE_TIMEOUT_SECONDS")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=False, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides.

        Returns:
            The active database URL (test database if in testing mode, otherwise production)
        """
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for Alembic."""
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    def clamp_popular_limit(self, limit: int | None) -> int:
        """Bound a requested top-N size to ``[1, views_popular_max_limit]``."""
        if limit is None:
            limit = self.views_popular_default_limit
        return max(1, min(self.views_popular_max_limit, int(limit)))


settings = Settings()
