"""Application settings using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="hindustani-tongue", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment name"
    )
    debug: bool = Field(default=True, description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", description="API host")  # noqa: S104
    api_port: int = Field(default=8000, description="API port")

    # Authentication (tokens are issued by the identity provider)
    auth_secret_key: str = Field(
        default="dev-jwt-secret-key-change-in-production-32chars!",
        description="JWT verification key (min 32 chars)",
    )
    auth_algorithm: str = Field(default="HS256", description="JWT algorithm")
    auth_access_token_expire_minutes: int = Field(
        default=15, description="Access token expiration (minutes)"
    )

    # Document store
    document_backend: Literal["cassandra", "memory"] = Field(
        default="cassandra", description="Persistence backend for documents"
    )

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    redis_max_connections: int = Field(default=10, description="Max Redis connections")
    redis_socket_timeout: float = Field(default=5.0, description="Redis socket timeout")
    redis_socket_connect_timeout: float = Field(
        default=5.0, description="Redis connect timeout"
    )
    redis_retry_on_timeout: bool = Field(default=True, description="Retry on timeout")
    redis_health_check_interval: int = Field(
        default=30, description="Health check interval"
    )

    # Cassandra
    cassandra_hosts: list[str] = Field(
        default=["localhost"], description="Cassandra hosts"
    )
    cassandra_port: int = Field(default=9042, description="Cassandra port")
    cassandra_keyspace: str = Field(default="tongue", description="Cassandra keyspace")
    cassandra_username: str | None = Field(default=None, description="Cassandra user")
    cassandra_password: str | None = Field(
        default=None, description="Cassandra password"
    )
    cassandra_protocol_version: int = Field(default=4, description="Protocol version")
    cassandra_connect_timeout: float = Field(
        default=10.0, description="Connect timeout"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="DEBUG", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", description="Log format"
    )
    log_include_caller_info: bool = Field(
        default=True, description="Include caller info"
    )
    log_dir: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=10 * 1024 * 1024, description="Max size per log file (10MB default)"
    )
    log_file_backup_count: int = Field(
        default=5, description="Number of backup log files to keep"
    )
    log_requests: bool = Field(
        default=True, description="Log HTTP request start/finish"
    )
    log_exclude_paths: list[str] = Field(
        default=["/health", "/health/live", "/health/ready"],
        description="Paths to exclude from request logging",
    )

    # CORS
    cors_origins: list[str] = Field(default=["*"], description="CORS origins")
    cors_allow_credentials: bool = Field(default=True, description="Allow credentials")
    cors_allow_methods: list[str] = Field(default=["*"], description="Allowed methods")
    cors_allow_headers: list[str] = Field(default=["*"], description="Allowed headers")
    cors_max_age: int = Field(default=600, description="CORS max age")

    # Progress tracking
    progress_default_completion_threshold: int = Field(
        default=80,
        ge=1,
        le=100,
        description="Completion threshold used when a course does not define one",
    )
    progress_session_idle_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Gap between samples that closes a watch session",
    )
    progress_close_session_on_pause: bool = Field(
        default=True, description="Close the watch session when playback pauses"
    )
    progress_duration_policy: Literal["first_seen", "strict"] = Field(
        default="first_seen",
        description="first_seen keeps the first duration; strict also rejects "
        "samples whose duration disagrees with it",
    )
    progress_duration_tolerance_seconds: float = Field(
        default=1.0, ge=0, description="Allowed duration drift under strict policy"
    )

    # Playback sampling
    playback_poll_interval_seconds: float = Field(
        default=1.0, gt=0, description="Polling interval for players without events"
    )
    playback_seek_tolerance_seconds: float = Field(
        default=2.0, gt=0, description="Position jump reported as a seek"
    )

    # Offline durability
    offline_journal_backend: Literal["file", "redis"] = Field(
        default="file", description="Durable journal backend"
    )
    offline_journal_dir: str = Field(
        default="data/offline", description="Directory for file journals"
    )
    offline_retry_max_attempts: int = Field(
        default=5, ge=1, description="Delivery attempts per flush"
    )
    offline_retry_base_delay_seconds: float = Field(
        default=0.5, gt=0, description="First retry delay"
    )
    offline_retry_max_delay_seconds: float = Field(
        default=30.0, gt=0, description="Retry delay cap"
    )
    offline_retry_jitter: float = Field(
        default=0.1, ge=0, le=1, description="Relative jitter applied to delays"
    )
    offline_sync_interval_seconds: float = Field(
        default=5.0, gt=0, description="Background sync interval"
    )

    # Payments
    payment_webhook_secret: str | None = Field(
        default=None, description="Payment webhook HMAC secret (KEEP SECRET!)"
    )

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == "testing"

    @property
    def payments_configured(self) -> bool:
        """Check if the payment webhook secret is configured."""
        return bool(self.payment_webhook_secret)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
