"""Configuration models for feedsync."""

from pydantic import BaseModel, Field, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

from feedsync.models.descriptor import ModelDescriptor


class FeedConfig(BaseModel):
    """Configuration for the remote feed."""

    base_url: HttpUrl = Field(default=..., description="Feed API root, including any division path")
    auth_token: str = Field(default=..., description="Bearer token for the feed API")
    timeout_seconds: float = Field(
        default=30.0, gt=0.0, le=600.0, description="Per-request timeout in seconds"
    )
    max_retries: int = Field(
        default=3, ge=0, le=10, description="Retries for transient transport failures"
    )


class TargetConfig(BaseModel):
    """Configuration for the local target store."""

    database_url: str = Field(
        default="sqlite:///feedsync.db", description="SQLAlchemy database URL"
    )


class SyncConfig(BaseModel):
    """Configuration for synchronization runs."""

    fields: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Fields written on upsert, per model name (missing or empty = all)",
    )
    concurrent_models: bool = Field(
        default=False, description="Synchronize different models concurrently"
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        description="If True, output JSON logs. If False, use console format.",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional path to log file. If None, logs only to stdout.",
    )


class AppConfig(BaseSettings):
    """Main application configuration.

    Values come from the YAML file handled by ConfigLoader. Environment
    variables with the APP_ prefix supply sections the file leaves out,
    e.g. APP_LOGGING__LOG_LEVEL=DEBUG.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    feed: FeedConfig
    target: TargetConfig = Field(default_factory=TargetConfig)
    models: list[ModelDescriptor] = Field(default_factory=list)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
