"""Configuration models for the table synchronization job."""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TableSyncConfig(BaseModel):
    """Configuration for one source/destination table pair."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(default=..., min_length=1, description="Source table name")
    primary_key: str = Field(default=..., min_length=1, description="Primary key column")
    create_date_column: str = Field(
        default=..., min_length=1, description="Column holding the row creation timestamp"
    )
    modify_date_column: str = Field(
        default=..., min_length=1, description="Column holding the last modification timestamp"
    )
    destination_name: str | None = Field(
        default=None, description="Destination table name (defaults to the source name)"
    )
    source_schema: str | None = Field(default=None, description="Schema of the source table")
    destination_schema: str | None = Field(
        default=None, description="Schema of the destination table"
    )

    @property
    def destination_table(self) -> str:
        """Name of the table rows are merged into."""
        return self.destination_name or self.name


class RetrySettings(BaseModel):
    """Exponential backoff parameters for one table's synchronization attempt."""

    max_attempts: int = Field(default=3, ge=1, description="Attempts before giving up")
    base_delay_seconds: float = Field(default=2.0, ge=0, description="Starting backoff")
    max_delay_seconds: float = Field(default=30.0, ge=0, description="Backoff cap")

    @model_validator(mode="after")
    def check_delay_bounds(self) -> "RetrySettings":
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError(
                f"max_delay_seconds ({self.max_delay_seconds}) must be >= "
                f"base_delay_seconds ({self.base_delay_seconds})"
            )
        return self


class SyncSettings(BaseModel):
    """Process-wide synchronization settings."""

    batch_size: int = Field(default=1000, ge=1, description="Maximum rows per batch")
    command_timeout_seconds: int = Field(
        default=120, ge=1, description="Timeout applied to database commands"
    )
    dry_run: bool = Field(default=False, description="Compute changes without applying them")
    fallback_window_days: int = Field(
        default=30, ge=1, description="Lookback used when a table has no watermark yet"
    )
    max_batches_per_run: int = Field(
        default=1, ge=1, description="Batches processed per table in one cycle"
    )
    stale_run_timeout_seconds: int = Field(
        default=6 * 60 * 60,
        ge=1,
        description="Age after which a Running entry is treated as abandoned",
    )
    retry: RetrySettings = Field(default_factory=RetrySettings)
    tables: list[TableSyncConfig] = Field(default_factory=list)

    @field_validator("tables")
    @classmethod
    def check_unique_table_names(cls, tables: list[TableSyncConfig]) -> list[TableSyncConfig]:
        seen: set[str] = set()
        for table in tables:
            if table.name in seen:
                raise ValueError(f"Duplicate table name in configuration: {table.name}")
            seen.add(table.name)
        return tables


class DatabaseConfig(BaseModel):
    """Connection settings for the source, destination and run log stores."""

    source_url: str = Field(default=..., min_length=1, description="SQLAlchemy URL of the source")
    destination_url: str = Field(
        default=..., min_length=1, description="SQLAlchemy URL of the destination"
    )
    run_log_url: str | None = Field(
        default=None, description="SQLAlchemy URL of the run log (defaults to destination)"
    )
    linked_server_name: str = Field(
        default="", description="Label of the cross-database link used to reach the source"
    )
    run_log_table: str = Field(default="sync_run_log", min_length=1)

    @property
    def effective_run_log_url(self) -> str:
        return self.run_log_url or self.destination_url


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

    This class uses pydantic-settings to load configuration from environment
    variables with the APP_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    database: DatabaseConfig
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
