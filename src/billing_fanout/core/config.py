# src/billing_fanout/core/config.py
"""
Configuration schema and loading for the fan-out pipeline.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction and supplied once at
startup; there is no dynamic reconfiguration.
"""

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

MIB = 1024 * 1024


class RetrySettings(BaseModel):
    """Retry behavior configuration."""

    model_config = {"frozen": True}

    max_attempts: int = Field(default=3, gt=0, description="Total attempts, including the first")
    initial_delay_seconds: float = Field(default=1.0, gt=0, description="Initial backoff delay")
    max_delay_seconds: float = Field(default=60.0, gt=0, description="Maximum backoff delay")
    exponential_base: float = Field(default=2.0, gt=1.0, description="Exponential backoff base")
    jitter_seconds: float = Field(default=1.0, ge=0, description="Random jitter added to each delay")


class EventBusSettings(BaseModel):
    """Bus identifiers for the inbound rule and the outbound processed event."""

    model_config = {"frozen": True}

    name: str = Field(default="AnyCompany", description="Custom event bus name")
    source: str = Field(default="com.anycompany", description="Event source for both directions")
    initiated_detail_type: str = Field(default="transaction-initiated")
    processed_detail_type: str = Field(default="transaction-processed")


class CatalogSettings(BaseModel):
    """Catalog table the archiver validates records against."""

    model_config = {"frozen": True}

    database: str = Field(default="app2025")
    table: str = Field(default="transactions")
    amount_type: str = Field(
        default="decimal(38,2)",
        description="Column type of total_amount: decimal(p,s), double or string",
    )

    @field_validator("amount_type")
    @classmethod
    def validate_amount_type(cls, v: str) -> str:
        """Reject column types the catalog cannot build at config time."""
        from billing_fanout.core.catalog import Column

        Column("total_amount", v)
        return v


class ArchiverSettings(BaseModel):
    """Buffering policy of the batch archiver.

    Example YAML:
        archiver:
          table_name: transactions
          flush_interval_seconds: 60
          flush_size_bytes: 67108864
          backup_flush_size_bytes: 1048576
    """

    model_config = {"frozen": True}

    table_name: str = Field(default="transactions", description="Leading path segment of every partition")
    flush_interval_seconds: float = Field(default=60.0, gt=0)
    flush_size_bytes: int = Field(default=64 * MIB, gt=0)
    backup_flush_size_bytes: int = Field(default=1 * MIB, gt=0)
    max_pending_records: int = Field(default=100_000, gt=0, description="Queue capacity before Backpressure")
    enqueue_timeout_seconds: float = Field(default=0.5, ge=0, description="Longest an append may wait for the batch lock")
    retry: RetrySettings = Field(default_factory=RetrySettings)


class DestinationSettings(BaseModel):
    """One object-store destination."""

    model_config = {"frozen": True}

    kind: Literal["filesystem", "memory"] = "filesystem"
    path: Path | None = None

    @model_validator(mode="after")
    def validate_path(self) -> "DestinationSettings":
        if self.kind == "filesystem" and self.path is None:
            raise ValueError("path is required for filesystem destinations")
        return self


class DestinationsSettings(BaseModel):
    """The three logical archiver outputs. error defaults to primary."""

    model_config = {"frozen": True}

    primary: DestinationSettings = Field(default_factory=lambda: DestinationSettings(kind="memory"))
    backup: DestinationSettings = Field(default_factory=lambda: DestinationSettings(kind="memory"))
    error: DestinationSettings | None = None


class StoreSettings(BaseModel):
    """Key-value store used by the WriteRecord step."""

    model_config = {"frozen": True}

    kind: Literal["memory", "sql"] = "memory"
    url: str | None = None
    table: str = "transactions"

    @model_validator(mode="after")
    def validate_url(self) -> "StoreSettings":
        if self.kind == "sql" and not self.url:
            raise ValueError("url is required for sql stores")
        return self


class PublisherSettings(BaseModel):
    """Publisher adapter used by the PublishProcessed step."""

    model_config = {"frozen": True}

    kind: Literal["memory", "http"] = "memory"
    endpoint: str | None = None
    timeout_seconds: float = Field(default=10.0, gt=0)

    @model_validator(mode="after")
    def validate_endpoint(self) -> "PublisherSettings":
        if self.kind == "http" and not self.endpoint:
            raise ValueError("endpoint is required for http publishers")
        return self


class WorkflowSettings(BaseModel):
    """Workflow executor configuration."""

    model_config = {"frozen": True}

    state_machine_name: str = Field(default="TransactionProcess")
    max_workers: int = Field(default=8, gt=0, description="Concurrent executions")
    audit_window: int = Field(default=1000, gt=0, description="Completed executions retained for inspection")
    store: StoreSettings = Field(default_factory=StoreSettings)
    publisher: PublisherSettings = Field(default_factory=PublisherSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)


class LoggingSettings(BaseModel):
    model_config = {"frozen": True}

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_output: bool = False


class FanoutSettings(BaseModel):
    """Top-level configuration. Every section has defaults."""

    model_config = {"frozen": True}

    event_bus: EventBusSettings = Field(default_factory=EventBusSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    archiver: ArchiverSettings = Field(default_factory=ArchiverSettings)
    destinations: DestinationsSettings = Field(default_factory=DestinationsSettings)
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode="after")
    def validate_backup_threshold(self) -> "FanoutSettings":
        """The backup stream flushes on a smaller (or equal) size threshold."""
        if self.archiver.backup_flush_size_bytes > self.archiver.flush_size_bytes:
            raise ValueError(
                f"archiver.backup_flush_size_bytes ({self.archiver.backup_flush_size_bytes}) "
                f"exceeds archiver.flush_size_bytes ({self.archiver.flush_size_bytes})"
            )
        return self


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values."""

    def replacer(match: re.Match[str]) -> str:
        env_value = os.environ.get(match.group(1))
        if env_value is not None:
            return env_value
        default = match.group(2)
        if default is not None:
            return default
        # Unset and no default - keep original so validation reports it
        return match.group(0)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _ENV_VAR_PATTERN.sub(replacer, value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lower_keys(v) for v in value]
    return value


def load_settings(config_path: Path) -> FanoutSettings:
    """Load settings from YAML file with environment variable overrides.

    Precedence:
    1. Environment variables (BILLING_FANOUT_*) - highest priority
    2. Config file
    3. Defaults from Pydantic schema - lowest priority

    Nested keys use double underscores: BILLING_FANOUT_ARCHIVER__FLUSH_SIZE_BYTES.

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="BILLING_FANOUT",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; filter out its internal settings
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _lower_keys(raw_config)
    raw_config = _expand_env_vars(raw_config)

    return FanoutSettings(**raw_config)


def resolve_config(settings: FanoutSettings) -> dict[str, Any]:
    """Settings as a JSON-ready dict (explicit values plus defaults)."""
    return settings.model_dump(mode="json")
