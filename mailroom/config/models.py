"""Configuration schema models using Pydantic."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .duration import DurationParseError, parse_duration, validate_duration_range


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


def _validate_interval(value: str, min_seconds: int, max_seconds: int, label: str) -> str:
    try:
        seconds = parse_duration(value)
        validate_duration_range(
            seconds, min_seconds=min_seconds, max_seconds=max_seconds, label=label
        )
    except DurationParseError as e:
        raise ValueError(str(e)) from e
    return value


class SchedulerConfig(BaseModel):
    """Polling settings for deferred notifications."""

    enabled: bool = Field(True, description="Poll scheduled notifications in daemon mode")
    poll_interval: str = Field("5m", description="How often due notifications are processed")
    poll_batch_limit: int = Field(
        100, ge=1, le=1000, description="Maximum due rows processed per poll"
    )

    poll_interval_seconds: Optional[int] = None

    @field_validator("poll_interval")
    @classmethod
    def validate_poll_interval(cls, v: str) -> str:
        return _validate_interval(v, 60, 86400, "Scheduler poll interval")

    @model_validator(mode="after")
    def compute_interval(self):
        self.poll_interval_seconds = parse_duration(self.poll_interval)
        return self


class ReengageConfig(BaseModel):
    """Inactivity win-back policy."""

    enabled: bool = Field(True, description="Run the re-engagement campaign in daemon mode")
    run_interval: str = Field("1d", description="How often inactive users are evaluated")
    inactivity_days: int = Field(
        7, ge=1, le=365, description="Days since last activity before a user is a candidate"
    )
    cooldown_days: int = Field(
        21, ge=1, le=365, description="Minimum days between two re-engagement emails"
    )
    activity_event: str = Field(
        "login", min_length=1, description="Activity event that counts as engagement"
    )

    run_interval_seconds: Optional[int] = None

    @field_validator("run_interval")
    @classmethod
    def validate_run_interval(cls, v: str) -> str:
        return _validate_interval(v, 300, 7 * 86400, "Re-engagement run interval")

    @field_validator("activity_event")
    @classmethod
    def strip_activity_event(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("activity_event cannot be empty")
        return stripped

    @model_validator(mode="after")
    def compute_interval(self):
        self.run_interval_seconds = parse_duration(self.run_interval)
        return self


class BulkConfig(BaseModel):
    """Defaults and retry policy for bulk announcements."""

    default_batch_size: int = Field(50, ge=1, le=100, description="Recipients per batch")
    default_delay_ms: int = Field(
        1000, ge=0, le=10000, description="Pause between batches in milliseconds"
    )
    max_attempts: int = Field(
        3, ge=1, le=10, description="Transport attempts per recipient (initial + retries)"
    )
    retry_base_delay_ms: int = Field(
        1000, ge=0, le=60000, description="Backoff unit; attempt k waits k times this"
    )


class TransportConfig(BaseModel):
    """Outbound email transport settings."""

    use_tls: bool = Field(True, description="Use STARTTLS (ignored for implicit TLS on 465)")
    timeout_seconds: int = Field(30, ge=5, le=300, description="SMTP socket timeout")
    min_interval_ms: int = Field(
        500, ge=0, le=10000, description="Minimum spacing between transport calls"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for the notification service."""

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    reengage: ReengageConfig = Field(default_factory=ReengageConfig)
    bulk: BulkConfig = Field(default_factory=BulkConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
