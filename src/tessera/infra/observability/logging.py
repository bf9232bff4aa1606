"""Structured logging configuration using structlog.

Gate modules log through the standard library (``logging.getLogger`` with
``extra={...}``). ``configure_logging`` routes those records through the
same structlog processor chain as native structlog loggers, so every line
carries the bound request context (``request_id``, ``principal_id``,
``tenant_id``, ``actor_id``) and sensitive values are redacted.

- JSON output for production environments
- Console output with colors for development

Usage:
    # During application startup
    from tessera.infra.observability.logging import configure_logging
    configure_logging()

    # In application code
    from tessera.infra.observability import get_logger
    logger = get_logger(__name__)
    logger.info("operation_started", principal_id="123")
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from collections.abc import MutableMapping

# Type alias for structlog processor
Processor = structlog.types.Processor

# Sensitive field names for redaction
SENSITIVE_FIELDS: frozenset[str] = frozenset(
    {
        "password",
        "token",
        "authorization",
        "secret",
        "shared_secret",
        "bearer",
        "credential",
        "raw_credential",
        "jwt",
    }
)

REDACTED_VALUE: str = "***REDACTED***"

_VALID_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class LoggingSettings(BaseSettings):
    """Logging configuration settings from environment variables.

    - LOG_LEVEL: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - ENVIRONMENT: Environment name (development, staging, production, test)

    Example:
        >>> LoggingSettings(environment="production").use_json_logs
        True
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
        populate_by_name=True,
    )

    log_level: str = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Minimum log level to output",
    )
    environment: str = Field(
        default="development",
        alias="ENVIRONMENT",
        description="Environment name for format selection",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> str:
        return v.upper() if isinstance(v, str) else str(v)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        if v not in _VALID_LEVELS:
            msg = f"log_level must be one of {sorted(_VALID_LEVELS)}"
            raise ValueError(msg)
        return v

    @property
    def use_json_logs(self) -> bool:
        """True for the production environment."""
        return self.environment == "production"

    @property
    def log_level_int(self) -> int:
        return getattr(logging, self.log_level, logging.INFO)


class SensitiveDataProcessor:
    """Structlog processor to redact sensitive fields from log context.

    Redacts values for fields matching:
    1. Exact field names in SENSITIVE_FIELDS (case-insensitive)
    2. Field names containing "password", "token" or "secret"

    Example:
        >>> processor = SensitiveDataProcessor()
        >>> processor(None, "info", {"event": "x", "shared_secret": "s"})["shared_secret"]
        '***REDACTED***'
    """

    def __call__(
        self,
        logger: Any,
        method_name: str,
        event_dict: MutableMapping[str, Any],
    ) -> MutableMapping[str, Any]:
        for key in list(event_dict.keys()):
            if self._is_sensitive(key):
                event_dict[key] = REDACTED_VALUE
        return event_dict

    def _is_sensitive(self, key: str) -> bool:
        key_lower = key.lower()
        if key_lower in SENSITIVE_FIELDS:
            return True
        return any(part in key_lower for part in ("password", "token", "secret"))


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached LoggingSettings instance.

    Clear cache with ``get_logging_settings.cache_clear()`` for testing.
    """
    return LoggingSettings()


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        SensitiveDataProcessor(),
    ]


def _renderer(settings: LoggingSettings) -> Processor:
    if settings.use_json_logs:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def configure_logging(settings: LoggingSettings | None = None) -> None:
    """Configure structlog and bridge standard library logging into it.

    Configures:
    - Context variable merging (request and session context)
    - Log level filtering
    - ISO 8601 timestamps (UTC)
    - Sensitive data redaction
    - ``extra={...}`` fields of stdlib records as structured keys
    - Environment-aware rendering (JSON for production, console otherwise)

    Should be called once during application startup (in lifespan handler).

    Args:
        settings: Optional LoggingSettings instance. If not provided,
            settings are loaded from environment variables.
    """
    if settings is None:
        settings = get_logging_settings()

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.processors.format_exc_info,
            _renderer(settings),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(settings.log_level_int),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.ExtraAdder(),
            *_shared_processors(),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            _renderer(settings),
        ],
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level_int)


def get_logger(name: str | None = None) -> Any:
    """Get a structlog logger bound to the given name.

    Args:
        name: Logger name (typically __name__ from calling module).
            If None, returns unbound logger.
    """
    logger = structlog.get_logger()
    if name is not None:
        logger = logger.bind(logger=name)
    return logger
