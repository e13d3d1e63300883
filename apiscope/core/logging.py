"""Structured logging for APIScope, built on structlog.

Captures log the traffic they see, so two processors keep log lines safe
and readable:

- ``censor_sensitive_data`` masks credential-bearing keys (``Authorization``,
  ``Cookie``, ``x-api-key``, ...) at any depth, including captured header dicts;
- ``truncate_long_values`` shortens response bodies and long URLs.

Production renders JSON lines; every other environment renders to the console.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from .config import Environment, get_settings

CENSORED = "***CENSORED***"

# Substrings of keys whose values are never logged
SENSITIVE_KEYS = (
    "authorization",
    "cookie",
    "api_key",
    "api-key",
    "apikey",
    "auth-token",
    "token",
    "secret",
    "password",
    "bearer",
)

MAX_LOGGED_VALUE_LENGTH = 300

# Third-party loggers that flood DEBUG output during a capture
QUIET_LOGGERS = ("asyncio", "playwright", "uvicorn.access")


def _is_sensitive(key: Any) -> bool:
    lowered = str(key).lower()
    return any(marker in lowered for marker in SENSITIVE_KEYS)


def _censor(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: CENSORED if _is_sensitive(k) else _censor(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_censor(item) for item in value]
    return value


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application name and environment to every log entry."""
    settings = get_settings()
    event_dict.setdefault("app", settings.APP_NAME)
    event_dict.setdefault("environment", settings.ENVIRONMENT.value)
    return event_dict


def censor_sensitive_data(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credential values anywhere in the event.

    Args:
        logger: The logger instance
        method_name: The name of the method being called
        event_dict: The event dictionary to modify

    Returns:
        Event dictionary with sensitive values replaced by ``***CENSORED***``
    """
    return {
        key: CENSORED if _is_sensitive(key) and key != "event" else _censor(value)
        for key, value in event_dict.items()
    }


def truncate_long_values(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Shorten top-level string values longer than MAX_LOGGED_VALUE_LENGTH."""
    for key, value in event_dict.items():
        if key != "event" and isinstance(value, str) and len(value) > MAX_LOGGED_VALUE_LENGTH:
            event_dict[key] = f"{value[:MAX_LOGGED_VALUE_LENGTH]}... ({len(value)} chars)"
    return event_dict


def get_log_processors(environment: Environment) -> list[Processor]:
    """Processor chain for an environment, ending in its renderer."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_app_context,
        censor_sensitive_data,
        truncate_long_values,
        structlog.processors.format_exc_info,
    ]

    if environment == Environment.PRODUCTION:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    return processors


def setup_logging(level: str | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Overrides ``LOG_LEVEL`` (the CLI passes DEBUG for ``--verbose``)
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=get_log_processors(settings.ENVIRONMENT),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class LogContext:
    """Bind context variables for the duration of a block.

    Example:
        with LogContext(session_id="abc-123", url="https://example.com"):
            logger.info("capture_started")
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> "LogContext":
        structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        # Only this block's keys; an enclosing request id stays bound
        structlog.contextvars.unbind_contextvars(*self.context)
