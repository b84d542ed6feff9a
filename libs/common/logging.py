"""Structured logging for semembed.

All log output goes through ``structlog`` on top of stdlib ``logging`` so
records from uvicorn, sentence-transformers and our own modules share one
stream and one format.

Typical usage
- Call ``configure_logging(service_name, log_level, log_format)`` once, from
  the application lifespan
- Acquire loggers with ``structlog.get_logger("semembed.<module>")``
"""

import logging
import sys
from typing import Any, Dict

import structlog
from structlog.stdlib import LoggerFactory, add_logger_name

LOG_FORMATS = ("json", "console")

# Third-party loggers that are chatty at INFO during model downloads.
QUIET_LOGGERS: Dict[str, int] = {
    "sentence_transformers": logging.WARNING,
    "transformers": logging.WARNING,
    "huggingface_hub": logging.WARNING,
    "urllib3": logging.WARNING,
    "httpx": logging.WARNING,
}


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    log_format: str = "json",
) -> None:
    """Configure structured logging for the process.

    Parameters
    - service_name: Bound as ``service`` on every event
    - log_level: Stdlib level name, case-insensitive
    - log_format: ``json`` for shipping to a collector, ``console`` for a
      terminal
    """
    if log_format not in LOG_FORMATS:
        raise ValueError(f"unsupported log format: {log_format!r}")
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"unsupported log level: {log_level!r}")

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger().setLevel(level)
    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, quiet_level))

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_logger_name,
        structlog.processors.StackInfoRenderer(),
    ]
    if log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name)


def log_performance(operation: str, duration_ms: float, **kwargs: Any) -> None:
    """Emit a timing event on the ``performance`` logger.

    ``operation`` is a stable identifier (``model_load``, ``inference``);
    ``kwargs`` carry dimensions such as the model name.
    """
    structlog.get_logger("performance").info(
        "Operation timed",
        operation=operation,
        duration_ms=round(duration_ms, 3),
        **kwargs
    )
