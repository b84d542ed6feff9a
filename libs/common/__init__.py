"""Common utilities shared across semembed processes.

Includes:
- ``config``: Pydantic-based configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics collector and the ``MetricEvent`` record.
- ``tracing``: optional OpenTelemetry setup and span helpers.

Import pattern:
- from libs.common.config import EmbeddingConfig
- from libs.common.logging import configure_logging
"""
