"""Configuration management for the semembed service.

This module centralizes environment-driven configuration. It builds on
``pydantic_settings.BaseSettings`` so configuration can be provided via
environment variables, ``.env`` files, or defaults.

Highlights
- Strongly-typed settings with sensible defaults
- One place to discover the environment variables the service reads
- Field names map one-to-one onto upper-case ``SEMEMBED_*`` variables

Usage
- Inject the config in your service entrypoint: ``config = EmbeddingConfig()``
- Or select dynamically: ``config = get_config("embedding")``
"""

from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration shared by every process in the repository.

    Parameters are read from the process environment by field name
    (case-insensitive), e.g. ``semembed_log_level`` <- ``SEMEMBED_LOG_LEVEL``.

    Notes
    - Add new shared settings here so downstream configs inherit them.
    - Prefer declaring a field over reading ``os.environ`` directly.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    semembed_env: str = Field(default="local")

    # Observability
    semembed_tracing_enabled: bool = Field(default=False)
    semembed_otel_exporter: str = Field(default="http://localhost:4317")

    # Logging
    semembed_log_level: str = Field(default="INFO")
    semembed_log_format: str = Field(default="json")

    @field_validator("semembed_log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unsupported log level: {value}")
        return value

    @field_validator("semembed_log_format")
    @classmethod
    def _known_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "console"):
            raise ValueError(f"unsupported log format: {value}")
        return value


class EmbeddingConfig(BaseConfig):
    """Configuration for the embedding service.

    Includes default model selection, the listen address, batching and
    concurrency knobs for inference, and the request-level timeout.
    """

    semembed_model: str = Field(default="BAAI/bge-small-en-v1.5")
    semembed_host: str = Field(default="0.0.0.0")
    semembed_port: int = Field(default=8081, ge=1, le=65535)

    # Performance
    semembed_device: str = Field(default="auto")
    semembed_max_batch_size: int = Field(default=256, ge=1)
    semembed_max_concurrency_per_model: int = Field(default=1, ge=1)
    semembed_request_timeout_seconds: Optional[float] = Field(default=None, gt=0)
    semembed_normalize_embeddings: bool = Field(default=True)

    # Model lifecycle
    semembed_preload_default_model: bool = Field(default=True)
    semembed_cache_dir: Optional[str] = Field(default=None)
    semembed_extra_models: str = Field(default="")

    @field_validator("semembed_model")
    @classmethod
    def _non_empty_model(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("default model identifier must not be empty")
        return value.strip()

    @field_validator("semembed_device")
    @classmethod
    def _known_device(cls, value: str) -> str:
        value = value.lower()
        if value not in ("auto", "cpu", "gpu"):
            raise ValueError(f"unsupported device preference: {value}")
        return value

    def extra_model_entries(self) -> List[Dict[str, object]]:
        """Parse ``SEMEMBED_EXTRA_MODELS`` into catalog entries.

        The value is a comma-separated list of ``name:dimension`` pairs, e.g.
        ``intfloat/e5-small-v2:384,thenlper/gte-base:768``. The dimension is
        split off the right so names containing ``:`` still work.
        """
        entries: List[Dict[str, object]] = []
        for raw in self.semembed_extra_models.split(","):
            raw = raw.strip()
            if not raw:
                continue
            name, sep, dimension = raw.rpartition(":")
            if not sep or not name or not dimension.isdigit():
                raise ValueError(f"invalid extra model entry: {raw!r} (expected name:dimension)")
            entries.append({"name": name, "dimension": int(dimension)})
        return entries


def get_config(service_name: str) -> BaseConfig:
    """Get configuration for a specific service.

    Parameters
    - service_name: ``embedding`` for the service, anything else for the
      shared base settings.
    """
    config_map = {
        "embedding": EmbeddingConfig,
    }

    # Default to ``BaseConfig`` to avoid surprising crashes for unknown names.
    config_class = config_map.get(service_name, BaseConfig)
    return config_class()
