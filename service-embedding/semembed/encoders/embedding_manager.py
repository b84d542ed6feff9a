"""Embedding manager: serves one embedding request end to end.

Validates and normalizes the payload, resolves the model through the
registry (loading it on first use), runs chunked inference through the batch
executor, formats the OpenAI-compatible response, and records exactly one
``MetricEvent`` per request whatever the outcome.
"""

import asyncio
import time
from typing import Any, Dict, List, Mapping, Optional

import structlog

from libs.common.config import EmbeddingConfig
from libs.common.metrics import SUCCESS, MetricEvent, MetricsCollector, get_metrics_collector
from libs.common.tracing import get_ml_tracer
from ..batching.executor import BatchExecutor
from ..errors import EmbeddingServiceError, InferenceTimeoutError, UnknownModelError
from ..pipelines.formatter import EmbeddingResponse, count_usage, format_response
from ..pipelines.normalizer import EmbeddingRequest, normalize
from .backend import BackendFactory, SentenceTransformerFactory
from .catalog import ModelCatalog
from .registry import ModelRegistry

logger = structlog.get_logger("semembed.embedding_manager")

UNKNOWN_MODEL_LABEL = "unknown"


def create_backend_factory(config: EmbeddingConfig) -> BackendFactory:
    """Build the production sentence-transformers factory from config."""
    catalog = ModelCatalog.default(config.extra_model_entries())
    return SentenceTransformerFactory(
        catalog,
        max_batch_size=config.semembed_max_batch_size,
        device_preference=config.semembed_device,
        normalize_embeddings=config.semembed_normalize_embeddings,
        cache_dir=config.semembed_cache_dir,
    )


class EmbeddingManager:
    """Owns the registry and executor and serves embedding requests.

    Notes
    - The default model must be in the catalog; ``initialize`` fails otherwise
    - With preload enabled the default model loads in the background, so
      startup is not blocked and early requests simply join that load
    - ``request_timeout`` bounds how long a caller waits, not the work itself
    """

    def __init__(
        self,
        config: EmbeddingConfig,
        factory: Optional[BackendFactory] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        """Create an embedding manager.

        Parameters
        - config: ``EmbeddingConfig`` with default model and runtime knobs
        - factory: Backend factory; sentence-transformers when ``None``
        - metrics: Collector; the process-wide one when ``None``
        """
        self.config = config
        self.default_model = config.semembed_model
        self.request_timeout = config.semembed_request_timeout_seconds
        self.metrics = metrics or get_metrics_collector("semembed")
        self.factory = factory or create_backend_factory(config)
        self.tracer = get_ml_tracer("semembed")
        self.registry = ModelRegistry(self.factory, self.metrics, self.tracer)
        self.executor = BatchExecutor(config.semembed_max_concurrency_per_model)

    async def initialize(self) -> None:
        """Check the default model and optionally start warming it."""
        if not self.registry.is_known(self.default_model):
            raise UnknownModelError(self.default_model, self.factory.known_models())

        if self.config.semembed_preload_default_model:
            self.registry.warm(self.default_model)
            logger.info("Default model warmup scheduled", model_name=self.default_model)

        logger.info(
            "Embedding manager initialized",
            default_model=self.default_model,
            known_models=self.factory.known_models(),
            max_concurrency=self.executor.max_concurrency,
            request_timeout=self.request_timeout
        )

    async def create_embeddings(self, raw: Mapping[str, Any]) -> EmbeddingResponse:
        """Serve one ``POST /v1/embeddings`` body.

        Raises an ``EmbeddingServiceError`` subclass on any failure.
        """
        start_time = time.time()
        model_label = self._metric_label(raw.get("model") if isinstance(raw, Mapping) else None)
        outcome = "cancelled"
        token_count = 0
        input_count = 0

        try:
            request = normalize(raw, self.default_model)
            input_count = len(request.inputs)

            with self.tracer.trace_embedding_generation(request.model, input_count):
                response = await self._with_timeout(self._generate(request))

            token_count = response.usage.prompt_tokens
            outcome = SUCCESS

            logger.info(
                "Embeddings generated",
                model_name=response.model,
                count=len(response.data),
                tokens=token_count,
                latency_ms=(time.time() - start_time) * 1000
            )
            return response

        except EmbeddingServiceError as e:
            outcome = e.kind
            log = logger.warning if e.status_code < 500 else logger.error
            log("Embedding request failed", model_name=model_label, kind=e.kind, error=e.message)
            raise
        except Exception as e:
            outcome = "internal_error"
            logger.error("Unexpected embedding failure", model_name=model_label, error=str(e))
            raise
        finally:
            self.metrics.record(MetricEvent(
                model=model_label,
                outcome=outcome,
                latency=time.time() - start_time,
                token_count=token_count,
                input_count=input_count,
            ))

    async def _generate(self, request: EmbeddingRequest) -> EmbeddingResponse:
        handle = await self.registry.resolve(request.model)
        result = await self.executor.embed(handle, request.inputs)
        usage = await asyncio.to_thread(count_usage, handle, request.inputs)
        return format_response(result, usage, handle.model_id)

    async def _with_timeout(self, coro):
        if self.request_timeout is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            raise InferenceTimeoutError(self.request_timeout) from e

    def _metric_label(self, requested: Any) -> str:
        if requested is None:
            return self.default_model
        if isinstance(requested, str) and self.registry.is_known(requested):
            return requested
        return UNKNOWN_MODEL_LABEL

    def health(self) -> Dict[str, Any]:
        """Readiness is advisory: requests are served before the default loads."""
        return {
            "ready": self.registry.is_loaded(self.default_model),
            "loaded_models": self.registry.list_loaded(),
            "default_model": self.default_model,
        }

    async def health_check(self) -> bool:
        """True once the default model has completed its first load."""
        return self.registry.is_loaded(self.default_model)

    async def list_models(self) -> List[str]:
        """Loaded model identifiers, sorted."""
        return sorted(self.registry.list_loaded())

    async def get_model_info(self, model_name: str) -> Optional[Dict[str, Any]]:
        """Information about a known model, ``None`` if not in the catalog."""
        return self.registry.describe(model_name)

    def describe_runtime(self) -> Dict[str, Any]:
        return {
            "default_model": self.default_model,
            "request_timeout_seconds": self.request_timeout,
            "executor": self.executor.stats(),
            "models": self.registry.describe_all(),
        }

    async def cleanup(self) -> None:
        """Cancel warmup and release loaded models."""
        try:
            await self.registry.close()
            logger.info("Embedding manager cleanup completed")
        except Exception as e:
            logger.error("Embedding manager cleanup failed", error=str(e))
