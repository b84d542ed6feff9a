"""Model registry with lazy, single-flight loading.

The registry owns every loaded backend, keyed by model identifier. The first
request for a model starts one load task; concurrent requests for the same
model await that task instead of starting their own. Loads run in a worker
thread and are shielded from their waiters, so a caller that is cancelled or
times out never aborts the load, and a load that finishes late still
populates the registry.

All map updates happen on the event loop between awaits, which makes the
check-then-insert on ``_inflight`` atomic without an explicit lock.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import structlog

from libs.common.logging import log_performance
from libs.common.metrics import SUCCESS, MetricsCollector
from libs.common.tracing import MLTracer, get_ml_tracer
from ..errors import LoadFailedError, UnknownModelError
from .backend import BackendFactory, EmbeddingBackend

logger = structlog.get_logger("semembed.registry")


@dataclass
class ModelHandle:
    """A loaded backend bound to exactly one model identifier."""

    model_id: str
    backend: EmbeddingBackend
    dimension: int
    max_batch_size: int
    loaded_at: float = field(default_factory=time.time)
    load_seconds: float = 0.0


class ModelRegistry:
    """Owns loaded ``ModelHandle`` objects.

    Parameters
    - factory: ``BackendFactory`` that knows the catalog and builds backends
    - metrics: Optional collector for load duration and loaded-model gauge
    - tracer: Span helper for model loads; the service tracer when ``None``
    """

    def __init__(
        self,
        factory: BackendFactory,
        metrics: Optional[MetricsCollector] = None,
        tracer: Optional[MLTracer] = None,
    ):
        self.factory = factory
        self.metrics = metrics
        self.tracer = tracer or get_ml_tracer("semembed")
        self._handles: Dict[str, ModelHandle] = {}
        self._inflight: Dict[str, "asyncio.Task[ModelHandle]"] = {}

    def is_known(self, model_id: str) -> bool:
        return self.factory.is_known(model_id)

    def is_loaded(self, model_id: str) -> bool:
        return model_id in self._handles

    def is_loading(self, model_id: str) -> bool:
        return model_id in self._inflight

    def get(self, model_id: str) -> Optional[ModelHandle]:
        """Return the handle if already loaded; never triggers a load."""
        return self._handles.get(model_id)

    def list_loaded(self) -> Set[str]:
        """Identifiers whose load has completed successfully."""
        return set(self._handles)

    async def resolve(self, model_id: str) -> ModelHandle:
        """Return the handle for ``model_id``, loading it on first use.

        Raises
        - ``UnknownModelError`` when no definition exists (no load attempted)
        - ``LoadFailedError`` when the load fails; not cached, later calls retry
        """
        handle = self._handles.get(model_id)
        if handle is not None:
            return handle

        if not self.factory.is_known(model_id):
            raise UnknownModelError(model_id, self.factory.known_models())

        task = self._start_load(model_id)
        return await asyncio.shield(task)

    def warm(self, model_id: str) -> Optional["asyncio.Task[ModelHandle]"]:
        """Start loading ``model_id`` in the background without waiting.

        Returns the load task, or ``None`` if the model is already loaded.
        """
        if model_id in self._handles:
            return None
        if not self.factory.is_known(model_id):
            raise UnknownModelError(model_id, self.factory.known_models())
        return self._start_load(model_id)

    def _start_load(self, model_id: str) -> "asyncio.Task[ModelHandle]":
        task = self._inflight.get(model_id)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._load(model_id))
            task.add_done_callback(self._retrieve_outcome)
            self._inflight[model_id] = task
            logger.info("Model load started", model_name=model_id)
        else:
            logger.debug("Joining in-flight model load", model_name=model_id)
        return task

    async def _load(self, model_id: str) -> ModelHandle:
        start_time = time.time()
        try:
            with self.tracer.trace_model_load(model_id):
                backend = await asyncio.to_thread(self.factory.load, model_id)
        except Exception as e:
            duration = time.time() - start_time
            self._record_load(model_id, LoadFailedError.kind, duration)
            logger.error("Failed to load model", model_name=model_id, error=str(e))
            raise LoadFailedError(model_id, str(e)) from e
        finally:
            # Cleared on every exit path so a failed or cancelled load can be retried.
            self._inflight.pop(model_id, None)

        duration = time.time() - start_time
        handle = ModelHandle(
            model_id=model_id,
            backend=backend,
            dimension=backend.dimension,
            max_batch_size=max(int(backend.max_batch_size), 1),
            load_seconds=duration,
        )
        self._handles[model_id] = handle
        self._record_load(model_id, SUCCESS, duration)
        log_performance("model_load", duration * 1000, model_name=model_id, dimension=handle.dimension)
        return handle

    def _record_load(self, model_id: str, outcome: str, duration: float) -> None:
        if self.metrics is None:
            return
        self.metrics.record_model_load(model_id, outcome, duration)
        self.metrics.set_models_loaded(len(self._handles))

    @staticmethod
    def _retrieve_outcome(task: "asyncio.Task[ModelHandle]") -> None:
        # Waiters may all have given up; mark the exception as retrieved.
        if not task.cancelled():
            task.exception()

    def describe(self, model_id: str) -> Optional[Dict[str, Any]]:
        """Catalog and load information for one model, ``None`` if unknown."""
        spec = self.factory.catalog.get(model_id)
        if spec is None:
            return None

        info: Dict[str, Any] = {
            "name": model_id,
            "dimension": spec.dimension,
            "max_length": spec.max_seq_length,
            "loaded": model_id in self._handles,
            "loading": model_id in self._inflight,
        }
        handle = self._handles.get(model_id)
        if handle is not None:
            info.update({
                "dimension": handle.dimension,
                "max_batch_size": handle.max_batch_size,
                "device": handle.backend.device,
                "loaded_at": handle.loaded_at,
                "load_seconds": handle.load_seconds,
            })
        return info

    def describe_all(self) -> List[Dict[str, Any]]:
        return [self.describe(name) for name in self.factory.known_models()]

    async def close(self) -> None:
        """Cancel pending loads and release every loaded backend."""
        pending = list(self._inflight.values())
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._inflight.clear()

        for handle in self._handles.values():
            try:
                handle.backend.close()
            except Exception as e:
                logger.warning("Failed to close backend", model_name=handle.model_id, error=str(e))
        self._handles.clear()
