"""Batch executor: chunked, concurrency-limited inference.

Splits a request's inputs into chunks no larger than the handle's
``max_batch_size`` and runs them through the backend in a worker thread,
reassembling vectors in input order.

Concurrency policy
- Each model gets an ``asyncio.Semaphore`` with ``max_concurrency`` slots.
  With the default of 1 every backend call for a model is serialized; a
  higher limit allows that many calls in parallel and should only be used
  with backends known to be re-entrant.
- A slot is held for one chunk at a time, so a large request does not starve
  smaller ones queued behind it. Each request collects only its own chunk
  outputs, so concurrent requests never see each other's vectors.
- The work runs in a shielded task. If the caller goes away (timeout or
  client disconnect), the chunk already handed to the backend finishes and
  its slot is released normally; no further chunks of that request start.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, Iterator, List, Sequence, Tuple

import structlog

from ..encoders.registry import ModelHandle
from ..errors import BackendFailureError

logger = structlog.get_logger("semembed.executor")


@dataclass(frozen=True)
class Embedding:
    index: int
    vector: List[float]


@dataclass(frozen=True)
class EmbeddingResult:
    """Vectors in request order; ``embeddings[i].index == i``."""

    embeddings: List[Embedding]

    def __len__(self) -> int:
        return len(self.embeddings)

    @property
    def vectors(self) -> List[List[float]]:
        return [item.vector for item in self.embeddings]


def iter_chunks(inputs: Sequence[str], size: int) -> Iterator[Tuple[int, List[str]]]:
    """Yield ``(start_index, chunk)`` pairs covering ``inputs`` in order."""
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    for start in range(0, len(inputs), size):
        yield start, list(inputs[start:start + size])


class BatchExecutor:
    """Runs inference for loaded models.

    Parameters
    - max_concurrency: Backend calls allowed in parallel per model
    """

    def __init__(self, max_concurrency: int = 1):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self._slots: Dict[str, asyncio.Semaphore] = {}
        self.chunks_executed = 0

    def _slot(self, handle: ModelHandle) -> asyncio.Semaphore:
        slot = self._slots.get(handle.model_id)
        if slot is None:
            slot = asyncio.Semaphore(self.max_concurrency)
            self._slots[handle.model_id] = slot
        return slot

    async def embed(self, handle: ModelHandle, inputs: Sequence[str]) -> EmbeddingResult:
        """Embed ``inputs`` with ``handle``.

        Raises ``BackendFailureError`` if any chunk fails; partial results
        from other chunks are discarded.
        """
        abandoned = asyncio.Event()
        task = asyncio.get_running_loop().create_task(self._run(handle, list(inputs), abandoned))
        task.add_done_callback(self._retrieve_outcome)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            abandoned.set()
            raise

    async def _run(self, handle: ModelHandle, inputs: List[str], abandoned: asyncio.Event) -> EmbeddingResult:
        vectors: List[List[float]] = []
        chunk_count = 0
        slot = self._slot(handle)

        for start, chunk in iter_chunks(inputs, handle.max_batch_size):
            async with slot:
                if abandoned.is_set():
                    logger.debug(
                        "Caller gone, skipping remaining chunks",
                        model_name=handle.model_id,
                        chunks_done=chunk_count,
                        next_chunk_start=start
                    )
                    raise asyncio.CancelledError()
                try:
                    output = await asyncio.to_thread(handle.backend.infer, chunk)
                except Exception as e:
                    logger.error(
                        "Backend inference failed",
                        model_name=handle.model_id,
                        chunk_start=start,
                        chunk_size=len(chunk),
                        error=str(e)
                    )
                    raise BackendFailureError(handle.model_id, str(e)) from e
            chunk_count += 1
            self.chunks_executed += 1

            output = list(output)
            if len(output) != len(chunk):
                raise BackendFailureError(
                    handle.model_id,
                    f"backend returned {len(output)} vectors for {len(chunk)} inputs"
                )
            vectors.extend([float(x) for x in vector] for vector in output)

        logger.debug(
            "Inference completed",
            model_name=handle.model_id,
            count=len(vectors),
            chunks=chunk_count,
            batch_size=handle.max_batch_size
        )
        return EmbeddingResult([Embedding(index=i, vector=v) for i, v in enumerate(vectors)])

    @staticmethod
    def _retrieve_outcome(task: "asyncio.Task[EmbeddingResult]") -> None:
        # The caller may have abandoned the task; its error is already logged.
        if not task.cancelled():
            task.exception()

    def stats(self) -> Dict[str, int]:
        return {
            "max_concurrency": self.max_concurrency,
            "chunks_executed": self.chunks_executed,
            "models_with_slots": len(self._slots),
        }
