"""Inference backends.

Defines the contract the registry and executor depend on, independent of the
library that actually computes vectors, plus the sentence-transformers
implementation used in production.

Backends are synchronous and may block for a long time (weight download on
``load``, forward passes on ``infer``); callers run them in worker threads.
"""

import copy
import threading
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np
from sentence_transformers import SentenceTransformer
import torch
import structlog

from ..batching.gpu_detector import detect_optimal_device
from .catalog import ModelCatalog

logger = structlog.get_logger("semembed.backend")


class EmbeddingBackend(ABC):
    """A loaded model that turns texts into vectors.

    Implementations must be deterministic for identical input and must
    return exactly one vector per input text, in input order.
    """

    model_id: str
    dimension: int
    max_batch_size: int
    device: str = "cpu"

    @abstractmethod
    def infer(self, texts: List[str]) -> List[List[float]]:
        """Embed ``texts``; one vector per text."""

    @abstractmethod
    def token_count(self, text: str) -> int:
        """Number of tokens the model's tokenizer produces for ``text``."""

    def close(self) -> None:
        """Release resources held by the backend."""


class BackendFactory(ABC):
    """Creates backends for identifiers listed in a ``ModelCatalog``."""

    def __init__(self, catalog: ModelCatalog):
        self.catalog = catalog

    def is_known(self, model_id: str) -> bool:
        return model_id in self.catalog

    def known_models(self) -> List[str]:
        return self.catalog.names()

    @abstractmethod
    def load(self, model_id: str) -> EmbeddingBackend:
        """Construct and initialize the backend for ``model_id`` (blocking)."""


class SentenceTransformerBackend(EmbeddingBackend):
    """``SentenceTransformer`` wrapper.

    Token counting uses a private copy of the tokenizer guarded by its own
    lock: fast tokenizers are not safe to share across threads, and inference
    runs in worker threads while counting runs on the event loop.
    """

    def __init__(
        self,
        model_id: str,
        model: SentenceTransformer,
        max_batch_size: int,
        normalize_embeddings: bool = True,
        device: str = "cpu",
    ):
        self.model_id = model_id
        self.model = model
        self.dimension = model.get_sentence_embedding_dimension()
        self.max_seq_length = model.max_seq_length
        self.max_batch_size = max_batch_size
        self.normalize_embeddings = normalize_embeddings
        self.device = device
        self._count_tokenizer = copy.deepcopy(model.tokenizer)
        self._count_lock = threading.Lock()

    def infer(self, texts: List[str]) -> List[List[float]]:
        with torch.no_grad():
            vectors = self.model.encode(
                texts,
                batch_size=max(len(texts), 1),
                normalize_embeddings=self.normalize_embeddings,
                convert_to_numpy=True,
                show_progress_bar=False,
            )
        return np.asarray(vectors, dtype=np.float32).tolist()

    def token_count(self, text: str) -> int:
        with self._count_lock:
            return len(self._count_tokenizer.encode(text, add_special_tokens=False, verbose=False))

    def close(self) -> None:
        if self.device.startswith("cuda"):
            torch.cuda.empty_cache()


class SentenceTransformerFactory(BackendFactory):
    """Loads catalog models with sentence-transformers.

    Parameters
    - catalog: Known models
    - max_batch_size: Largest chunk handed to one ``infer`` call
    - device_preference: ``auto``, ``cpu`` or ``gpu``
    - cache_dir: Weight cache folder (library default when ``None``)
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        max_batch_size: int = 256,
        device_preference: str = "auto",
        normalize_embeddings: bool = True,
        cache_dir: Optional[str] = None,
    ):
        super().__init__(catalog)
        self.max_batch_size = max_batch_size
        self.device_preference = device_preference
        self.normalize_embeddings = normalize_embeddings
        self.cache_dir = cache_dir

    def load(self, model_id: str) -> SentenceTransformerBackend:
        spec = self.catalog.get(model_id)
        if spec is None:
            raise KeyError(f"model {model_id} is not in the catalog")

        device = detect_optimal_device(self.device_preference)
        model = SentenceTransformer(model_id, device=device, cache_folder=self.cache_dir)

        backend = SentenceTransformerBackend(
            model_id,
            model,
            max_batch_size=self.max_batch_size,
            normalize_embeddings=self.normalize_embeddings,
            device=device,
        )
        if backend.dimension != spec.dimension:
            logger.warning(
                "Model dimension differs from catalog",
                model_name=model_id,
                catalog_dimension=spec.dimension,
                actual_dimension=backend.dimension
            )

        logger.info(
            "Loaded embedding model",
            model_name=model_id,
            dimension=backend.dimension,
            max_length=backend.max_seq_length,
            device=device
        )
        return backend
