"""semembed: OpenAI-compatible text embedding service.

Layout:
- ``api``: FastAPI route handlers and request/response models.
- ``encoders``: model catalog, inference backends, the single-flight
  ``ModelRegistry`` and the request-serving ``EmbeddingManager``.
- ``batching``: chunked, concurrency-limited inference and device selection.
- ``pipelines``: request normalization and response formatting.

Import convenience:
- from semembed.encoders.embedding_manager import EmbeddingManager
"""

__version__ = "0.1.0"
