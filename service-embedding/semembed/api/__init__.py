"""API subpackage for the embedding service.

Contains the FastAPI router that exposes endpoints for:
- OpenAI-compatible embedding generation (``/v1/embeddings``)
- Model discovery (``/models`` and ``/models/{model_name}``)
"""
