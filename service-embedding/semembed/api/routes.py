"""API routes for the embedding service."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
import structlog

from ..encoders.embedding_manager import EmbeddingManager
from ..pipelines.formatter import EmbeddingResponse

logger = structlog.get_logger("semembed.api")

router = APIRouter()


class EmbeddingRequestBody(BaseModel):
    """Request body for ``POST /v1/embeddings``.

    Fields are untyped here; ``normalize`` validates them and raises the
    service's own error kinds.
    """
    model_config = ConfigDict(extra="allow")

    input: Any = Field(None, description="Text or array of texts to embed")
    model: Optional[Any] = Field(None, description="Model identifier; service default when omitted")
    encoding_format: Optional[Any] = Field(None, description="Only 'float' is supported")


class ModelsResponse(BaseModel):
    """Loaded model identifiers."""
    models: List[str] = Field(..., description="Models with a completed load")


class ModelInfo(BaseModel):
    """Model information model."""
    name: str = Field(..., description="Model name")
    dimension: int = Field(..., description="Embedding dimension")
    max_length: int = Field(..., description="Maximum input length in tokens")
    loaded: bool = Field(..., description="Whether the model is loaded")
    loading: bool = Field(False, description="Whether a load is in flight")
    max_batch_size: Optional[int] = Field(None, description="Largest chunk per backend call")
    device: Optional[str] = Field(None, description="Inference device")
    loaded_at: Optional[float] = Field(None, description="Load completion time (epoch seconds)")
    load_seconds: Optional[float] = Field(None, description="Load duration in seconds")


def get_embedding_manager(request: Request) -> EmbeddingManager:
    """Get embedding manager from application state."""
    manager = getattr(request.app.state, "embedding_manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Embedding manager not initialized")
    return manager


@router.post("/v1/embeddings", response_model=EmbeddingResponse)
async def create_embeddings(
    body: EmbeddingRequestBody,
    embedding_manager: EmbeddingManager = Depends(get_embedding_manager)
):
    """Generate embeddings (OpenAI-compatible).

    Service errors propagate to the application's exception handler, which
    renders them with their status code and error kind.
    """
    return await embedding_manager.create_embeddings(body.model_dump(exclude_unset=True))


@router.get("/models", response_model=ModelsResponse)
async def list_models(
    embedding_manager: EmbeddingManager = Depends(get_embedding_manager)
):
    """List models that have finished loading."""
    models = await embedding_manager.list_models()
    logger.debug("Models listed", count=len(models))
    return ModelsResponse(models=models)


@router.get("/models/{model_name:path}", response_model=ModelInfo)
async def get_model_info(
    model_name: str,
    embedding_manager: EmbeddingManager = Depends(get_embedding_manager)
):
    """Get information about a specific model."""
    model_info: Optional[Dict[str, Any]] = await embedding_manager.get_model_info(model_name)
    if not model_info:
        raise HTTPException(status_code=404, detail=f"Model {model_name} not found")

    logger.debug("Model info retrieved", model_name=model_name)
    return ModelInfo(**model_info)
