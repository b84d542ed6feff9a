"""Response formatting and usage accounting.

Builds the OpenAI-compatible embeddings response. The pydantic models here
are also the ``response_model`` of the HTTP route.
"""

from typing import List, Sequence

from pydantic import BaseModel, Field

from ..batching.executor import EmbeddingResult
from ..encoders.registry import ModelHandle


class UsageStats(BaseModel):
    """Token usage for one request."""
    prompt_tokens: int = Field(..., ge=0, description="Tokens across all inputs")
    total_tokens: int = Field(..., ge=0, description="Total tokens (same as prompt tokens)")


class EmbeddingObject(BaseModel):
    """One embedding in the response list."""
    object: str = Field(default="embedding", description="Object type")
    embedding: List[float] = Field(..., description="Embedding vector")
    index: int = Field(..., ge=0, description="Position of the input text")


class EmbeddingResponse(BaseModel):
    """Response body for ``POST /v1/embeddings``."""
    object: str = Field(default="list", description="Object type")
    data: List[EmbeddingObject] = Field(..., description="Embeddings in input order")
    model: str = Field(..., description="Model used")
    usage: UsageStats = Field(..., description="Token usage")


def count_usage(handle: ModelHandle, inputs: Sequence[str]) -> UsageStats:
    """Sum the model tokenizer's count over every input.

    Blocking; the manager runs it in a worker thread next to inference.
    """
    tokens = sum(handle.backend.token_count(text) for text in inputs)
    return UsageStats(prompt_tokens=tokens, total_tokens=tokens)


def format_response(result: EmbeddingResult, usage: UsageStats, model_id: str) -> EmbeddingResponse:
    data = [
        EmbeddingObject(embedding=item.vector, index=item.index)
        for item in sorted(result.embeddings, key=lambda item: item.index)
    ]
    return EmbeddingResponse(data=data, model=model_id, usage=usage)
