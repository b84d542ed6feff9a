"""Tests for response formatting and usage accounting."""

from semembed.batching.executor import Embedding, EmbeddingResult
from semembed.encoders.registry import ModelHandle
from semembed.pipelines.formatter import UsageStats, count_usage, format_response
from tests.fakes import FakeBackend


def test_count_usage_sums_tokenizer_counts():
    backend = FakeBackend("m1", 3, 2)
    handle = ModelHandle(model_id="m1", backend=backend, dimension=3, max_batch_size=2)

    usage = count_usage(handle, ["hello", "two words", ""])

    assert usage == UsageStats(prompt_tokens=3, total_tokens=3)


def test_format_response_shape():
    result = EmbeddingResult([Embedding(0, [0.1, 0.2]), Embedding(1, [0.3, 0.4])])
    response = format_response(result, UsageStats(prompt_tokens=4, total_tokens=4), "m1")

    assert response.model_dump() == {
        "object": "list",
        "data": [
            {"object": "embedding", "embedding": [0.1, 0.2], "index": 0},
            {"object": "embedding", "embedding": [0.3, 0.4], "index": 1},
        ],
        "model": "m1",
        "usage": {"prompt_tokens": 4, "total_tokens": 4},
    }


def test_format_response_orders_by_index():
    result = EmbeddingResult([Embedding(2, [2.0]), Embedding(0, [0.0]), Embedding(1, [1.0])])
    response = format_response(result, UsageStats(prompt_tokens=0, total_tokens=0), "m1")

    assert [item.index for item in response.data] == [0, 1, 2]
    assert [item.embedding for item in response.data] == [[0.0], [1.0], [2.0]]
