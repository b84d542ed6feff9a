"""Tests for the end-to-end embedding manager."""

import asyncio
import threading

import pytest

from libs.common.config import EmbeddingConfig
from semembed.encoders.embedding_manager import EmbeddingManager
from semembed.errors import (
    BackendFailureError,
    EmptyInputError,
    InferenceTimeoutError,
    InvalidInputTypeError,
    LoadFailedError,
    UnknownModelError,
)
from tests.fakes import FakeBackendFactory, fake_vector


def sample(collector, name, **labels):
    return collector.registry.get_sample_value(name, labels)


@pytest.mark.asyncio
async def test_single_input_response(config, fake_factory, metrics_collector):
    manager = EmbeddingManager(config, factory=fake_factory, metrics=metrics_collector)

    response = await manager.create_embeddings({"input": "hello", "model": "m1"})

    assert response.object == "list"
    assert response.model == "m1"
    assert len(response.data) == 1
    assert response.data[0].object == "embedding"
    assert response.data[0].index == 0
    assert response.data[0].embedding == fake_vector("m1", "hello", 3)
    assert response.usage.prompt_tokens == 1
    assert response.usage.total_tokens == 1


@pytest.mark.asyncio
async def test_default_model_and_chunking(config, fake_factory, metrics_collector):
    manager = EmbeddingManager(config, factory=fake_factory, metrics=metrics_collector)

    response = await manager.create_embeddings({"input": ["a", "b", "c"]})

    assert response.model == "m1"
    assert [item.index for item in response.data] == [0, 1, 2]
    assert fake_factory.backends["m1"].calls == [["a", "b"], ["c"]]
    assert response.usage.prompt_tokens == 3


@pytest.mark.asyncio
async def test_usage_sums_tokens_over_inputs(config, fake_factory, metrics_collector):
    manager = EmbeddingManager(config, factory=fake_factory, metrics=metrics_collector)

    response = await manager.create_embeddings({"input": ["one two", "", "three four five"], "model": "m2"})

    assert response.usage.prompt_tokens == 5
    assert all(len(item.embedding) == 4 for item in response.data)
    assert sample(metrics_collector, "semembed_tokens_processed_total", model="m2") == 5


@pytest.mark.asyncio
async def test_success_records_one_metric_event(config, fake_factory, metrics_collector):
    manager = EmbeddingManager(config, factory=fake_factory, metrics=metrics_collector)

    await manager.create_embeddings({"input": ["x", "y"], "model": "m1"})

    assert sample(metrics_collector, "semembed_requests_total", model="m1", outcome="success") == 1
    assert sample(metrics_collector, "semembed_request_duration_seconds_count", model="m1", outcome="success") == 1
    assert sample(metrics_collector, "semembed_request_inputs_sum", model="m1") == 2


@pytest.mark.asyncio
async def test_validation_failure_is_counted(config, fake_factory, metrics_collector):
    manager = EmbeddingManager(config, factory=fake_factory, metrics=metrics_collector)

    with pytest.raises(EmptyInputError):
        await manager.create_embeddings({"input": []})
    with pytest.raises(InvalidInputTypeError):
        await manager.create_embeddings({"input": [1, 2], "model": "m2"})

    assert sample(metrics_collector, "semembed_errors_total", model="m1", kind="empty_input") == 1
    assert sample(metrics_collector, "semembed_errors_total", model="m2", kind="invalid_input_type") == 1
    assert sum(fake_factory.load_calls.values()) == 0


@pytest.mark.asyncio
async def test_unknown_model_uses_bounded_label(config, fake_factory, metrics_collector):
    manager = EmbeddingManager(config, factory=fake_factory, metrics=metrics_collector)

    for name in ("nope-1", "nope-2"):
        with pytest.raises(UnknownModelError):
            await manager.create_embeddings({"input": "x", "model": name})

    assert sample(metrics_collector, "semembed_requests_total", model="unknown", outcome="unknown_model") == 2
    assert sample(metrics_collector, "semembed_requests_total", model="nope-1", outcome="unknown_model") is None
    assert sum(fake_factory.load_calls.values()) == 0


@pytest.mark.asyncio
async def test_backend_failure_surfaces_as_inference_error(config, metrics_collector):
    factory = FakeBackendFactory({"m1": 3}, fail_on="bad")
    manager = EmbeddingManager(config, factory=factory, metrics=metrics_collector)

    with pytest.raises(BackendFailureError):
        await manager.create_embeddings({"input": ["fine", "bad"]})

    assert sample(metrics_collector, "semembed_errors_total", model="m1", kind="backend_failure") == 1

    response = await manager.create_embeddings({"input": ["fine"]})
    assert len(response.data) == 1


@pytest.mark.asyncio
async def test_load_failure_then_retry(config, metrics_collector):
    factory = FakeBackendFactory({"m1": 3}, load_failures={"m1": 1})
    manager = EmbeddingManager(config, factory=factory, metrics=metrics_collector)

    with pytest.raises(LoadFailedError) as exc_info:
        await manager.create_embeddings({"input": "x"})
    assert exc_info.value.status_code == 503

    response = await manager.create_embeddings({"input": "x"})
    assert response.model == "m1"
    assert factory.load_calls["m1"] == 2


@pytest.mark.asyncio
async def test_timeout_does_not_abort_load(metrics_collector):
    gate = threading.Event()
    factory = FakeBackendFactory({"m1": 3}, load_gate=gate)
    config = EmbeddingConfig(
        semembed_model="m1",
        semembed_preload_default_model=False,
        semembed_request_timeout_seconds=0.05,
    )
    manager = EmbeddingManager(config, factory=factory, metrics=metrics_collector)

    try:
        with pytest.raises(InferenceTimeoutError) as exc_info:
            await manager.create_embeddings({"input": "x"})
    finally:
        gate.set()

    assert exc_info.value.kind == "timeout"
    assert sample(metrics_collector, "semembed_errors_total", model="m1", kind="timeout") == 1

    for _ in range(200):
        if manager.registry.is_loaded("m1"):
            break
        await asyncio.sleep(0.01)
    assert manager.registry.is_loaded("m1")

    response = await manager.create_embeddings({"input": "x"})
    assert response.data[0].embedding == fake_vector("m1", "x", 3)
    assert factory.load_calls["m1"] == 1


@pytest.mark.asyncio
async def test_initialize_rejects_unknown_default(fake_factory, metrics_collector):
    config = EmbeddingConfig(semembed_model="missing", semembed_preload_default_model=False)
    manager = EmbeddingManager(config, factory=fake_factory, metrics=metrics_collector)

    with pytest.raises(UnknownModelError):
        await manager.initialize()


@pytest.mark.asyncio
async def test_initialize_with_preload_warms_default(fake_factory, metrics_collector):
    config = EmbeddingConfig(semembed_model="m2", semembed_preload_default_model=True)
    manager = EmbeddingManager(config, factory=fake_factory, metrics=metrics_collector)

    await manager.initialize()
    assert manager.registry.is_loading("m2") or manager.registry.is_loaded("m2")

    await manager.registry.resolve("m2")
    assert await manager.health_check()
    assert fake_factory.load_calls["m2"] == 1
    await manager.cleanup()


@pytest.mark.asyncio
async def test_health_and_model_listing(config, fake_factory, metrics_collector):
    manager = EmbeddingManager(config, factory=fake_factory, metrics=metrics_collector)
    await manager.initialize()

    health = manager.health()
    assert health == {"ready": False, "loaded_models": set(), "default_model": "m1"}
    assert await manager.list_models() == []

    await manager.create_embeddings({"input": "x", "model": "m2"})

    assert await manager.list_models() == ["m2"]
    assert manager.health()["loaded_models"] == {"m2"}
    assert manager.health()["ready"] is False
    assert (await manager.get_model_info("m2"))["loaded"] is True
    assert await manager.get_model_info("nope") is None

    runtime = manager.describe_runtime()
    assert runtime["default_model"] == "m1"
    assert runtime["executor"]["max_concurrency"] == 1
    assert len(runtime["models"]) == 2

    await manager.cleanup()
    assert fake_factory.backends["m2"].closed


@pytest.mark.asyncio
async def test_token_counting_runs_off_the_event_loop(config, fake_factory, metrics_collector):
    manager = EmbeddingManager(config, factory=fake_factory, metrics=metrics_collector)

    response = await manager.create_embeddings({"input": ["one two", "three"]})

    assert response.usage.prompt_tokens == 3
    token_threads = fake_factory.backends["m1"].token_threads
    assert token_threads
    assert threading.get_ident() not in token_threads
