"""Shared fixtures for semembed tests."""

import pytest
from prometheus_client import CollectorRegistry

from libs.common.config import EmbeddingConfig
from libs.common.metrics import MetricsCollector
from tests.fakes import FakeBackendFactory


@pytest.fixture
def metrics_collector():
    """Collector with its own registry so tests never share counters."""
    return MetricsCollector("test-service", registry=CollectorRegistry())


@pytest.fixture
def fake_factory():
    return FakeBackendFactory({"m1": 3, "m2": 4}, max_batch_size=2)


@pytest.fixture
def config():
    return EmbeddingConfig(
        semembed_model="m1",
        semembed_preload_default_model=False,
        semembed_log_format="console",
    )
