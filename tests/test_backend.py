"""Tests for the sentence-transformers backend and device selection.

``SentenceTransformer`` is replaced with a small stand-in so no weights are
downloaded.
"""

import numpy as np
import pytest
import torch
from structlog.testing import capture_logs

from semembed.batching.gpu_detector import DeviceProbe, GPUDetector
from semembed.encoders import backend as backend_module
from semembed.encoders.backend import SentenceTransformerBackend, SentenceTransformerFactory
from semembed.encoders.catalog import ModelCatalog, ModelSpec


class StubTokenizer:
    def encode(self, text, add_special_tokens=True, verbose=True):
        ids = [len(word) for word in text.split()]
        if add_special_tokens:
            ids = [101] + ids + [102]
        return ids


class StubSentenceTransformer:
    instances = []

    def __init__(self, model_name_or_path, device=None, cache_folder=None):
        self.model_name = model_name_or_path
        self.device = device
        self.cache_folder = cache_folder
        self.max_seq_length = 128
        self.tokenizer = StubTokenizer()
        self.encode_calls = []
        StubSentenceTransformer.instances.append(self)

    def get_sentence_embedding_dimension(self):
        return 4

    def encode(self, texts, batch_size=32, normalize_embeddings=False, convert_to_numpy=True, show_progress_bar=None):
        self.encode_calls.append({"texts": list(texts), "batch_size": batch_size, "normalize": normalize_embeddings})
        return np.array([[float(len(text)), 1.0, 0.0, 0.5] for text in texts], dtype=np.float64)


@pytest.fixture
def stub_model(monkeypatch):
    StubSentenceTransformer.instances = []
    monkeypatch.setattr(backend_module, "SentenceTransformer", StubSentenceTransformer)
    return StubSentenceTransformer


def test_backend_infer_returns_float_lists():
    backend = SentenceTransformerBackend("stub", StubSentenceTransformer("stub"), max_batch_size=8)

    vectors = backend.infer(["ab", ""])

    assert vectors == [[2.0, 1.0, 0.0, 0.5], [0.0, 1.0, 0.0, 0.5]]
    assert all(isinstance(value, float) for value in vectors[0])
    assert backend.model.encode_calls[0]["batch_size"] == 2
    assert backend.model.encode_calls[0]["normalize"] is True
    assert backend.dimension == 4


def test_backend_token_count_excludes_special_tokens():
    backend = SentenceTransformerBackend("stub", StubSentenceTransformer("stub"), max_batch_size=8)

    assert backend.token_count("hello there world") == 3
    assert backend.token_count("") == 0


def test_backend_uses_private_tokenizer_copy():
    model = StubSentenceTransformer("stub")
    backend = SentenceTransformerBackend("stub", model, max_batch_size=8)
    assert backend._count_tokenizer is not model.tokenizer


def test_factory_loads_catalog_model(stub_model):
    catalog = ModelCatalog([ModelSpec("org/stub-model", 4)])
    factory = SentenceTransformerFactory(
        catalog,
        max_batch_size=16,
        device_preference="cpu",
        normalize_embeddings=False,
        cache_dir="/tmp/models",
    )

    backend = factory.load("org/stub-model")

    assert backend.model_id == "org/stub-model"
    assert backend.device == "cpu"
    assert backend.max_batch_size == 16
    assert backend.normalize_embeddings is False
    loaded = stub_model.instances[-1]
    assert loaded.model_name == "org/stub-model"
    assert loaded.cache_folder == "/tmp/models"
    assert factory.is_known("org/stub-model")
    assert factory.known_models() == ["org/stub-model"]


def test_factory_refuses_models_outside_catalog(stub_model):
    factory = SentenceTransformerFactory(ModelCatalog([ModelSpec("a", 4)]), device_preference="cpu")

    with pytest.raises(KeyError):
        factory.load("b")
    assert stub_model.instances == []


def test_gpu_detector_honours_cpu_preference():
    detector = GPUDetector()
    assert detector.select_device("cpu") == "cpu"
    with pytest.raises(ValueError):
        detector.select_device("tpu")


def test_gpu_detector_falls_back_to_cpu(monkeypatch):
    monkeypatch.setattr(torch.cuda, "is_available", lambda: False)
    monkeypatch.setattr(torch.backends.mps, "is_available", lambda: False)
    detector = GPUDetector()

    assert detector.probe().accelerator is None
    assert detector.select_device("auto") == "cpu"
    assert detector.select_device("gpu") == "cpu"


def test_device_probe_prefers_cuda():
    probe = DeviceProbe(cuda_devices=[{"id": 0, "name": "test"}], mps_available=True)
    assert probe.accelerator == "cuda:0"
    assert DeviceProbe(mps_available=True).accelerator == "mps"


def test_factory_load_does_not_emit_timing_events(stub_model):
    factory = SentenceTransformerFactory(ModelCatalog([ModelSpec("a", 4)]), device_preference="cpu")

    with capture_logs() as logs:
        factory.load("a")

    assert not [entry for entry in logs if "duration_ms" in entry]
