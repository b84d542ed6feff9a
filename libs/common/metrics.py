"""Metrics collection for semembed.

Provides a thin convenience wrapper around ``prometheus_client`` so the
service consistently records HTTP, embedding request, and model load metrics.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per service (can be injected for testing)
- Request outcomes arrive as immutable ``MetricEvent`` records
- Recording is best-effort: failures are logged and never reach callers
"""

from dataclasses import dataclass
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
import structlog

logger = structlog.get_logger("metrics")

SUCCESS = "success"

# Latency buckets cover sub-millisecond cache-warm calls up to first-load cost.
LATENCY_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)
INPUT_COUNT_BUCKETS = (1, 2, 4, 8, 16, 32, 64, 128, 256, 512, 1024, 2048)


@dataclass(frozen=True)
class MetricEvent:
    """One completed embedding request.

    ``outcome`` is ``"success"`` or the error kind that ended the request.
    ``latency`` is in seconds to match Prometheus histogram units.
    """

    model: str
    outcome: str
    latency: float
    token_count: int = 0
    input_count: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome == SUCCESS


class MetricsCollector:
    """Centralized metrics collection for the embedding service.

    Parameters
    - service_name: Logical name used for scoping/labels if desired
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)

    Exposes typed helpers for common events to keep label sets consistent.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        # HTTP metrics
        self.request_count = Counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'http_request_duration_seconds',
            'HTTP request duration',
            ['method', 'endpoint'],
            registry=self.registry
        )

        # Embedding request metrics
        self.embedding_requests = Counter(
            'semembed_requests_total',
            'Total number of embedding requests',
            ['model', 'outcome'],
            registry=self.registry
        )

        self.embedding_duration = Histogram(
            'semembed_request_duration_seconds',
            'Embedding request duration in seconds',
            ['model', 'outcome'],
            buckets=LATENCY_BUCKETS,
            registry=self.registry
        )

        self.tokens_processed = Counter(
            'semembed_tokens_processed_total',
            'Total number of tokens processed',
            ['model'],
            registry=self.registry
        )

        self.request_inputs = Histogram(
            'semembed_request_inputs',
            'Number of input texts per embedding request',
            ['model'],
            buckets=INPUT_COUNT_BUCKETS,
            registry=self.registry
        )

        self.errors = Counter(
            'semembed_errors_total',
            'Total number of errors',
            ['model', 'kind'],
            registry=self.registry
        )

        # Model lifecycle metrics
        self.model_load_duration = Histogram(
            'semembed_model_load_duration_seconds',
            'Model load duration in seconds',
            ['model', 'outcome'],
            buckets=LATENCY_BUCKETS + (120.0, 300.0, 600.0),
            registry=self.registry
        )

        self.models_loaded = Gauge(
            'semembed_models_loaded',
            'Number of models currently loaded',
            registry=self.registry
        )

    def record(self, event: MetricEvent) -> None:
        """Record one completed embedding request.

        Never raises; a broken metric must not fail the request path.
        """
        try:
            self.embedding_requests.labels(model=event.model, outcome=event.outcome).inc()
            self.embedding_duration.labels(model=event.model, outcome=event.outcome).observe(event.latency)
            if event.input_count:
                self.request_inputs.labels(model=event.model).observe(event.input_count)
            if event.succeeded:
                self.tokens_processed.labels(model=event.model).inc(event.token_count)
            else:
                self.errors.labels(model=event.model, kind=event.outcome).inc()
        except Exception as e:
            logger.warning("Failed to record metric event", metric_event=repr(event), error=str(e))

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float
    ) -> None:
        """Record HTTP request metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        try:
            self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
            self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)
        except Exception as e:
            logger.warning("Failed to record HTTP metrics", endpoint=endpoint, error=str(e))

    def record_model_load(self, model: str, outcome: str, duration: float) -> None:
        """Record a finished model load attempt."""
        try:
            self.model_load_duration.labels(model=model, outcome=outcome).observe(duration)
        except Exception as e:
            logger.warning("Failed to record model load metric", model=model, error=str(e))

    def set_models_loaded(self, count: int) -> None:
        """Set the number of loaded models."""
        try:
            self.models_loaded.set(count)
        except Exception as e:
            logger.warning("Failed to update loaded models gauge", error=str(e))

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create metrics collector for a service.

    Returns a process-wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector
