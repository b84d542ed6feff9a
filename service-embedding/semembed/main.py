"""Embedding service main application."""

import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from .api.routes import router as api_router
from .encoders.backend import BackendFactory
from .encoders.embedding_manager import EmbeddingManager
from .errors import EmbeddingServiceError
from libs.common.config import EmbeddingConfig
from libs.common.logging import configure_logging
from libs.common.metrics import MetricsCollector, get_metrics_collector
from libs.common.tracing import configure_tracing

SERVICE_NAME = "semembed"
SERVICE_VERSION = "0.1.0"

logger = structlog.get_logger("semembed.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    config: EmbeddingConfig = app.state.config
    configure_logging(SERVICE_NAME, config.semembed_log_level, config.semembed_log_format)
    app.state.startup_time = time.time()

    logger.info("Starting embedding service", default_model=config.semembed_model, port=config.semembed_port)

    embedding_manager = EmbeddingManager(
        config,
        factory=app.state.backend_factory,
        metrics=app.state.metrics_collector,
    )
    await embedding_manager.initialize()
    app.state.embedding_manager = embedding_manager

    logger.info("Embedding service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down embedding service")
    await embedding_manager.cleanup()
    del app.state.embedding_manager
    logger.info("Embedding service shutdown complete")


def create_app(
    config: Optional[EmbeddingConfig] = None,
    backend_factory: Optional[BackendFactory] = None,
    metrics_collector: Optional[MetricsCollector] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Parameters
    - config: Service configuration; read from the environment when ``None``
    - backend_factory: Inference backend factory; sentence-transformers when ``None``
    - metrics_collector: Collector; the process-wide one when ``None``
    """
    config = config or EmbeddingConfig()

    app = FastAPI(
        title="semembed",
        description="OpenAI-compatible text embedding service",
        version=SERVICE_VERSION,
        lifespan=lifespan
    )
    app.state.config = config
    app.state.backend_factory = backend_factory
    app.state.metrics_collector = metrics_collector or get_metrics_collector(SERVICE_NAME)

    if config.semembed_tracing_enabled:
        tracer = configure_tracing(
            SERVICE_NAME,
            config.semembed_otel_exporter,
            app=app,
            environment=config.semembed_env,
            service_version=SERVICE_VERSION,
        )
        if tracer is None:
            logger.warning("Tracing initialization failed")
    app.state.tracing_enabled = config.semembed_tracing_enabled

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)
    _register_exception_handlers(app)
    _register_middleware(app)
    _register_probes(app)
    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(EmbeddingServiceError)
    async def service_error_handler(request: Request, exc: EmbeddingServiceError):
        """Render service errors in the OpenAI error shape."""
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Malformed bodies are client errors, reported as 400."""
        messages = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', '')}"
            for error in exc.errors()
        )
        return JSONResponse(
            status_code=400,
            content={
                "error": {
                    "message": messages or "Invalid request body",
                    "type": "invalid_request_error",
                    "code": "invalid_request",
                }
            }
        )


def _register_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add processing time header to responses."""
        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Process-Time"] = str(time.time() - start_time)
        return response

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Collect metrics for HTTP requests."""
        start_time = time.time()

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            logger.error("Unhandled request error", path=request.url.path, error=str(e))
            status_code = 500
            response = JSONResponse(
                status_code=500,
                content={"error": {"message": "Internal server error", "type": "internal_error", "code": "internal_error"}}
            )

        # Route templates keep label cardinality bounded.
        route = request.scope.get("route")
        endpoint = getattr(route, "path", "unmatched")
        app.state.metrics_collector.record_http_request(
            method=request.method,
            endpoint=endpoint,
            status=status_code,
            duration=time.time() - start_time
        )
        return response


def _register_probes(app: FastAPI) -> None:
    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint.

        Healthy once the service is initialized; ``ready`` reports whether the
        default model has finished loading but does not gate requests.
        """
        embedding_manager: Optional[EmbeddingManager] = getattr(request.app.state, "embedding_manager", None)
        if embedding_manager is None:
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "model": request.app.state.config.semembed_model}
            )

        health = embedding_manager.health()
        return {
            "status": "healthy",
            "model": health["default_model"],
            "ready": health["ready"],
            "loaded_models": sorted(health["loaded_models"]),
        }

    @app.get("/metrics")
    async def metrics(request: Request):
        """Prometheus metrics endpoint."""
        metrics_data = request.app.state.metrics_collector.get_metrics()
        return Response(content=metrics_data, media_type="text/plain; version=0.0.4; charset=utf-8")

    @app.get("/live")
    async def liveness(request: Request):
        """Liveness probe. Returns quickly if process is responsive."""
        return {
            "status": "alive",
            "service": SERVICE_NAME,
            "uptime_seconds": time.time() - getattr(request.app.state, "startup_time", time.time())
        }

    @app.get("/ready")
    async def readiness(request: Request):
        """Readiness probe. Ready once the default model is loaded."""
        embedding_manager: Optional[EmbeddingManager] = getattr(request.app.state, "embedding_manager", None)
        if embedding_manager is None or not await embedding_manager.health_check():
            return JSONResponse(
                status_code=503,
                content={
                    "status": "not_ready",
                    "service": SERVICE_NAME,
                    "model": request.app.state.config.semembed_model
                }
            )

        return {
            "status": "ready",
            "service": SERVICE_NAME,
            "models_loaded": len(embedding_manager.registry.list_loaded())
        }

    @app.get("/resources")
    async def resources(request: Request):
        """Describe configured models and runtime settings."""
        config: EmbeddingConfig = request.app.state.config
        embedding_manager: Optional[EmbeddingManager] = getattr(request.app.state, "embedding_manager", None)

        return {
            "service": SERVICE_NAME,
            "runtime": embedding_manager.describe_runtime() if embedding_manager else None,
            "max_batch_size": config.semembed_max_batch_size,
            "max_concurrency_per_model": config.semembed_max_concurrency_per_model,
            "device_preference": config.semembed_device,
            "tracing_enabled": request.app.state.tracing_enabled,
        }

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "status": "running",
            "endpoints": {
                "embeddings": "/v1/embeddings",
                "models": "/models",
                "health": "/health",
                "metrics": "/metrics"
            },
            "probes": {
                "health": "/health",
                "live": "/live",
                "ready": "/ready"
            },
            "metadata": {
                "resources": "/resources"
            }
        }


app = create_app()


def main() -> None:
    """Console entrypoint: serve the app with uvicorn."""
    config: EmbeddingConfig = app.state.config
    uvicorn.run(
        app,
        host=config.semembed_host,
        port=config.semembed_port,
        log_level=config.semembed_log_level.lower()
    )


if __name__ == "__main__":
    main()
