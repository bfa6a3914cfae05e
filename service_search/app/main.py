"""Knowledge search service main application."""

import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from .api.routes import router as api_router
from .hybrid.index_manager import IndexManager, create_index_manager
from libs.common.config import SearchConfig
from libs.common.logging import configure_logging
from libs.common.metrics import MetricsCollector, get_metrics_collector

logger = structlog.get_logger("search_service")

SERVICE_NAME = "search-service"


def route_template(request: Request) -> str:
    """Templated path of the matched route, including any mount prefix.

    The matched route's own ``path`` may be relative to the router it was
    included from, so the prefix is recovered from the raw request path.
    Unmatched requests fall back to the raw path.
    """
    route = request.scope.get("route")
    path = request.url.path
    regex = getattr(route, "path_regex", None)
    if regex is None:
        return path

    for i, char in enumerate(path):
        if char == "/" and regex.match(path[i:]):
            return path[:i] + route.path
    return route.path


def create_app(
    config: Optional[SearchConfig] = None,
    index_manager: Optional[IndexManager] = None,
    metrics_collector: Optional[MetricsCollector] = None
) -> FastAPI:
    """Build the FastAPI application.

    Components not supplied are created from ``SearchConfig`` at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = config or SearchConfig()
        configure_logging(SERVICE_NAME, settings.ml_log_level, settings.ml_log_format, env=settings.ml_env)

        logger.info("Starting search service")

        app.state.metrics_collector = metrics_collector or get_metrics_collector(SERVICE_NAME)
        app.state.index_manager = index_manager or create_index_manager(
            settings,
            metrics=app.state.metrics_collector
        )

        logger.info("Search service started successfully")

        yield

        logger.info("Shutting down search service")
        await app.state.index_manager.shutdown()
        logger.info("Search service shutdown complete")

    app = FastAPI(
        title="Knowledge Search Service",
        description="Semantic, keyword, and hybrid search over document chunks",
        version="0.1.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api/v1")

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
                content={"error": "Internal server error", "detail": str(e)}
            )

        duration = time.time() - start_time
        response.headers["X-Process-Time"] = str(duration)

        collector = getattr(request.app.state, "metrics_collector", None)
        if collector is not None:
            # Route template keeps document ids out of the label set
            collector.record_http_request(
                method=request.method,
                endpoint=route_template(request),
                status=status_code,
                duration=duration
            )

        return response

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        manager = getattr(request.app.state, "index_manager", None)
        healthy = manager is not None and await manager.health_check()
        if healthy:
            stats = manager.get_index_stats()
            return {
                "status": "healthy",
                "service": SERVICE_NAME,
                "documents": stats.document_count,
                "chunks": stats.chunk_count
            }
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "service": SERVICE_NAME}
        )

    @app.get("/metrics")
    async def metrics(request: Request):
        """Prometheus metrics endpoint."""
        collector = getattr(request.app.state, "metrics_collector", None)
        if collector is None:
            return Response(content="# No metrics available\n", media_type="text/plain")
        return Response(content=collector.get_metrics(), media_type="text/plain")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": SERVICE_NAME,
            "version": "0.1.0",
            "status": "running",
            "endpoints": {
                "health": "/health",
                "metrics": "/metrics",
                "search": "/api/v1/search",
                "documents": "/api/v1/documents",
                "stats": "/api/v1/index/stats"
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "service_search.app.main:app",
        host="0.0.0.0",
        port=SearchConfig().ml_search_port,
        log_level="info"
    )
