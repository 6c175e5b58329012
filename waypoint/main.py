"""
Main FastAPI application for the Waypoint roadmap service.
Handles CORS, request logging middleware, lifespan events, error mapping and
router registration.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from waypoint.config import settings
from waypoint.database import close_db, init_db
from waypoint.exceptions import (
    ConfigurationError,
    EmbeddingError,
    GenerationError,
    GenerationTimeoutError,
    SearchError,
    StoreError,
)
from waypoint.routers import embeddings, health, roadmaps, templates

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting Waypoint roadmap service …")
    logger.info("=" * 60)

    # Database (required; raises on failure)
    try:
        await init_db()
        logger.info("✓ Database connection OK")
    except Exception as exc:
        logger.error("✗ Database connection failed: %s", exc)
        raise

    if not settings.EMBEDDING_API_KEY:
        logger.warning(
            "⚠ EMBEDDING_API_KEY is not set; template search and roadmap "
            "generation will be unavailable"
        )
    if not settings.LLM_API_KEY:
        logger.warning("⚠ LLM_API_KEY is not set; generation on cache miss will fail")

    logger.info(
        "  Retrieval defaults: threshold=%.2f limit=%d model=%s",
        settings.SIMILARITY_THRESHOLD,
        settings.MATCH_LIMIT,
        settings.EMBEDDING_MODEL,
    )
    logger.info("  Waypoint ready on http://%s:%d", settings.HOST, settings.PORT)
    logger.info("  Swagger UI : http://%s:%d/docs", settings.HOST, settings.PORT)
    logger.info("=" * 60)

    yield  # ← server is running

    logger.info("Shutting down Waypoint …")
    await close_db()
    logger.info("✓ Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Waypoint API",
    description=(
        "**Waypoint** — personalized learning roadmaps with template retrieval.\n\n"
        "Key endpoints:\n"
        "- `POST /api/roadmaps/generate` — retrieve-or-generate a roadmap\n"
        "- `POST /api/templates/search` — diagnostic template similarity search\n"
        "- `GET  /api/templates/popular` — most-used templates\n"
        "- `GET  /api/embeddings/coverage` — content embedding coverage\n"
        "- `POST /api/embeddings/run` — start the batch embedding job\n"
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches an ``X-Process-Time`` header (milliseconds) to every response.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    # Skip noisy health-check polling
    if request.url.path not in ("/api/health/", "/"):
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

def _error_response(request: Request, status_code: int, detail: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": detail,
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": str(request.url.path),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


@app.exception_handler(SearchError)
async def search_error_handler(request: Request, exc: SearchError):
    if exc.malformed_query:
        return _error_response(
            request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Malformed query vector", exc
        )
    logger.error("Template search failed on %s: %s", request.url.path, exc)
    return _error_response(
        request, status.HTTP_503_SERVICE_UNAVAILABLE, "Template search unavailable", exc
    )


@app.exception_handler(GenerationTimeoutError)
async def generation_timeout_handler(request: Request, exc: GenerationTimeoutError):
    logger.error("Generation timed out on %s: %s", request.url.path, exc)
    return _error_response(
        request, status.HTTP_504_GATEWAY_TIMEOUT, "Roadmap generation timed out", exc
    )


@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError):
    logger.error("Generation failed on %s: %s", request.url.path, exc)
    return _error_response(
        request, status.HTTP_502_BAD_GATEWAY, "Roadmap generation failed", exc
    )


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("Store error on %s: %s", request.url.path, exc)
    return _error_response(
        request, status.HTTP_503_SERVICE_UNAVAILABLE, "Database unavailable", exc
    )


@app.exception_handler(EmbeddingError)
async def embedding_error_handler(request: Request, exc: EmbeddingError):
    logger.error("Embedding error on %s: %s", request.url.path, exc)
    return _error_response(
        request, status.HTTP_503_SERVICE_UNAVAILABLE, "Embedding service unavailable", exc
    )


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Configuration error on %s: %s", request.url.path, exc)
    return _error_response(
        request, status.HTTP_503_SERVICE_UNAVAILABLE, "Service not configured", exc
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return _error_response(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", exc
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,      prefix="/api/health",     tags=["Health"])
app.include_router(roadmaps.router,    prefix="/api/roadmaps",   tags=["Roadmaps"])
app.include_router(templates.router,   prefix="/api/templates",  tags=["Templates"])
app.include_router(embeddings.router,  prefix="/api/embeddings", tags=["Embeddings"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root — returns basic service info."""
    return {
        "name": "Waypoint API",
        "version": "0.1.0",
        "description": "Personalized learning roadmap service",
        "docs": "/docs",
        "health": "/api/health/",
        "endpoints": {
            "roadmaps": "/api/roadmaps",
            "templates": "/api/templates",
            "embeddings": "/api/embeddings",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "waypoint.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
