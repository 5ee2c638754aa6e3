"""
Main FastAPI application for the BragDoc workstreams backend.
Handles CORS, request logging middleware, lifespan events, error handlers,
and router registration.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings, workstream_config
from app.database import close_db, init_db
from app.errors import (
    WorkstreamError,
    validation_exception_handler,
    workstream_exception_handler,
)
from app.routers import achievements, health, workstreams
from app.services.embedding import EmbeddingClient

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Startup / shutdown helpers
# ---------------------------------------------------------------------------

async def _check_database() -> bool:
    """Initialise DB tables and verify the connection.  Returns True on success."""
    try:
        await init_db()
        logger.info("✓ Database connection OK")
        return True
    except Exception as exc:
        logger.error("✗ Database connection failed: %s", exc)
        raise


async def _check_embedding_api() -> bool:
    """Verify the embedding API is reachable.  Never raises; logs a warning instead."""
    if not settings.EMBEDDING_API_KEY:
        logger.warning("⚠ EMBEDDING_API_KEY is not set; embedding calls will be rejected upstream")
    reachable = await EmbeddingClient.from_config(workstream_config).check_health()
    if reachable:
        logger.info("✓ Embedding API reachable at %s", settings.EMBEDDING_BASE_URL)
    else:
        logger.warning(
            "⚠ Embedding API at %s is unreachable; generation will skip new embeddings",
            settings.EMBEDDING_BASE_URL,
        )
    return reachable


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting workstreams backend …")
    logger.info("=" * 60)

    # 1: Database (required; raises on failure)
    await _check_database()

    # 2: Embedding API (optional; logs warnings but continues)
    await _check_embedding_api()

    logger.info(
        "  Embedding model %s (%d dims), minimum %d achievements",
        workstream_config.embedding_model,
        workstream_config.vector_dimension,
        workstream_config.min_achievements,
    )
    logger.info("  Workstreams backend ready on http://%s:%d", settings.HOST, settings.PORT)
    logger.info("  Swagger UI : http://%s:%d/docs", settings.HOST, settings.PORT)
    logger.info("=" * 60)

    yield  # ← server is running

    logger.info("Shutting down workstreams backend …")
    await close_db()
    logger.info("✓ Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="BragDoc Workstreams API",
    description=(
        "Groups a user's achievements into thematic **workstreams** using "
        "embeddings and density-based clustering.\n\n"
        "Key endpoints:\n"
        "- `POST /api/workstreams/generate`: embed + cluster (full or incremental)\n"
        "- `POST /api/workstreams/auto-assign`: place new achievements only\n"
        "- `POST /api/workstreams/assign`: manual assignment\n"
        "- `GET  /api/workstreams`: list workstreams (optional date range)\n"
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
    if not request.url.path.startswith("/api/health") and request.url.path != "/":
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

app.add_exception_handler(WorkstreamError, workstream_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)


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
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "message": str(exc),
            "path": str(request.url.path),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,       prefix="/api/health",       tags=["Health"])
app.include_router(workstreams.router,  prefix="/api/workstreams",  tags=["Workstreams"])
app.include_router(achievements.router, prefix="/api/achievements", tags=["Achievements"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root: returns basic service info."""
    return {
        "name": "BragDoc Workstreams API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "workstreams": "/api/workstreams",
            "generate": "/api/workstreams/generate",
            "achievements": "/api/achievements",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
