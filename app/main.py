"""
FastAPI application for the MindMap backend.

Uploads are extracted and validated inside the request; structuring and
question generation then run as background tasks owned by the pipeline
manager, so clients poll ``/api/documents/{id}/status``.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import close_db, init_db
from app.routers import attempts, documents, flashcards, health, nodes, reviews
from app.services.llm_service import OllamaLLMService
from app.services.pipeline_manager import pipeline_manager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"

# Polled by the frontend; kept out of the request log
QUIET_PATHS = frozenset({"/", "/api/health", "/api/health/"})


async def _report_ollama() -> None:
    """Log whether the generative model is usable.  Never fails startup."""
    llm = OllamaLLMService()
    available = await llm.list_models()
    if available is None:
        logger.warning(
            "Ollama is not reachable at %s (start it with: ollama serve). "
            "Documents will get fallback mind maps and questions until it is up.",
            llm.base_url,
        )
        return

    logger.info("Ollama reachable, models: %s", available)
    if llm.has_model(available):
        logger.info("LLM model '%s' is available", llm.model)
    else:
        logger.warning("LLM model '%s' not found, run: ollama pull %s", llm.model, llm.model)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting MindMap backend %s", API_VERSION)

    # The database is required; a failure here aborts startup
    try:
        await init_db()
    except Exception as exc:
        logger.error("Database initialisation failed: %s", exc)
        raise

    await _report_ollama()
    logger.info(
        "MindMap backend ready on http://%s:%d (docs at /docs)", settings.HOST, settings.PORT
    )

    yield

    logger.info("Shutting down MindMap backend")
    await pipeline_manager.shutdown()
    await close_db()


app = FastAPI(
    title="MindMap API",
    description=(
        "Turn uploaded documents into three-level mind maps, generate "
        "multiple-choice questions for every node, and schedule reviews from "
        "each learner's answers."
    ),
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status and latency; expose latency as ``X-Process-Time``."""
    started = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - started) * 1000, 2)

    if request.url.path not in QUIET_PATHS:
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
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
            "detail": "Internal server error",
            "path": request.url.path,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


app.include_router(health.router, prefix="/api/health", tags=["Health"])
app.include_router(documents.router, prefix="/api/documents", tags=["Documents"])
app.include_router(nodes.router, prefix="/api/nodes", tags=["Nodes"])
app.include_router(attempts.router, prefix="/api/attempts", tags=["Attempts"])
app.include_router(reviews.router, prefix="/api/reviews", tags=["Reviews"])
app.include_router(flashcards.router, prefix="/api/flashcards", tags=["Flashcards"])


@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    return {
        "name": "MindMap API",
        "version": API_VERSION,
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "documents": "/api/documents",
            "nodes": "/api/nodes",
            "attempts": "/api/attempts",
            "reviews": "/api/reviews",
            "flashcards": "/api/flashcards",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT, reload=True)
