"""FastAPI main application: narrative context engine debug API."""
import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.app.api import narrative as narrative_api
from backend.app.config import (
    ENABLE_STATE_SWEEP,
    STATE_MAX_AGE_SECONDS,
    STATE_SWEEP_INTERVAL_SECONDS,
)
from backend.app.content.corpus_loader import CorpusValidationError
from backend.app.core.error_handling import create_error_response, log_error_with_context
from backend.app.core.narrative_engine import NarrativeEngine

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Comma-separated origins allowed to call the debug API; "*" (default) opens it to any origin
CORS_ALLOW_ORIGINS = [
    o.strip() for o in os.environ.get("NARRATIVE_CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()
] or ["*"]


async def _sweep_loop(engine: NarrativeEngine, interval: float, max_age: float) -> None:
    """Evict idle story states on a timer until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await asyncio.to_thread(engine.sweep_states, max_age)
        except Exception as e:
            log_error_with_context(e, "state_sweep")
            continue
        if removed:
            logger.info("State sweep removed %d sessions (%d remain)", len(removed), len(engine.store))


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweep_task = None
    if ENABLE_STATE_SWEEP and STATE_SWEEP_INTERVAL_SECONDS > 0:
        sweep_task = asyncio.create_task(
            _sweep_loop(app.state.engine, STATE_SWEEP_INTERVAL_SECONDS, STATE_MAX_AGE_SECONDS)
        )
    logger.info(
        "API startup complete (data_dir=%s, sweep=%s, cors=%s)",
        app.state.engine.loader.data_dir,
        "on" if sweep_task else "off",
        ",".join(CORS_ALLOW_ORIGINS),
    )
    try:
        yield
    finally:
        if sweep_task is not None:
            sweep_task.cancel()
            try:
                await sweep_task
            except asyncio.CancelledError:
                pass


app = FastAPI(title="Narrative Context Engine API", version="0.1.0", lifespan=lifespan)
app.state.engine = NarrativeEngine()

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials="*" not in CORS_ALLOW_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


def _node_for_path(path: str) -> str:
    for fragment, node in (("/turn", "turn"), ("/search", "search"), ("/state", "state"),
                           ("/beats", "beats"), ("/validate", "corpus")):
        if fragment in path:
            return node
    return "api"


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTPExceptions with structured error responses."""
    node = _node_for_path(request.url.path)
    error_response = create_error_response(
        error_code=f"{node.upper()}_HTTP_{exc.status_code}",
        message=exc.detail,
        node=node,
        details={
            "status_code": exc.status_code,
            "path": request.url.path,
        },
    )
    return JSONResponse(status_code=exc.status_code, content=error_response)


@app.exception_handler(CorpusValidationError)
async def corpus_validation_handler(request: Request, exc: CorpusValidationError):
    log_error_with_context(
        error=exc,
        node_name="corpus",
        story_id=exc.story_id,
        extra_context={"path": request.url.path},
    )
    error_response = create_error_response(
        error_code="CORPUS_INVALID",
        message=str(exc),
        node="corpus",
        details={"story_id": exc.story_id, "problems": exc.problems},
    )
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=error_response)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler: return structured error responses with logging."""
    params = getattr(request, "path_params", {}) or {}
    node = _node_for_path(request.url.path)

    log_error_with_context(
        error=exc,
        node_name=node,
        story_id=params.get("story_id"),
        session_id=params.get("session_id"),
        extra_context={
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
        },
    )

    message = str(exc) or f"An error occurred: {type(exc).__name__}"
    error_response = create_error_response(
        error_code=f"{node.upper()}_ERROR",
        message=message,
        node=node,
        details={
            "exception_type": type(exc).__name__,
            "path": request.url.path,
        },
    )
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=error_response)


app.include_router(narrative_api.router)


@app.get("/")
async def root():
    return {"message": "Narrative Context Engine API", "version": "0.1.0"}


@app.get("/health")
async def health():
    engine: NarrativeEngine = app.state.engine
    return {"status": "healthy", "sessions": len(engine.store)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
