"""
Anxiety Companion API

Application entry point: logging, lifespan, error mapping and routers.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from companion.api.routes import conversations, health
from companion.config import settings
from companion.core.conversation import (
    ConversationNotFound,
    get_conversation_manager,
    reset_conversation_manager,
)
from companion.infra.claude import ClaudeClient
from companion.infra.database import close_db, init_db

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("uvicorn.access", "anthropic", "httpx")


def setup_logging() -> None:
    """Root logging for the process; SQL echo only in debug."""
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=LOG_FORMAT,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


logger = logging.getLogger(__name__)


async def on_startup() -> None:
    health.set_start_time()

    # Schema creation is a development convenience; production runs migrations
    if settings.persistence_backend == "sql" and settings.is_development:
        try:
            await init_db()
            logger.info("Conversation tables created")
        except Exception as e:
            logger.warning(f"Could not create conversation tables: {e}")

    if settings.remote_analysis_enabled:
        logger.info(f"Remote analysis: {settings.claude_analysis_model}")
    else:
        logger.warning("ANTHROPIC_API_KEY not set, every message uses the heuristic classifier")

    logger.info(
        f"Store: {settings.persistence_backend}, default persona: {settings.default_persona}"
    )


async def on_shutdown() -> None:
    # Pending turns are cancelled; queued writes are flushed first
    await get_conversation_manager().shutdown()
    reset_conversation_manager()
    await ClaudeClient.close_instance()
    await close_db()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info(f"Starting {settings.app_name} ({settings.app_env})")
    await on_startup()

    yield

    logger.info("Stopping conversation pipelines...")
    await on_shutdown()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Anxiety Companion API",
    description="""
    Conversation core for an anxiety support companion.

    ## Features
    - Remote anxiety analysis with a deterministic heuristic fallback
    - Crisis escalation signal for the client's crisis-resources surface
    - Per-conversation message queue with duplicate suppression
    - English and Spanish replies, Vanessa and Monica personas
    """,
    version=health.VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url=None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors without the non-serializable ctx payloads."""
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning(f"Rejected {request.method} {request.url.path}: {len(exc.errors())} validation errors")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": "Validation error", "detail": jsonable_errors(exc)},
    )


@app.exception_handler(ConversationNotFound)
async def conversation_not_found_handler(request: Request, exc: ConversationNotFound) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": "Conversation not found", "detail": str(exc)},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            # Internals are only exposed while developing
            "detail": str(exc) if settings.is_development else None,
        },
    )


@app.middleware("http")
async def request_timing_middleware(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    if settings.debug:
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.debug(f"{request.method} {request.url.path} -> {response.status_code} in {elapsed_ms:.1f}ms")
    return response


app.include_router(health.router)
app.include_router(conversations.router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    """Service identity and where to find the docs."""
    return {
        "name": settings.app_name,
        "version": health.VERSION,
        "status": "running",
        "environment": settings.app_env,
        "docs": "/docs" if settings.is_development else None,
        "personas": ["vanessa", "monica"],
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "companion.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
