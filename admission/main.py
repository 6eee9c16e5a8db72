"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from admission.api.v1.router import api_router
from admission.config import settings
from admission.core.exceptions import AppException
from admission.core.redis_client import check_redis_connection, close_redis_connection
from admission.database import AsyncSessionLocal, check_database_connection, engine
from admission.dependencies import get_transition_rules
from admission.middleware.error_handler import (
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from admission.middleware.logging import REQUEST_ID_HEADER, LoggingMiddleware, configure_logging

configure_logging()
logger = structlog.get_logger()


async def _load_transition_rules() -> int:
    """Load the rule table into the shared registry; returns the rule count."""
    async with AsyncSessionLocal() as session:
        table = await get_transition_rules().get_table(session)
    return len(table)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Startup checks only log; the service still starts when a backend is
    down so health endpoints can report it.
    """
    logger.info("application_startup", environment=settings.environment)

    if await check_database_connection():
        logger.info("database_connected")
    else:
        logger.error("database_connection_failed")

    if await check_redis_connection():
        logger.info("redis_connected")
    else:
        logger.warning("redis_unavailable", note="transition rules cached in process only")

    try:
        rule_count = await _load_transition_rules()
    except SQLAlchemyError as e:
        logger.error("transition_rules_load_failed", error=str(e))
    else:
        if rule_count == 0:
            logger.warning("transition_rules_empty", note="every status change will be rejected")

    yield

    logger.info("application_shutdown")
    await engine.dispose()
    close_redis_connection()
    logger.info("connections_closed")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Patient admission and appointment lifecycle API",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[REQUEST_ID_HEADER],
)
app.add_middleware(LoggingMiddleware)

app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, general_exception_handler)  # type: ignore[arg-type]

app.include_router(api_router, prefix=settings.api_v1_prefix)

# Prometheus metrics; status changes and conflicts show up per route and code
Instrumentator(
    should_group_status_codes=False,
    should_ignore_untemplated=True,
    excluded_handlers=["/docs", "/redoc", "/openapi.json", "/metrics"],
).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Service banner."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "admission.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
