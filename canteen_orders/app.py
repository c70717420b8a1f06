"""
Canteen orders service - application entry point

Parents place meal orders for their students at a school canteen. Orders
are checked against the canteen cut-off, daily stock, wallet balance and
student allergens, then placed atomically.

Stack: FastAPI + DuckDB + structlog
"""

import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .api import api_router
from .config.settings import settings
from .core.database import db_manager
from .core.error_handler import (
    application_error_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from .core.exceptions import BaseApplicationError, DatabaseError
from .core.logging import add_context, clear_context, configure_logging
from .schemas.common import HealthResponse

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    try:
        db_manager.init_database()
        logger.info("database initialized", db_path=db_manager.db_path)
    except DatabaseError as e:
        # retried lazily on first request
        logger.error("database initialization failed", error=e.message)

    yield

    db_manager.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="School canteen order placement API",
        debug=settings.debug,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        clear_context()
        add_context(request_id=request.headers.get("X-Request-ID") or uuid.uuid4().hex,
                    method=request.method, path=request.url.path)
        return await call_next(request)

    app.add_exception_handler(BaseApplicationError, application_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health", response_model=HealthResponse)
    def health_check():
        try:
            db_manager.execute_one("SELECT 1")
            database = "connected"
        except DatabaseError as e:
            return HealthResponse(status="unhealthy", version=settings.api_version,
                                  database=f"error: {e.message}")
        return HealthResponse(status="healthy", version=settings.api_version, database=database)

    @app.get("/")
    def root():
        return {
            "name": settings.api_title,
            "version": settings.api_version,
            "description": "School canteen order placement API"
        }

    return app


app = create_app()
