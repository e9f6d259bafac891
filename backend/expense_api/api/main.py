"""Entry point for the FastAPI application.

This module constructs the FastAPI app, includes all routers and
registers the exception handlers that turn pipeline errors into the
``{"error": {...}}`` contract. When run with uvicorn it loads
configuration from ``expense_api.core.config``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from expense_api.api.dependencies import close_shared_clients
from expense_api.api.error_handlers import (
    generic_exception_handler,
    pipeline_exception_handler,
    validation_exception_handler,
)
from expense_api.api.routes.categories import router as categories_router
from expense_api.api.routes.expenses import router as expenses_router
from expense_api.api.routes.profiles import router as profiles_router
from expense_api.api.routes.receipts import router as receipts_router
from expense_api.core.config import settings
from expense_api.core.observability import init_sentry
from expense_api.services.errors import PipelineError

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    logger.info("Starting up...")
    if init_sentry("api"):
        logger.info("Sentry SDK initialized (api)")
    yield
    logger.info("Shutting down...")
    await close_shared_clients()


def _cors_origins() -> list[str]:
    # Development allows everything; otherwise only the configured origins.
    if (settings.ENVIRONMENT or "development").lower() == "development":
        return ["*"]
    seen: set[str] = set()
    return [o for o in (settings.BACKEND_CORS_ORIGINS or []) if not (o in seen or seen.add(o))]


def create_app() -> FastAPI:
    app = FastAPI(title=settings.PROJECT_NAME, version="1.0.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PipelineError, pipeline_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    for router in (receipts_router, expenses_router, categories_router, profiles_router):
        app.include_router(router, prefix=settings.API_PREFIX)

    @app.api_route("/health", methods=["GET", "HEAD"])
    async def health_check():
        """Health check endpoint (supports GET & HEAD)."""
        return {"status": "healthy"}

    return app


app = create_app()
