"""
Shortlet Booking API - application factory.

Run with:
    uvicorn shortlet_booking.main:create_app --factory
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy import text

from . import __version__
from .config import Settings, get_settings
from .context import AppContext, build_context
from .database import create_all
from .errors import BookingServiceError
from .observability import configure_logging
from .routes import routers

logger = structlog.get_logger(__name__)

VALUE_ERROR_PREFIX = "Value error, "


def validation_message(exc: RequestValidationError) -> str:
    """First validation problem as a sentence a guest can act on."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"

    first = errors[0]
    message = str(first.get("msg", "Invalid request"))
    if message.startswith(VALUE_ERROR_PREFIX):
        return message[len(VALUE_ERROR_PREFIX):]

    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    if first.get("type") == "missing":
        return f"Missing required field: {field}" if field else "Missing required booking information"
    return f"{field}: {message}" if field else message


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

async def handle_service_error(request: Request, exc: BookingServiceError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "Request failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=exc.message,
        reference=exc.reference,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": validation_message(exc)},
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": "Internal server error"},
    )


# =============================================================================
# APPLICATION
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    ctx: AppContext = app.state.context
    if ctx.settings.CREATE_TABLES_ON_STARTUP:
        await create_all(ctx.engine)
    logger.info("Shortlet booking API started", environment=ctx.settings.ENVIRONMENT)
    yield
    await ctx.aclose()


def create_app(
    settings: Optional[Settings] = None,
    context: Optional[AppContext] = None,
) -> FastAPI:
    settings = settings or (context.settings if context else get_settings())
    configure_logging(settings)

    app = FastAPI(
        title="Shortlet Booking API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.context = context or build_context(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BookingServiceError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    for router in routers:
        app.include_router(router)

    app.mount("/metrics", make_asgi_app())

    @app.get("/health", tags=["health"])
    async def health():
        ctx: AppContext = app.state.context
        async with ctx.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "healthy", "version": __version__}

    return app
