"""
FastAPI Hub Application Factory
================================

Entry point of the Hub single sign-on gateway.

Architecture:
    Browser → Hub (this service) → Auth Service / Directory Service
    Sibling apps on *.PARENT_DOMAIN read the session cookie the Hub writes.

Routers:
    - /auth/*       : JSON auth API (login, OAuth round-trip, credentials, sign-up)
    - /login, /dashboard, ... : guarded screens
    - /health       : Health check endpoint

Running the Service:
    Development:
        uvicorn --factory hub.main:get_application --reload --port 8080

    Production:
        uvicorn --factory hub.main:get_application --host 0.0.0.0 --port 8080 --workers 4
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from . import __version__
from .auth.errors import HubAuthError
from .auth.routes import auth_router
from .auth.storage import session_store_factory
from .config import Settings, get_settings, validate_configuration
from .dependencies import get_locale
from .messages import get_message
from .models import ErrorResponse, HealthResponse
from .pages import pages_router

logger = logging.getLogger("hub.main")


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)],
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup: configure logging, validate configuration, open the shared HTTP
    client for the Auth and Directory services.
    Shutdown: close the HTTP client.
    """
    settings: Settings = app.state.settings
    setup_logging(settings.LOG_LEVEL)

    status = validate_configuration(settings)
    for warning in status["warnings"]:
        logger.warning(f"Configuration warning: {warning}")
    for error in status["errors"]:
        logger.error(f"Configuration error: {error}")

    owns_client = getattr(app.state, "http_client", None) is None
    if owns_client:
        app.state.http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS))

    logger.info(
        "Hub started",
        extra={
            "parent_domain": settings.PARENT_DOMAIN,
            "shared_cookie_domain": status["shared_cookie_domain"],
            "version": __version__,
        },
    )

    yield

    if owns_client:
        await app.state.http_client.aclose()
        app.state.http_client = None
    logger.info("Hub shutdown complete")


def create_application(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - CORS and signed-session middleware
        - Per-request session store
        - Route handlers
        - Exception handlers

    Args:
        settings: Explicit settings (tests); loaded from the environment otherwise

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Hub",
        description="Single sign-on gateway with cross-domain sessions",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.session_store_factory = session_store_factory(settings)

    @app.middleware("http")
    async def attach_session_store(request: Request, call_next):
        store = request.app.state.session_store_factory(request.cookies)
        request.state.session_store = store
        response = await call_next(request)
        store.apply(response)
        return response

    # Remembers the pending return target across the OAuth round-trip
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.HUB_SECRET_KEY,
        session_cookie="hub_flow",
        max_age=600,
        same_site="lax",
        https_only=settings.public_url_is_https,
    )

    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(auth_router)
    app.include_router(pages_router)

    @app.get("/health", response_model=HealthResponse, tags=["system"])
    async def health_check() -> HealthResponse:
        return HealthResponse(status="ok", version=__version__)

    @app.exception_handler(HubAuthError)
    async def hub_auth_error_handler(request: Request, exc: HubAuthError) -> JSONResponse:
        """Localized error body for every auth failure."""
        locale = get_locale(request, settings)
        params = getattr(exc, "params", {})
        logger.info(
            f"Auth error: {exc.code}",
            extra={"path": request.url.path, "status_code": exc.status_code},
        )
        body = ErrorResponse(error=exc.code, message=get_message(exc.code, locale, **params))
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=True,
        )
        body = ErrorResponse(
            error="internal_server_error",
            message=get_message("internal_error", settings.DEFAULT_LOCALE),
            details={"exception": str(exc)} if settings.LOG_LEVEL == "DEBUG" else None,
        )
        return JSONResponse(status_code=500, content=body.model_dump(mode="json"))

    return app


def get_application() -> FastAPI:
    """Factory for `uvicorn --factory hub.main:get_application`."""
    return create_application()


if __name__ == "__main__":
    # python -m hub.main
    settings = get_settings()
    uvicorn.run(
        "hub.main:get_application",
        factory=True,
        host=settings.HUB_HOST,
        port=settings.HUB_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
