"""
FastAPI dependencies shared by the page and auth routers.

Long-lived resources (settings, the shared httpx client, the session store
factory) live on `app.state`; per-request objects (the session store, the Auth
Service client, the guard) are built here from them.
"""

import logging
from typing import AsyncIterator, Optional

import httpx
from fastapi import Depends, HTTPException, Request, status

from .auth.client import AuthServiceClient
from .auth.gate import RouteGate
from .auth.guard import SessionGuard
from .auth.redirects import read_return_target
from .auth.resolver import AccessResolver
from .auth.storage import SessionStore
from .config import Settings, get_settings
from .directory import DirectoryClient
from .messages import MESSAGES

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "on"}


def get_app_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    return settings or get_settings()


def get_http_client(request: Request) -> httpx.AsyncClient:
    """
    Dependency to get the shared HTTP client from app state.

    Raises:
        HTTPException: 503 if the client was not initialized
    """
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="HTTP client not initialized",
        )
    return client


def get_session_store(request: Request) -> SessionStore:
    store = getattr(request.state, "session_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Session store not attached to request",
        )
    return store


def get_locale(request: Request, settings: Settings = Depends(get_app_settings)) -> str:
    lang = (request.query_params.get("lang") or "").lower()
    return lang if lang in MESSAGES else settings.DEFAULT_LOCALE


def get_auth_client(
    store: SessionStore = Depends(get_session_store),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_app_settings),
) -> AuthServiceClient:
    return AuthServiceClient(
        http_client,
        base_url=settings.auth_service_url_str,
        api_key=settings.AUTH_SERVICE_API_KEY,
        store=store,
        storage_key=settings.SESSION_STORAGE_KEY,
        staff_email_domain=settings.staff_email_domain,
    )


def get_directory_client(
    http_client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_app_settings),
) -> DirectoryClient:
    return DirectoryClient(
        http_client,
        base_url=settings.directory_service_url_str,
        api_key=settings.AUTH_SERVICE_API_KEY,
    )


def get_resolver(
    directory: DirectoryClient = Depends(get_directory_client),
    settings: Settings = Depends(get_app_settings),
) -> AccessResolver:
    return AccessResolver(
        directory,
        membership_roles=settings.membership_roles_set,
        fleet_roles=settings.fleet_roles_set,
        fleet_app_url=settings.FLEET_APP_URL,
    )


def get_gate(settings: Settings = Depends(get_app_settings)) -> RouteGate:
    return RouteGate(
        login_path="/login",
        reset_path=settings.RESET_SCREEN_PATH,
        default_path=settings.DEFAULT_LANDING_PATH,
    )


def get_return_to(request: Request, settings: Settings = Depends(get_app_settings)) -> Optional[str]:
    """Validated pending return target from the query string."""
    return read_return_target(request.query_params, settings.PARENT_DOMAIN)


def build_guard(
    request: Request,
    client: AuthServiceClient,
    resolver: AccessResolver,
    settings: Settings,
    return_to: Optional[str] = None,
) -> SessionGuard:
    """Create an unmounted guard for the current request."""
    return SessionGuard(
        client,
        resolver,
        current_path=request.url.path,
        return_to=return_to,
        tenant_id=request.query_params.get("tenant") or None,
        reset_path=settings.RESET_SCREEN_PATH,
        login_path="/login",
    )


async def get_guard(
    request: Request,
    client: AuthServiceClient = Depends(get_auth_client),
    resolver: AccessResolver = Depends(get_resolver),
    settings: Settings = Depends(get_app_settings),
    return_to: Optional[str] = Depends(get_return_to),
) -> AsyncIterator[SessionGuard]:
    """
    Mounted guard for page requests.

    A truthy `force_logout` query parameter wipes the local session first.
    """
    if (request.query_params.get("force_logout") or "").lower() in TRUTHY:
        logger.info("Forced logout requested", extra={"path": request.url.path})
        await client.sign_out(local_only=True)

    async with build_guard(request, client, resolver, settings, return_to) as guard:
        yield guard
