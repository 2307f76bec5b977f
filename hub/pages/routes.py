"""
Screen endpoints.

Every page request runs the session guard and the route gate. The answer is
either a 302 redirect or a JSON screen descriptor the front-end renders.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, RedirectResponse, Response

from ..auth.client import AuthServiceClient
from ..auth.errors import HubAuthError
from ..auth.gate import Destination, RouteGate, Screen
from ..auth.guard import AuthContext, GuardState, SessionGuard
from ..config import Settings
from ..dependencies import (
    get_app_settings,
    get_auth_client,
    get_directory_client,
    get_gate,
    get_guard,
    get_locale,
    get_return_to,
)
from ..directory import DirectoryClient, DirectoryLookupError
from ..messages import get_message
from ..models import ScreenResponse

logger = logging.getLogger(__name__)

pages_router = APIRouter(tags=["pages"])


def screen_response(
    destination: Destination,
    context: AuthContext,
    locale: str,
    return_to: Optional[str] = None,
    error: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> Response:
    """Turn a gate decision into an HTTP response."""
    if destination.is_redirect:
        return RedirectResponse(destination.target, status_code=302)

    error = error or context.error
    user = None
    if context.session is not None:
        user = {"id": context.session.user_id, "email": context.session.email}

    screen = ScreenResponse(
        screen=destination.screen.value,
        state=context.state.value,
        error=error,
        message=get_message(error, locale) if error else None,
        notice=context.notice,
        return_to=return_to,
        user=user,
        data=data or {},
    )
    return JSONResponse(screen.model_dump(mode="json"))


@pages_router.get("/", response_model=None)
async def landing(
    guard: SessionGuard = Depends(get_guard),
    gate: RouteGate = Depends(get_gate),
    locale: str = Depends(get_locale),
    return_to: Optional[str] = Depends(get_return_to),
) -> Response:
    destination = gate.resolve(guard.context, Screen.LANDING, return_to)
    return screen_response(destination, guard.context, locale, return_to)


@pages_router.get("/login", response_model=None)
async def login_page(
    guard: SessionGuard = Depends(get_guard),
    gate: RouteGate = Depends(get_gate),
    settings: Settings = Depends(get_app_settings),
    locale: str = Depends(get_locale),
    return_to: Optional[str] = Depends(get_return_to),
    error: Optional[str] = Query(None, max_length=64),
) -> Response:
    """
    Login screen.

    An already signed-in user is sent on to the pending return target or the
    default landing path.
    """
    destination = gate.resolve(guard.context, Screen.LOGIN, return_to)
    return screen_response(
        destination,
        guard.context,
        locale,
        return_to,
        error=error,
        data={"oauth_providers": settings.oauth_providers_list},
    )


@pages_router.get("/signup", response_model=None)
async def signup_page(
    guard: SessionGuard = Depends(get_guard),
    gate: RouteGate = Depends(get_gate),
    locale: str = Depends(get_locale),
    return_to: Optional[str] = Depends(get_return_to),
) -> Response:
    destination = gate.resolve(guard.context, Screen.SIGNUP, return_to)
    return screen_response(destination, guard.context, locale, return_to)


@pages_router.get("/forgot-password", response_model=None)
async def forgot_password_page(
    guard: SessionGuard = Depends(get_guard),
    gate: RouteGate = Depends(get_gate),
    locale: str = Depends(get_locale),
) -> Response:
    destination = gate.resolve(guard.context, Screen.FORGOT_PASSWORD)
    return screen_response(destination, guard.context, locale)


@pages_router.get("/reset-password", response_model=None)
async def reset_password_page(
    guard: SessionGuard = Depends(get_guard),
    client: AuthServiceClient = Depends(get_auth_client),
    gate: RouteGate = Depends(get_gate),
    locale: str = Depends(get_locale),
    code: Optional[str] = Query(None, max_length=512),
    error: Optional[str] = Query(None, max_length=128),
) -> Response:
    """
    Target of the recovery email.

    The link carries a PKCE code that is exchanged for a session here; an
    invalid or expired link renders the screen with an error.
    """
    if error:
        logger.info("Recovery link reported an error", extra={"provider_error": error})
        return screen_response(Destination.render(Screen.RESET_PASSWORD), guard.context, locale, error="reset_link_invalid")

    if code:
        try:
            await client.exchange_code_for_session(code)
        except HubAuthError as e:
            logger.warning(f"Recovery code exchange failed: {e.code}")
            return screen_response(
                Destination.render(Screen.RESET_PASSWORD), guard.context, locale, error="reset_link_invalid"
            )

    destination = gate.resolve(guard.context, Screen.RESET_PASSWORD)
    return screen_response(destination, guard.context, locale)


@pages_router.get("/change-password", response_model=None)
async def change_password_page(
    guard: SessionGuard = Depends(get_guard),
    gate: RouteGate = Depends(get_gate),
    locale: str = Depends(get_locale),
    return_to: Optional[str] = Depends(get_return_to),
) -> Response:
    destination = gate.resolve(guard.context, Screen.CHANGE_PASSWORD, return_to)
    return screen_response(
        destination,
        guard.context,
        locale,
        return_to,
        data={"must_reset": guard.context.state == GuardState.AUTHENTICATED_MUST_RESET},
    )


@pages_router.get("/dashboard", response_model=None)
async def dashboard_page(
    guard: SessionGuard = Depends(get_guard),
    directory: DirectoryClient = Depends(get_directory_client),
    gate: RouteGate = Depends(get_gate),
    locale: str = Depends(get_locale),
    return_to: Optional[str] = Depends(get_return_to),
) -> Response:
    """
    Application launcher.

    Lists active applications; a valid return target sends the user straight
    back to the application that asked for the sign-in.
    """
    context = guard.context
    destination = gate.resolve(context, Screen.DASHBOARD, return_to)
    if destination.is_redirect:
        return screen_response(destination, context, locale)

    applications = []
    notice = None
    try:
        applications = await directory.list_applications(context.session.access_token)
    except DirectoryLookupError as e:
        logger.warning(f"Could not load applications: {e}", extra={"user_id": context.user_id})
        notice = "directory_unavailable"

    data = {
        "applications": [
            {**app.model_dump(mode="json"), "launch_url": app.launch_url} for app in applications
        ],
    }
    if notice:
        context = context.evolve(notice=notice)
    return screen_response(destination, context, locale, data=data)
