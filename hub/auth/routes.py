"""
Authentication API.

JSON endpoints behind the Hub's forms plus the federated sign-in round-trip.
Every state-changing call runs inside a mounted session guard so the access
verdict for a freshly signed-in user is computed exactly as on a page load.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse

from ..config import Settings
from ..dependencies import (
    build_guard,
    get_app_settings,
    get_auth_client,
    get_directory_client,
    get_gate,
    get_guard,
    get_locale,
    get_resolver,
    get_return_to,
)
from ..directory import DirectoryClient, DirectoryLookupError
from ..messages import get_message
from ..models import (
    ChangePasswordRequest,
    DestinationResponse,
    ForgotPasswordRequest,
    LoginRequest,
    ResetPasswordRequest,
    SessionResponse,
    SignupRequest,
)
from .client import AuthServiceClient
from .errors import FormValidationError, HubAuthError, MembershipDenied, NotAuthenticated
from .gate import Destination, RouteGate, Screen
from .guard import AuthContext, GuardState, SessionGuard
from .redirects import read_return_target, sanitize_return_target, with_query
from .resolver import AccessResolver, VerdictKind
from .validation import (
    PASSWORD_MIN_LENGTH,
    RESET_PASSWORD_MIN_LENGTH,
    is_password_history_valid,
    validate_secret,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
)

RETURN_TO_SESSION_KEY = "return_to"


def destination_response(destination: Destination, context: AuthContext, locale: str, message_key: Optional[str] = None) -> DestinationResponse:
    key = message_key or context.notice
    return DestinationResponse(
        kind=destination.kind.value,
        target=destination.target,
        message=get_message(key, locale) if key else None,
    )


def raise_if_denied(context: AuthContext) -> None:
    """Raise when the guard signed the user out because access was denied."""
    if context.verdict is not None and context.verdict.kind == VerdictKind.DENY:
        raise MembershipDenied(reason=context.verdict.reason)


async def post_login_delay(settings: Settings) -> None:
    if settings.POST_LOGIN_REDIRECT_DELAY_MS:
        await asyncio.sleep(settings.POST_LOGIN_REDIRECT_DELAY_MS / 1000)


def body_or_query_return_to(request: Request, value: Optional[str], settings: Settings) -> Optional[str]:
    return sanitize_return_target(value, settings.PARENT_DOMAIN) or read_return_target(
        request.query_params, settings.PARENT_DOMAIN
    )


# =============================================================================
# Sign-in / Sign-out
# =============================================================================

@auth_router.post("/login", response_model=DestinationResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    client: AuthServiceClient = Depends(get_auth_client),
    resolver: AccessResolver = Depends(get_resolver),
    gate: RouteGate = Depends(get_gate),
    settings: Settings = Depends(get_app_settings),
    locale: str = Depends(get_locale),
) -> DestinationResponse:
    """
    Sign in with an email or staff login and a password/PIN.

    Returns where the browser should go next: the pending return target, the
    default landing path, the credential change screen or the fleet app.

    Raises:
        InvalidCredentials, RateLimited, EmailUnconfirmed: From the Auth Service
        MembershipDenied: The account has no usable membership
    """
    return_to = body_or_query_return_to(request, payload.return_to, settings)

    async with build_guard(request, client, resolver, settings, return_to) as guard:
        await client.sign_in_with_password(payload.identifier, payload.password)
        context = guard.context

    raise_if_denied(context)
    await post_login_delay(settings)

    destination = gate.resolve(context, Screen.LOGIN, return_to)
    return destination_response(destination, context, locale)


@auth_router.get("/oauth/{provider}", response_class=RedirectResponse)
async def oauth_login(
    provider: str,
    request: Request,
    client: AuthServiceClient = Depends(get_auth_client),
    settings: Settings = Depends(get_app_settings),
    return_to: Optional[str] = Depends(get_return_to),
):
    """
    Start a federated sign-in.

    The PKCE verifier goes into the session store; the pending return target
    is remembered in the Hub's signed session cookie until the callback.
    """
    provider = provider.lower()
    if provider not in settings.oauth_providers_list:
        raise FormValidationError("oauth_provider_unsupported")

    if return_to:
        request.session[RETURN_TO_SESSION_KEY] = return_to
    else:
        request.session.pop(RETURN_TO_SESSION_KEY, None)

    callback_url = f"{settings.HUB_PUBLIC_URL.rstrip('/')}/auth/callback"
    authorization_url = client.sign_in_with_oauth(provider, callback_url)
    logger.info("Starting federated sign-in", extra={"provider": provider})
    return RedirectResponse(url=authorization_url, status_code=302)


@auth_router.get("/callback", response_class=RedirectResponse)
async def oauth_callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code from the Auth Service"),
    error: Optional[str] = Query(None, description="Error code if sign-in failed"),
    error_description: Optional[str] = Query(None, description="Error description"),
    client: AuthServiceClient = Depends(get_auth_client),
    resolver: AccessResolver = Depends(get_resolver),
    gate: RouteGate = Depends(get_gate),
    settings: Settings = Depends(get_app_settings),
):
    """Complete a federated sign-in and send the browser on."""
    return_to = sanitize_return_target(request.session.pop(RETURN_TO_SESSION_KEY, None), settings.PARENT_DOMAIN)

    if error or not code:
        logger.warning(
            "Federated sign-in failed",
            extra={"provider_error": error, "provider_error_description": error_description},
        )
        return RedirectResponse(with_query("/login", returnTo=return_to, error="auth_error"), status_code=302)

    async with build_guard(request, client, resolver, settings, return_to) as guard:
        try:
            await client.exchange_code_for_session(code)
        except HubAuthError as e:
            logger.warning(f"Authorization code exchange failed: {e.code}")
            return RedirectResponse(with_query("/login", returnTo=return_to, error=e.code), status_code=302)
        context = guard.context

    if context.state == GuardState.UNAUTHENTICATED:
        return RedirectResponse(context.destination or with_query("/login", error=context.error), status_code=302)

    destination = gate.resolve(context, Screen.LOGIN, return_to)
    return RedirectResponse(destination.target or settings.DEFAULT_LANDING_PATH, status_code=302)


@auth_router.post("/logout", response_model=DestinationResponse)
async def logout(
    client: AuthServiceClient = Depends(get_auth_client),
    locale: str = Depends(get_locale),
) -> DestinationResponse:
    await client.sign_out()
    return DestinationResponse(kind="route", target="/login", message=get_message("signed_out", locale))


@auth_router.get("/session", response_model=SessionResponse)
async def current_session(guard: SessionGuard = Depends(get_guard)) -> SessionResponse:
    """Authentication state of the caller."""
    context = guard.context
    session = context.session
    return SessionResponse(
        state=context.state.value,
        user_id=session.user_id if session else None,
        email=session.email if session else None,
        expires_at=session.expires_at if session else None,
        notice=context.notice,
    )


# =============================================================================
# Credentials
# =============================================================================

@auth_router.post("/change-password", response_model=DestinationResponse)
async def change_password(
    payload: ChangePasswordRequest,
    request: Request,
    client: AuthServiceClient = Depends(get_auth_client),
    resolver: AccessResolver = Depends(get_resolver),
    directory: DirectoryClient = Depends(get_directory_client),
    settings: Settings = Depends(get_app_settings),
    locale: str = Depends(get_locale),
) -> DestinationResponse:
    """
    Change the password or PIN of the signed-in user.

    The current secret is verified with a silent sign-in. On success the
    must-reset flag is cleared and the user is sent to the pending return
    target or the default landing path.
    """
    return_to = body_or_query_return_to(request, payload.return_to, settings)

    async with build_guard(request, client, resolver, settings, return_to) as guard:
        context = guard.context
    raise_if_denied(context)
    if not context.is_authenticated:
        raise NotAuthenticated()
    session = context.session

    if payload.new_password != payload.confirm_password:
        raise FormValidationError("passwords_mismatch")
    result = validate_secret(payload.new_password, payload.secret_type)
    if not result.is_valid:
        raise FormValidationError(result.first_error, min_length=PASSWORD_MIN_LENGTH)
    if not is_password_history_valid(payload.new_password, payload.current_password):
        raise FormValidationError("password_reused")

    if not await client.verify_credentials(session.email or "", payload.current_password):
        raise FormValidationError("current_password_invalid")

    await client.update_credentials(payload.new_password)
    logger.info("Credentials changed", extra={"user_id": session.user_id})

    try:
        await directory.clear_must_reset(session.user_id, session.access_token)
    except DirectoryLookupError as e:
        logger.error(f"Could not clear must-reset flag: {e}", extra={"user_id": session.user_id})

    await post_login_delay(settings)
    return destination_response(
        Destination.to(return_to or settings.DEFAULT_LANDING_PATH), context, locale, "credentials_updated"
    )


@auth_router.post("/forgot-password", response_model=DestinationResponse)
async def forgot_password(
    payload: ForgotPasswordRequest,
    client: AuthServiceClient = Depends(get_auth_client),
    settings: Settings = Depends(get_app_settings),
    locale: str = Depends(get_locale),
) -> DestinationResponse:
    """
    Send a recovery email. Staff logins (no '@') are refused; their
    supervisor resets them.
    """
    redirect_to = f"{settings.HUB_PUBLIC_URL.rstrip('/')}/reset-password"
    await client.request_password_reset(payload.identifier, redirect_to)
    return DestinationResponse(kind="none", message=get_message("reset_email_sent", locale))


@auth_router.post("/reset-password", response_model=DestinationResponse)
async def reset_password(
    payload: ResetPasswordRequest,
    request: Request,
    client: AuthServiceClient = Depends(get_auth_client),
    resolver: AccessResolver = Depends(get_resolver),
    settings: Settings = Depends(get_app_settings),
    locale: str = Depends(get_locale),
) -> DestinationResponse:
    async with build_guard(request, client, resolver, settings) as guard:
        context = guard.context
    raise_if_denied(context)
    if not context.is_authenticated:
        raise NotAuthenticated()

    if payload.new_password != payload.confirm_password:
        raise FormValidationError("passwords_mismatch")
    if len(payload.new_password) < RESET_PASSWORD_MIN_LENGTH:
        raise FormValidationError("password_too_short", min_length=RESET_PASSWORD_MIN_LENGTH)

    await client.update_credentials(payload.new_password)
    logger.info("Password reset completed", extra={"user_id": context.user_id})
    return destination_response(
        Destination.route(settings.DEFAULT_LANDING_PATH), context, locale, "credentials_updated"
    )


# =============================================================================
# Sign-up
# =============================================================================

@auth_router.post("/signup", response_model=DestinationResponse)
async def signup(
    payload: SignupRequest,
    request: Request,
    client: AuthServiceClient = Depends(get_auth_client),
    directory: DirectoryClient = Depends(get_directory_client),
    settings: Settings = Depends(get_app_settings),
    locale: str = Depends(get_locale),
) -> DestinationResponse:
    """
    Create an account and its profile row.

    A failed profile insert is logged; the account itself already exists.
    """
    if payload.password != payload.confirm_password:
        raise FormValidationError("passwords_mismatch")
    if not payload.accept_terms:
        raise FormValidationError("terms_required")

    redirect_to = f"{settings.HUB_PUBLIC_URL.rstrip('/')}/login"
    user_id, session = await client.sign_up(str(payload.email), payload.password, redirect_to)

    ip_address = request.client.host if request.client else None
    try:
        await directory.create_profile(
            user_id,
            session.access_token if session else "",
            ip_address=ip_address,
            marketing_consent=payload.marketing_consent,
        )
    except DirectoryLookupError as e:
        logger.error(f"Profile creation failed: {e}", extra={"user_id": user_id})

    if session is None:
        return DestinationResponse(kind="none", message=get_message("signup_confirm_email", locale))
    return DestinationResponse(kind="route", target=settings.DEFAULT_LANDING_PATH)
