"""
Auth Service client.

Talks to the GoTrue-compatible REST API of the Auth Service over a shared
httpx.AsyncClient. The only state it owns is an in-process session cache;
the session itself lives in a `SessionStore` so sibling subdomain apps can
read it.

Changes in authentication state are published on an `AuthEventStream`.
"""

import base64
import hashlib
import json
import logging
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx
import jwt

from .errors import (
    AuthServiceError,
    FormValidationError,
    HubAuthError,
    InvalidCredentials,
    NotAuthenticated,
    TransientNetworkError,
    classify_provider_error,
)
from .storage import SessionStore

logger = logging.getLogger(__name__)

CLIENT_INFO = "hub-py/1.0.0"


# =============================================================================
# Session
# =============================================================================

def unverified_claims(token: str) -> Dict[str, Any]:
    """
    Read JWT claims without verifying the signature.

    The Hub never trusts these claims for authorization; they only fill in
    subject and expiry when the token response omits them.
    """
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        logger.debug(f"Could not decode access token claims: {e}")
        return {}


@dataclass(frozen=True)
class Session:
    access_token: str
    refresh_token: str
    user_id: str
    email: Optional[str] = None
    expires_at: Optional[int] = None
    token_type: str = "bearer"

    @classmethod
    def from_token_response(cls, data: Dict[str, Any]) -> "Session":
        """
        Build a session from an Auth Service token response.

        Raises:
            AuthServiceError: If the response has no access token or subject
        """
        access_token = data.get("access_token")
        if not access_token:
            raise AuthServiceError("Token response did not contain an access token")

        claims = unverified_claims(access_token)
        user = data.get("user") or {}

        expires_at = data.get("expires_at")
        if expires_at is None and data.get("expires_in") is not None:
            expires_at = int(time.time()) + int(data["expires_in"])
        if expires_at is None:
            expires_at = claims.get("exp")

        user_id = user.get("id") or claims.get("sub")
        if not user_id:
            raise AuthServiceError("Token response did not identify a user")

        return cls(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or "",
            user_id=str(user_id),
            email=user.get("email") or claims.get("email"),
            expires_at=int(expires_at) if expires_at is not None else None,
            token_type=data.get("token_type") or "bearer",
        )

    def is_expired(self, leeway_seconds: int = 10) -> bool:
        """
        Check if the access token has expired.

        Args:
            leeway_seconds: Treat tokens expiring within this window as expired
        """
        if self.expires_at is None:
            return False
        return time.time() >= self.expires_at - leeway_seconds

    def to_storage(self) -> str:
        """Serialize in the provider's shape so sibling apps can read it."""
        return json.dumps(
            {
                "access_token": self.access_token,
                "refresh_token": self.refresh_token,
                "expires_at": self.expires_at,
                "token_type": self.token_type,
                "user": {"id": self.user_id, "email": self.email},
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_storage(cls, raw: Optional[str]) -> Optional["Session"]:
        if not raw:
            return None
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("stored session is not an object")
            return cls.from_token_response(data)
        except (ValueError, TypeError, AuthServiceError) as e:
            logger.warning(f"Ignoring malformed stored session: {e}")
            return None


# =============================================================================
# Auth Events
# =============================================================================

class AuthChangeEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    INITIAL_SESSION = "INITIAL_SESSION"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


AuthEventHandler = Callable[[AuthChangeEvent, Optional[Session]], Awaitable[None]]


class Subscription:
    """Handle returned by `AuthEventStream.subscribe`."""

    def __init__(self, stream: "AuthEventStream", handler: AuthEventHandler):
        self._stream = stream
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        if not self.active:
            return
        self.active = False
        self._stream._discard(self)


class AuthEventStream:
    """
    Publishes auth state changes to subscribers.

    Handlers run one after another in subscription order. A handler that
    raises is logged and does not prevent delivery to the others. An emission
    identical to the previous one (same event, same access token) is dropped.
    """

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._last: Optional[Tuple[AuthChangeEvent, Optional[str]]] = None

    def subscribe(self, handler: AuthEventHandler) -> Subscription:
        subscription = Subscription(self, handler)
        self._subscriptions.append(subscription)
        return subscription

    def _discard(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def emit(self, event: AuthChangeEvent, session: Optional[Session]) -> None:
        marker = (event, session.access_token if session else None)
        if marker == self._last:
            logger.debug(f"Suppressing duplicate auth event {event.value}")
            return
        self._last = marker

        for subscription in list(self._subscriptions):
            if not subscription.active:
                continue
            try:
                await subscription.handler(event, session)
            except Exception:
                logger.exception(f"Auth event handler failed for {event.value}")


# =============================================================================
# PKCE Helper Functions
# =============================================================================

def generate_code_verifier() -> str:
    """
    Generate a cryptographically random code verifier for PKCE.

    Returns:
        Base64-URL-encoded random string (43-128 characters)
    """
    return base64.urlsafe_b64encode(secrets.token_bytes(48)).decode("utf-8").rstrip("=")


def generate_code_challenge(verifier: str) -> str:
    """Base64-URL-encoded SHA256 of the verifier (S256 method)."""
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


def normalize_identifier(identifier: str, staff_email_domain: Optional[str]) -> str:
    """
    Turn a login identifier into the email the Auth Service knows.

    Staff accounts sign in with a bare login; their technical email is
    '<login>@<staff email domain>'.

    Example:
        >>> normalize_identifier("jdoe", "staff.example.com")
        'jdoe@staff.example.com'
    """
    identifier = identifier.strip()
    if "@" in identifier or not staff_email_domain:
        return identifier
    return f"{identifier}@{staff_email_domain}"


# =============================================================================
# Client
# =============================================================================

class AuthServiceClient:
    """
    Client for the Auth Service.

    Args:
        http_client: Shared httpx.AsyncClient
        base_url: Auth Service base URL (without /auth/v1)
        api_key: Public API key
        store: Session store of the current request
        storage_key: Key of the shared session entry
        staff_email_domain: Domain appended to bare staff logins
        events: Event stream; a private one is created if omitted
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        api_key: str,
        store: SessionStore,
        storage_key: str = "hub-auth-token",
        staff_email_domain: Optional[str] = None,
        events: Optional[AuthEventStream] = None,
    ):
        self._http = http_client
        self._auth_url = f"{base_url.rstrip('/')}/auth/v1"
        self._api_key = api_key
        self._store = store
        self.storage_key = storage_key
        self.staff_email_domain = staff_email_domain
        self.events = events or AuthEventStream()
        self._session: Optional[Session] = None
        self._initial_emitted = False

    @property
    def verifier_key(self) -> str:
        return f"{self.storage_key}-code-verifier"

    @property
    def store(self) -> SessionStore:
        return self._store

    def subscribe(self, handler: AuthEventHandler) -> Subscription:
        return self.events.subscribe(handler)

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    async def get_session(self) -> Optional[Session]:
        """
        Return the current session.

        Looks at the in-process cache, then the store. An expired session is
        refreshed; when no usable session is found, the stored refresh token
        (if any) is tried once. The first call publishes INITIAL_SESSION.

        Raises:
            TokenInvalidOrExpired: If the session cannot be refreshed
            TransientNetworkError: On transport failure during refresh
        """
        session = self._session or Session.from_storage(self._store.get(self.storage_key))
        if session is None:
            session = await self.refresh_session()
        elif session.is_expired():
            logger.debug("Stored session expired, refreshing", extra={"user_id": session.user_id})
            session = await self.refresh_session(session.refresh_token)

        self._session = session
        if not self._initial_emitted:
            self._initial_emitted = True
            await self.events.emit(AuthChangeEvent.INITIAL_SESSION, session)
        return session

    async def refresh_session(self, refresh_token: Optional[str] = None) -> Optional[Session]:
        """
        Exchange a refresh token for a new session.

        Without an argument the refresh token is taken from the cache or the
        store. Returns None when there is nothing to refresh.
        """
        token = refresh_token or self._stored_refresh_token()
        if not token:
            return None

        data = await self._request(
            "POST", "/token", params={"grant_type": "refresh_token"}, json={"refresh_token": token}
        )
        session = Session.from_token_response(data)
        self._save(session)
        logger.info("Session refreshed", extra={"user_id": session.user_id})
        await self.events.emit(AuthChangeEvent.TOKEN_REFRESHED, session)
        return session

    async def sign_in_with_password(self, identifier: str, password: str) -> Session:
        """
        Sign in with an email or staff login and a password/PIN.

        Raises:
            InvalidCredentials, RateLimited, EmailUnconfirmed, TransientNetworkError
        """
        email = normalize_identifier(identifier, self.staff_email_domain)
        data = await self._request(
            "POST", "/token", params={"grant_type": "password"}, json={"email": email, "password": password}
        )
        session = Session.from_token_response(data)
        self._save(session)
        logger.info("User signed in with password", extra={"user_id": session.user_id})
        await self.events.emit(AuthChangeEvent.SIGNED_IN, session)
        return session

    async def verify_credentials(self, identifier: str, password: str) -> bool:
        """
        Check a password without touching the stored session or emitting events.

        Returns:
            False if the Auth Service rejects the credentials.
        """
        email = normalize_identifier(identifier, self.staff_email_domain)
        try:
            await self._request(
                "POST", "/token", params={"grant_type": "password"}, json={"email": email, "password": password}
            )
        except InvalidCredentials:
            return False
        return True

    def sign_in_with_oauth(self, provider: str, redirect_to: str) -> str:
        """
        Start a federated sign-in.

        Stores a PKCE code verifier and returns the Auth Service authorize URL
        the browser should be sent to.
        """
        verifier = generate_code_verifier()
        self._store.set(self.verifier_key, verifier)
        params = {
            "provider": provider,
            "redirect_to": redirect_to,
            "code_challenge": generate_code_challenge(verifier),
            "code_challenge_method": "s256",
        }
        return f"{self._auth_url}/authorize?{urlencode(params)}"

    async def exchange_code_for_session(self, auth_code: str) -> Session:
        """
        Complete a PKCE flow (OAuth callback or recovery link).

        Raises:
            AuthServiceError: If no code verifier is stored for this browser
        """
        verifier = self._store.get(self.verifier_key)
        if not verifier:
            raise AuthServiceError("No PKCE code verifier stored for this browser")

        data = await self._request(
            "POST",
            "/token",
            params={"grant_type": "pkce"},
            json={"auth_code": auth_code, "code_verifier": verifier},
        )
        self._store.remove(self.verifier_key)
        session = Session.from_token_response(data)
        self._save(session)
        logger.info("Session established from authorization code", extra={"user_id": session.user_id})
        await self.events.emit(AuthChangeEvent.SIGNED_IN, session)
        return session

    async def sign_out(self, local_only: bool = False) -> None:
        """
        Sign out and wipe the stored session.

        A failing server-side logout is logged; the local wipe always happens.
        """
        session = self._session or Session.from_storage(self._store.get(self.storage_key))

        if session is not None and not local_only:
            try:
                await self._request(
                    "POST", "/logout", params={"scope": "global"}, access_token=session.access_token
                )
            except HubAuthError as e:
                logger.warning(f"Server-side logout failed: {e.code}", extra={"user_id": session.user_id})

        self._session = None
        self._store.remove(self.storage_key)
        self._store.remove(self.verifier_key)
        logger.info("User signed out", extra={"local_only": local_only})
        await self.events.emit(AuthChangeEvent.SIGNED_OUT, None)

    # -------------------------------------------------------------------------
    # Account operations
    # -------------------------------------------------------------------------

    async def update_credentials(self, new_secret: str) -> Dict[str, Any]:
        """Set a new password/PIN for the signed-in user."""
        session = self._require_session()
        return await self._request(
            "PUT", "/user", json={"password": new_secret}, access_token=session.access_token
        )

    async def request_password_reset(self, identifier: str, redirect_to: str) -> None:
        """
        Send a recovery email.

        Raises:
            FormValidationError: For staff logins, which cannot reset on their own
        """
        identifier = identifier.strip()
        if "@" not in identifier:
            raise FormValidationError("staff_reset_forbidden")

        verifier = generate_code_verifier()
        self._store.set(self.verifier_key, verifier)
        await self._request(
            "POST",
            "/recover",
            params={"redirect_to": redirect_to},
            json={
                "email": identifier,
                "code_challenge": generate_code_challenge(verifier),
                "code_challenge_method": "s256",
            },
        )
        logger.info("Password reset requested")

    async def sign_up(self, email: str, password: str, redirect_to: Optional[str] = None) -> Tuple[str, Optional[Session]]:
        """
        Create an account.

        Returns:
            (user id, session) - the session is None while the email awaits confirmation.
        """
        params = {"redirect_to": redirect_to} if redirect_to else None
        data = await self._request("POST", "/signup", params=params, json={"email": email, "password": password})

        if data.get("access_token"):
            session = Session.from_token_response(data)
            self._save(session)
            await self.events.emit(AuthChangeEvent.SIGNED_IN, session)
            return session.user_id, session

        user = data.get("user") or data
        user_id = user.get("id")
        if not user_id:
            raise AuthServiceError("Sign-up response did not identify a user")
        return str(user_id), None

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _save(self, session: Session) -> None:
        self._session = session
        self._store.set(self.storage_key, session.to_storage())

    def _require_session(self) -> Session:
        session = self._session or Session.from_storage(self._store.get(self.storage_key))
        if session is None:
            raise NotAuthenticated("No active session")
        return session

    def _stored_refresh_token(self) -> Optional[str]:
        if self._session is not None:
            return self._session.refresh_token or None
        raw = self._store.get(self.storage_key)
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        return data.get("refresh_token") or None

    def _headers(self, access_token: Optional[str]) -> Dict[str, str]:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {access_token or self._api_key}",
            "X-Client-Info": CLIENT_INFO,
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        url = f"{self._auth_url}{path}"
        try:
            response = await self._http.request(
                method, url, params=params, json=json, headers=self._headers(access_token)
            )
        except httpx.HTTPError as e:
            logger.error(f"Auth Service unreachable: {type(e).__name__}", extra={"path": path})
            raise TransientNetworkError(f"Auth Service request failed: {type(e).__name__}") from e

        if 200 <= response.status_code < 300:
            if response.status_code == 204:
                return {}
            try:
                body = response.json()
            except ValueError:
                return {}
            return body if isinstance(body, dict) else {"data": body}

        message = _error_message(response)
        error = classify_provider_error(message, response.status_code)
        logger.warning(
            f"Auth Service error: {error.code}",
            extra={"path": path, "status_code": response.status_code},
        )
        raise error


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for field in ("msg", "error_description", "message", "error"):
            if body.get(field):
                return str(body[field])
    return f"HTTP {response.status_code}"
