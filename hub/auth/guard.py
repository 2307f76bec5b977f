"""
Session bootstrap and guard.

A guard is mounted once per page request. It loads (or refreshes) the stored
session, listens to auth events and runs the access resolver for each signed-in
subject, producing an immutable `AuthContext` that the route gate maps onto a
screen or a redirect.

Mount-time evaluation and event-driven evaluation may interleave; both go
through one lock and the last handled subject id, so the outcome is the same
whichever runs first and an admitted subject is never evaluated twice per
mount. A denied session is signed out; a later sign-in in the same mount is
evaluated again.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .client import AuthChangeEvent, AuthServiceClient, Session, Subscription
from .errors import HubAuthError, TokenInvalidOrExpired
from .redirects import with_query
from .resolver import AccessResolver, Verdict, VerdictKind

logger = logging.getLogger(__name__)


class GuardState(str, Enum):
    INITIALIZING = "initializing"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    AUTHENTICATED_MUST_RESET = "authenticated_must_reset"


@dataclass(frozen=True)
class AuthContext:
    """
    Snapshot of the guard's view of the user.

    Attributes:
        state: Authentication state
        session: Current session, None unless authenticated
        error: Error marker code shown on the login screen
        notice: Non-fatal notice (e.g. directory_unavailable)
        destination: Redirect decided by the guard itself, if any
        verdict: Last access verdict
    """

    state: GuardState = GuardState.INITIALIZING
    session: Optional[Session] = None
    error: Optional[str] = None
    notice: Optional[str] = None
    destination: Optional[str] = None
    verdict: Optional[Verdict] = None

    @property
    def is_authenticated(self) -> bool:
        return self.state in (GuardState.AUTHENTICATED, GuardState.AUTHENTICATED_MUST_RESET)

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id if self.session else None

    def evolve(self, **changes) -> "AuthContext":
        return dataclasses.replace(self, **changes)


class SessionGuard:
    """
    Drive the authentication state of one page request.

    Usage:
        async with SessionGuard(client, resolver, current_path="/dashboard") as guard:
            context = guard.context

    Args:
        client: Auth Service client bound to the request's session store
        resolver: Access resolver
        current_path: Path of the page being loaded
        return_to: Validated pending return target
        tenant_id: Tenant the user is entering, if any
        reset_path: Credential change screen
        login_path: Login screen
    """

    def __init__(
        self,
        client: AuthServiceClient,
        resolver: AccessResolver,
        current_path: str = "/",
        return_to: Optional[str] = None,
        tenant_id: Optional[str] = None,
        reset_path: str = "/change-password",
        login_path: str = "/login",
    ):
        self.client = client
        self.resolver = resolver
        self.current_path = current_path
        self.tenant_id = tenant_id
        self.reset_path = reset_path
        self.login_path = login_path
        self.context = AuthContext()
        # redirects issued by the guard, in order
        self.redirects: List[str] = []
        self._return_to = return_to
        self._lock = asyncio.Lock()
        self._last_subject: Optional[str] = None
        # access token of the last denied session; a new sign-in is evaluated again
        self._denied_token: Optional[str] = None
        self._subscription: Optional[Subscription] = None

    @property
    def return_to(self) -> Optional[str]:
        return self._return_to

    async def __aenter__(self) -> "SessionGuard":
        await self.mount()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.unmount()

    async def mount(self) -> AuthContext:
        """
        Subscribe to auth events and settle the initial state.

        Returns:
            The context after bootstrap; never INITIALIZING.
        """
        if self._subscription is None:
            self._subscription = self.client.subscribe(self._on_auth_event)

        try:
            session = await self.client.get_session()
        except TokenInvalidOrExpired:
            logger.info("Stored session rejected by Auth Service, signing out")
            await self.client.sign_out()
            self._set(state=GuardState.UNAUTHENTICATED, session=None, error=TokenInvalidOrExpired.code)
            return self.context
        except HubAuthError as e:
            logger.warning(f"Session bootstrap failed: {e.code}")
            self._set(state=GuardState.UNAUTHENTICATED, session=None, error=e.code)
            return self.context

        if session is not None:
            await self.evaluate(session)
        elif self.context.state == GuardState.INITIALIZING:
            self._set(state=GuardState.UNAUTHENTICATED)
        return self.context

    def unmount(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def evaluate(self, session: Session) -> AuthContext:
        """Run the access resolver for the session's subject, once per admitted subject."""
        async with self._lock:
            if session.access_token == self._denied_token:
                return self.context
            if session.user_id == self._last_subject:
                if self.context.is_authenticated and self.context.session != session:
                    self._set(session=session)
                return self.context

            verdict = await self.resolver.resolve(session.user_id, session.access_token, self.tenant_id)

            if verdict.kind == VerdictKind.DENY:
                logger.warning(
                    f"Access denied ({verdict.reason}), forcing sign-out",
                    extra={"user_id": session.user_id},
                )
                await self.client.sign_out()
                self._last_subject = None
                self._denied_token = session.access_token
                self._set(
                    state=GuardState.UNAUTHENTICATED,
                    session=None,
                    error=verdict.reason,
                    notice=None,
                    destination=with_query(self.login_path, error=verdict.reason),
                    verdict=verdict,
                )
                return self.context

            self._last_subject = session.user_id

            if verdict.kind == VerdictKind.MUST_RESET:
                destination = None
                if not self._on_reset_screen():
                    destination = with_query(self.reset_path, returnTo=self._return_to)
                    self.redirects.append(destination)
                    logger.info("Credential change required", extra={"user_id": session.user_id})
                self._set(
                    state=GuardState.AUTHENTICATED_MUST_RESET,
                    session=session,
                    error=None,
                    notice=self._notice(verdict),
                    destination=destination,
                    verdict=verdict,
                )
            elif verdict.kind == VerdictKind.REDIRECT_EXTERNAL:
                self._set(
                    state=GuardState.AUTHENTICATED,
                    session=session,
                    error=None,
                    destination=verdict.url,
                    verdict=verdict,
                )
            else:
                self._set(
                    state=GuardState.AUTHENTICATED,
                    session=session,
                    error=None,
                    notice=self._notice(verdict),
                    destination=None,
                    verdict=verdict,
                )
            return self.context

    async def _on_auth_event(self, event: AuthChangeEvent, session: Optional[Session]) -> None:
        if event == AuthChangeEvent.SIGNED_OUT:
            # not under the lock: sign-out is also issued from inside evaluate()
            self._last_subject = None
            self._return_to = None
            self._set(state=GuardState.UNAUTHENTICATED, session=None, destination=None, verdict=None, notice=None)
            return

        if session is None:
            return

        if event == AuthChangeEvent.TOKEN_REFRESHED and self.context.state != GuardState.INITIALIZING:
            if self.context.is_authenticated:
                self._set(session=session)
            return

        if event in (AuthChangeEvent.SIGNED_IN, AuthChangeEvent.INITIAL_SESSION, AuthChangeEvent.TOKEN_REFRESHED):
            await self.evaluate(session)

    def _on_reset_screen(self) -> bool:
        return self.current_path.rstrip("/") == self.reset_path.rstrip("/")

    @staticmethod
    def _notice(verdict: Verdict) -> Optional[str]:
        return "directory_unavailable" if verdict.degraded else None

    def _set(self, **changes) -> None:
        self.context = self.context.evolve(**changes)
