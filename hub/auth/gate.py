"""
Route gate.

Maps the guard's `AuthContext` and the requested screen onto a `Destination`:
render the screen, send the browser to another in-app route, or leave the Hub
for an absolute URL on the parent domain.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .guard import AuthContext, GuardState
from .redirects import is_external, with_query


class Screen(str, Enum):
    LANDING = "landing"
    LOGIN = "login"
    SIGNUP = "signup"
    FORGOT_PASSWORD = "forgot_password"
    RESET_PASSWORD = "reset_password"
    CHANGE_PASSWORD = "change_password"
    DASHBOARD = "dashboard"


SCREEN_PATHS: Dict[Screen, str] = {
    Screen.LANDING: "/",
    Screen.LOGIN: "/login",
    Screen.SIGNUP: "/signup",
    Screen.FORGOT_PASSWORD: "/forgot-password",
    Screen.RESET_PASSWORD: "/reset-password",
    Screen.CHANGE_PASSWORD: "/change-password",
    Screen.DASHBOARD: "/dashboard",
}

PROTECTED_SCREENS = frozenset({Screen.DASHBOARD, Screen.CHANGE_PASSWORD, Screen.RESET_PASSWORD})

# Screens a fleet-only user is sent away from.
FLEET_EXIT_SCREENS = frozenset({Screen.LOGIN, Screen.DASHBOARD, Screen.LANDING})


class DestinationKind(str, Enum):
    RENDER = "render"
    ROUTE = "route"
    EXTERNAL = "external"
    NONE = "none"


@dataclass(frozen=True)
class Destination:
    kind: DestinationKind
    screen: Optional[Screen] = None
    target: Optional[str] = None

    @classmethod
    def render(cls, screen: Screen) -> "Destination":
        return cls(DestinationKind.RENDER, screen=screen)

    @classmethod
    def route(cls, path: str) -> "Destination":
        return cls(DestinationKind.ROUTE, target=path)

    @classmethod
    def external(cls, url: str) -> "Destination":
        return cls(DestinationKind.EXTERNAL, target=url)

    @classmethod
    def none(cls) -> "Destination":
        return cls(DestinationKind.NONE)

    @classmethod
    def to(cls, target: str) -> "Destination":
        """Route for in-app paths, external for absolute URLs."""
        return cls.external(target) if is_external(target) else cls.route(target)

    @property
    def is_redirect(self) -> bool:
        return self.kind in (DestinationKind.ROUTE, DestinationKind.EXTERNAL)


class RouteGate:
    """
    Decide where a request for a screen ends up.

    Args:
        login_path: Login screen path
        reset_path: Credential change screen path
        default_path: Landing path for authenticated users
    """

    def __init__(self, login_path: str = "/login", reset_path: str = "/change-password", default_path: str = "/dashboard"):
        self.login_path = login_path
        self.reset_path = reset_path
        self.default_path = default_path

    def resolve(
        self,
        context: AuthContext,
        requested: Screen,
        return_to: Optional[str] = None,
        requested_path: Optional[str] = None,
    ) -> Destination:
        """
        Args:
            context: Guard output for this request
            requested: Screen the user asked for
            return_to: Already validated pending return target
            requested_path: Actual request path, defaults to the screen's path
        """
        requested_path = requested_path or SCREEN_PATHS[requested]

        if context.state == GuardState.AUTHENTICATED_MUST_RESET:
            if requested == Screen.CHANGE_PASSWORD:
                return Destination.render(requested)
            pending = return_to or (requested_path if requested in PROTECTED_SCREENS else None)
            return Destination.route(with_query(self.reset_path, returnTo=pending))

        if not context.is_authenticated:
            if requested in PROTECTED_SCREENS:
                return Destination.route(
                    with_query(self.login_path, returnTo=return_to or requested_path, error=context.error)
                )
            if requested == Screen.LANDING:
                return Destination.route(with_query(self.login_path, error=context.error))
            return Destination.render(requested)

        if context.destination and is_external(context.destination) and requested in FLEET_EXIT_SCREENS:
            return Destination.external(context.destination)

        if requested in (Screen.LOGIN, Screen.SIGNUP):
            return Destination.to(return_to or self.default_path)

        if requested == Screen.LANDING:
            return Destination.route(self.default_path)

        if requested == Screen.DASHBOARD and return_to and return_to != requested_path:
            return Destination.to(return_to)

        return Destination.render(requested)
