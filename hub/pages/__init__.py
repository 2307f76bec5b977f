"""
Screen package.

GET endpoints for the Hub's screens (landing, login, sign-up, password
recovery, credential change, dashboard). Each one is guarded and gated.
"""

from .routes import pages_router

__all__ = [
    "pages_router",
]
