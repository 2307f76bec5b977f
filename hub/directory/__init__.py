"""
Directory Service package.

Read access to account profiles, memberships, fleet roles and the application
catalogue, plus the two writes the Hub performs (profile creation at sign-up
and clearing the must-reset flag).
"""

from .client import DirectoryClient, DirectoryLookupError

__all__ = [
    "DirectoryClient",
    "DirectoryLookupError",
]
