"""
Access resolver.

Combines the account profile, tenant memberships and fleet roles of a signed-in
subject into a single post-login verdict. Checks run in a fixed order:
denial, forced credential reset, external fleet redirect, allow.

A lookup that fails never denies access. Denial is only decided on definitive
answers from the Directory Service.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Optional, Set, TypeVar

from ..directory import DirectoryClient, DirectoryLookupError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class VerdictKind(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    MUST_RESET = "must_reset"
    REDIRECT_EXTERNAL = "redirect_external"


@dataclass(frozen=True)
class Verdict:
    kind: VerdictKind
    reason: Optional[str] = None
    url: Optional[str] = None
    error: Optional[DirectoryLookupError] = None

    @property
    def degraded(self) -> bool:
        """A lookup failed and the verdict was reached without it."""
        return self.error is not None

    @classmethod
    def allow(cls, error: Optional[DirectoryLookupError] = None) -> "Verdict":
        return cls(VerdictKind.ALLOW, error=error)

    @classmethod
    def deny(cls, reason: str) -> "Verdict":
        return cls(VerdictKind.DENY, reason=reason)


@dataclass
class _Lookup:
    value: object = None
    error: Optional[DirectoryLookupError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AccessResolver:
    """
    Decide what a signed-in subject may do.

    Args:
        directory: Directory Service client
        membership_roles: Roles that keep a user inside the Hub
        fleet_roles: Fleet roles that qualify for the external redirect
        fleet_app_url: Redirect target for fleet-only users; None disables it
    """

    def __init__(
        self,
        directory: DirectoryClient,
        membership_roles: Set[str],
        fleet_roles: Set[str],
        fleet_app_url: Optional[str] = None,
    ):
        self.directory = directory
        self.membership_roles = {role.lower() for role in membership_roles}
        self.fleet_roles = {role.lower() for role in fleet_roles}
        self.fleet_app_url = fleet_app_url

    async def resolve(self, subject_id: str, access_token: str, tenant_id: Optional[str] = None) -> Verdict:
        """
        Compute the verdict for a subject.

        Args:
            subject_id: Auth Service user id
            access_token: Token used for the Directory Service lookups
            tenant_id: Tenant the user is trying to enter, if any

        Returns:
            Verdict (never raises for lookup failures)
        """
        profile_lookup, membership_lookup = await asyncio.gather(
            self._lookup("profile", subject_id, self.directory.read_profile(subject_id, access_token)),
            self._lookup("memberships", subject_id, self.directory.read_memberships(subject_id, access_token)),
        )
        profile = profile_lookup.value
        memberships = membership_lookup.value or []

        # Denial
        if profile is not None and not profile.is_active:
            logger.info("Access denied: inactive account", extra={"user_id": subject_id})
            return Verdict.deny("inactive_account")

        if membership_lookup.ok:
            if profile is not None and profile.is_simplified and not memberships:
                logger.info("Access denied: simplified account without membership", extra={"user_id": subject_id})
                return Verdict.deny("no_membership")
            if tenant_id and not any(m.tenant_id == tenant_id for m in memberships):
                logger.info(
                    "Access denied: no membership for requested tenant",
                    extra={"user_id": subject_id, "tenant_id": tenant_id},
                )
                return Verdict.deny("no_membership")

        # Forced credential change
        if profile is not None and profile.must_reset_credentials:
            return Verdict(VerdictKind.MUST_RESET, error=membership_lookup.error)

        # Fleet-only users leave the Hub
        if self.fleet_app_url and membership_lookup.ok:
            has_hub_role = any((m.role or "").lower() in self.membership_roles for m in memberships)
            if not has_hub_role:
                fleet_lookup = await self._lookup(
                    "fleet roles", subject_id, self.directory.read_fleet_roles(subject_id, access_token)
                )
                if fleet_lookup.ok and self.fleet_roles.intersection(fleet_lookup.value or []):
                    logger.info("Redirecting fleet-only user", extra={"user_id": subject_id})
                    return Verdict(VerdictKind.REDIRECT_EXTERNAL, url=self.fleet_app_url)

        return Verdict.allow(error=profile_lookup.error or membership_lookup.error)

    async def _lookup(self, what: str, subject_id: str, call: Awaitable[T]) -> _Lookup:
        try:
            return _Lookup(value=await call)
        except DirectoryLookupError as e:
            if e.aborted:
                logger.debug(f"Directory {what} lookup aborted", extra={"user_id": subject_id})
            else:
                logger.warning(f"Directory {what} lookup failed: {e}", extra={"user_id": subject_id})
            return _Lookup(error=e)
