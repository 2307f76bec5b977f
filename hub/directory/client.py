"""
Directory Service client.

Filtered reads and writes against the PostgREST-compatible REST API that holds
profiles, memberships, fleet roles and the application catalogue. Requests are
made with the signed-in user's access token so row-level policies apply.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..auth.errors import ProfileLookupFailure
from ..models import Application, Membership, Profile

logger = logging.getLogger(__name__)

TERMS_VERSION = "1.0"

# Connection dropped mid-request; nothing wrong with the lookup itself.
ABORTED_ERRORS = (httpx.ReadError, httpx.RemoteProtocolError, httpx.WriteError)


class DirectoryLookupError(ProfileLookupFailure):
    """
    A Directory Service call did not produce a definitive answer.

    Attributes:
        aborted: The transport was dropped before a response arrived
    """

    def __init__(self, message: str = "", status: Optional[int] = None, aborted: bool = False):
        super().__init__(message, status)
        self.aborted = aborted


class DirectoryClient:
    """
    Client for the Directory Service.

    Args:
        http_client: Shared httpx.AsyncClient
        base_url: Directory Service base URL (without /rest/v1)
        api_key: Public API key
    """

    def __init__(self, http_client: httpx.AsyncClient, base_url: str, api_key: str):
        self._http = http_client
        self._rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self._api_key = api_key

    async def read_profile(self, user_id: str, access_token: str) -> Optional[Profile]:
        """
        Fetch a profile row.

        Returns:
            The profile, or None if the user has no profile row.

        Raises:
            DirectoryLookupError: If the lookup failed
        """
        rows = await self._request(
            "GET", "profiles", access_token, params={"select": "*", "id": f"eq.{user_id}", "limit": "1"}
        )
        if not rows:
            return None
        try:
            return Profile.model_validate(rows[0])
        except ValidationError as e:
            raise DirectoryLookupError(f"Malformed profile row: {e.error_count()} errors") from e

    async def read_memberships(self, user_id: str, access_token: str) -> List[Membership]:
        rows = await self._request(
            "GET", "memberships", access_token, params={"select": "*", "user_id": f"eq.{user_id}"}
        )
        memberships = []
        for row in rows:
            try:
                memberships.append(Membership.model_validate(row))
            except ValidationError as e:
                raise DirectoryLookupError(f"Malformed membership row: {e.error_count()} errors") from e
        return memberships

    async def read_fleet_roles(self, user_id: str, access_token: str) -> List[str]:
        rows = await self._request(
            "GET", "fleet_members", access_token, params={"select": "role", "user_id": f"eq.{user_id}"}
        )
        return [str(row["role"]).lower() for row in rows if row.get("role")]

    async def clear_must_reset(self, user_id: str, access_token: str) -> None:
        """Mark the user's credentials as changed (clears `is_first_login`)."""
        await self._request(
            "PATCH",
            "profiles",
            access_token,
            params={"id": f"eq.{user_id}"},
            json={"is_first_login": False},
            prefer="return=minimal",
        )
        logger.info("Cleared must-reset flag", extra={"user_id": user_id})

    async def list_applications(self, access_token: str) -> List[Application]:
        """Active applications ordered by name."""
        rows = await self._request(
            "GET",
            "applications",
            access_token,
            params={"select": "*", "is_active": "eq.true", "order": "name.asc"},
        )
        applications = []
        for row in rows:
            try:
                applications.append(Application.model_validate(row))
            except ValidationError:
                logger.warning("Skipping malformed application row", extra={"row_id": row.get("id")})
        return applications

    async def create_profile(
        self,
        user_id: str,
        access_token: str,
        ip_address: Optional[str] = None,
        marketing_consent: bool = False,
    ) -> None:
        """Insert the profile row of a newly signed-up user."""
        await self._request(
            "POST",
            "profiles",
            access_token,
            json={
                "id": user_id,
                "ip_address": ip_address,
                "accepted_terms_at": datetime.now(timezone.utc).isoformat(),
                "terms_version": TERMS_VERSION,
                "marketing_consent": marketing_consent,
            },
            prefer="return=minimal",
        )
        logger.info("Created profile", extra={"user_id": user_id})

    async def _request(
        self,
        method: str,
        table: str,
        access_token: str,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
        prefer: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {access_token or self._api_key}",
        }
        if prefer:
            headers["Prefer"] = prefer

        url = f"{self._rest_url}/{table}"
        try:
            response = await self._http.request(method, url, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            aborted = isinstance(e, ABORTED_ERRORS)
            raise DirectoryLookupError(
                f"Directory request to '{table}' failed: {type(e).__name__}", aborted=aborted
            ) from e

        if not 200 <= response.status_code < 300:
            raise DirectoryLookupError(
                f"Directory returned HTTP {response.status_code} for '{table}'",
                status=response.status_code,
            )

        if response.status_code == 204:
            return []
        try:
            body = response.json()
        except ValueError:
            return []
        if isinstance(body, dict):
            return [body]
        return body or []
