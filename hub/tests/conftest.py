"""
Shared fixtures.

Outbound HTTP is faked at the `httpx.AsyncClient.request` boundary by
`FakeServices`, an in-memory stand-in for the Auth Service (GoTrue-style
/auth/v1) and the Directory Service (PostgREST-style /rest/v1).
"""

import itertools
import time
import uuid
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, Mock
from urllib.parse import urlparse

import jwt
import pytest

from hub.auth.client import AuthServiceClient, Session
from hub.auth.resolver import AccessResolver
from hub.auth.storage import CookieSessionStore
from hub.config import Settings
from hub.directory import DirectoryClient

AUTH_URL = "https://auth.example.com"
API_KEY = "anon-test-key"
STORAGE_KEY = "hub-auth-token"
TOKEN_SECRET = "fake-auth-service-signing-secret"


def make_response(status_code: int = 200, body: Any = None) -> Mock:
    """Mock httpx.Response with `.status_code` and `.json()`."""
    response = Mock()
    response.status_code = status_code
    if body is None:
        response.json.side_effect = ValueError("no body")
    else:
        response.json.return_value = body
    return response


class FakeServices:
    """In-memory Auth + Directory Service."""

    def __init__(self):
        self.users: Dict[str, Dict[str, str]] = {}
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self.memberships: List[Dict[str, Any]] = []
        self.fleet_members: List[Dict[str, Any]] = []
        self.applications: List[Dict[str, Any]] = []
        self.refresh_tokens: Dict[str, str] = {}
        self.auth_codes: Dict[str, str] = {}
        self.calls: List[Dict[str, Any]] = []
        # path fragment -> Exception to raise or (status, body) to answer
        self.failures: Dict[str, Any] = {}
        self.autoconfirm = False
        self._counter = itertools.count(1)

    # -- seeding -------------------------------------------------------------

    def add_user(
        self,
        email: str,
        password: str,
        account_type: str = "normal",
        must_reset: bool = False,
        is_active: bool = True,
        roles: Optional[List[str]] = None,
        tenant_id: str = "tenant-1",
    ) -> str:
        user_id = str(uuid.uuid4())
        self.users[email] = {"id": user_id, "email": email, "password": password}
        self.profiles[user_id] = {
            "id": user_id,
            "account_type": account_type,
            "is_first_login": must_reset,
            "is_active": is_active,
        }
        for role in roles or []:
            self.memberships.append({"user_id": user_id, "tenant_id": tenant_id, "role": role})
        return user_id

    def issue_session(self, user_id: str, expires_in: int = 3600) -> Dict[str, Any]:
        email = next(u["email"] for u in self.users.values() if u["id"] == user_id)
        now = int(time.time())
        access_token = jwt.encode(
            {"sub": user_id, "email": email, "exp": now + expires_in, "jti": str(next(self._counter))},
            TOKEN_SECRET,
            algorithm="HS256",
        )
        refresh_token = f"refresh-{next(self._counter)}"
        self.refresh_tokens[refresh_token] = user_id
        return {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_type": "bearer",
            "expires_in": expires_in,
            "expires_at": now + expires_in,
            "user": {"id": user_id, "email": email},
        }

    def issue_auth_code(self, user_id: str) -> str:
        code = f"code-{next(self._counter)}"
        self.auth_codes[code] = user_id
        return code

    # -- inspection ----------------------------------------------------------

    def calls_to(self, fragment: str, method: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            call for call in self.calls
            if fragment in call["path"] and (method is None or call["method"] == method)
        ]

    # -- transport -----------------------------------------------------------

    async def request(self, method, url, params=None, json=None, headers=None):
        path = urlparse(url).path
        self.calls.append({"method": method, "path": path, "params": params or {}, "json": json, "headers": headers or {}})

        for fragment, failure in self.failures.items():
            if fragment in path:
                if isinstance(failure, Exception):
                    raise failure
                status_code, body = failure
                return make_response(status_code, body)

        params = params or {}
        if path.startswith("/auth/v1/"):
            return self._auth(method, path[len("/auth/v1"):], params, json or {}, headers or {})
        if path.startswith("/rest/v1/"):
            return self._rest(method, path[len("/rest/v1/"):], params, json)
        return make_response(404, {"message": "not found"})

    def _auth(self, method, path, params, body, headers):
        if path == "/token":
            grant = params.get("grant_type")
            if grant == "password":
                user = self.users.get(body.get("email"))
                if user is None or user["password"] != body.get("password"):
                    return make_response(400, {"error": "invalid_grant", "error_description": "Invalid login credentials"})
                return make_response(200, self.issue_session(user["id"]))
            if grant == "refresh_token":
                user_id = self.refresh_tokens.pop(body.get("refresh_token"), None)
                if user_id is None:
                    return make_response(400, {"error_description": "Invalid Refresh Token: Refresh Token Not Found"})
                return make_response(200, self.issue_session(user_id))
            if grant == "pkce":
                user_id = self.auth_codes.pop(body.get("auth_code"), None)
                if user_id is None or not body.get("code_verifier"):
                    return make_response(404, {"msg": "Flow state not found"})
                return make_response(200, self.issue_session(user_id))
        if path == "/logout":
            return make_response(204)
        if path == "/user" and method == "PUT":
            claims = jwt.decode(headers["Authorization"].split(" ", 1)[1], options={"verify_signature": False})
            user = next(u for u in self.users.values() if u["id"] == claims["sub"])
            user["password"] = body["password"]
            return make_response(200, {"id": user["id"], "email": user["email"]})
        if path == "/recover":
            return make_response(200, {})
        if path == "/signup":
            user_id = str(uuid.uuid4())
            self.users[body["email"]] = {"id": user_id, "email": body["email"], "password": body["password"]}
            if self.autoconfirm:
                return make_response(200, self.issue_session(user_id))
            return make_response(200, {"id": user_id, "email": body["email"]})
        return make_response(404, {"msg": "unknown endpoint"})

    def _rest(self, method, table, params, body):
        def eq(name):
            value = params.get(name)
            return value[3:] if value and value.startswith("eq.") else None

        if table == "profiles":
            if method == "GET":
                row = self.profiles.get(eq("id"))
                return make_response(200, [row] if row else [])
            if method == "PATCH":
                self.profiles[eq("id")].update(body)
                return make_response(204)
            if method == "POST":
                self.profiles[body["id"]] = dict(body)
                return make_response(201)
        if table == "memberships":
            return make_response(200, [m for m in self.memberships if m["user_id"] == eq("user_id")])
        if table == "fleet_members":
            return make_response(200, [m for m in self.fleet_members if m["user_id"] == eq("user_id")])
        if table == "applications":
            rows = [a for a in self.applications if a.get("is_active", True)]
            return make_response(200, sorted(rows, key=lambda a: a["name"]))
        return make_response(404, {"message": "unknown table"})


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings():
    return Settings(
        AUTH_SERVICE_URL=AUTH_URL,
        AUTH_SERVICE_API_KEY=API_KEY,
        PARENT_DOMAIN="example.com",
        HUB_PUBLIC_URL="https://hub.example.com",
        HUB_SECRET_KEY="test-hub-secret-key-1234567890-abcdef",
        FLEET_APP_URL="https://fleet.example.com",
        SESSION_STORAGE_KEY=STORAGE_KEY,
    )


@pytest.fixture
def services():
    return FakeServices()


@pytest.fixture
def http_client(services):
    client = Mock()
    client.request = AsyncMock(side_effect=services.request)
    return client


@pytest.fixture
def store():
    return CookieSessionStore({}, domain=".example.com", secure=True)


@pytest.fixture
def auth_client(http_client, store):
    return AuthServiceClient(
        http_client,
        base_url=AUTH_URL,
        api_key=API_KEY,
        store=store,
        storage_key=STORAGE_KEY,
        staff_email_domain="staff.example.com",
    )


@pytest.fixture
def directory(http_client):
    return DirectoryClient(http_client, base_url=AUTH_URL, api_key=API_KEY)


@pytest.fixture
def resolver(directory):
    return AccessResolver(
        directory,
        membership_roles={"owner", "manager", "coordinator", "worker"},
        fleet_roles={"admin", "driver"},
        fleet_app_url="https://fleet.example.com",
    )


@pytest.fixture
def store_session(services, store):
    """Put a valid session for `user_id` into the store, as a sibling app would see it."""
    def _store(user_id: str) -> Session:
        session = Session.from_token_response(services.issue_session(user_id))
        store.set(STORAGE_KEY, session.to_storage())
        return session
    return _store
