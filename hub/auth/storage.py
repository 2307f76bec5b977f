"""
Cross-domain session storage.

The session entry is kept in a cookie so every subdomain of the parent domain
can read it. When the Hub itself is not served under the parent domain (local
development) the cookie is host-only instead.

A store is built per request from the incoming cookies. Writes are buffered
and flushed onto the response with `apply()`. Reads made after a write in the
same request see the written value.

Storage never raises: a malformed or unwritable entry is logged and treated
as absent.
"""

import base64
import logging
from abc import ABC, abstractmethod
from functools import lru_cache, partial
from http.cookies import CookieError
from typing import Callable, Dict, List, Mapping, Optional

from starlette.responses import Response

from ..config import Settings

logger = logging.getLogger(__name__)

# Browsers cap a cookie at ~4096 bytes including name and attributes.
MAX_CHUNK_SIZE = 3180
BASE64_PREFIX = "base64-"


class SessionStore(ABC):
    """Key/value storage for the serialized session and the PKCE verifier."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...

    def apply(self, response: Response) -> None:
        """Flush pending writes onto an outgoing response."""


def encode_value(value: str) -> str:
    raw = base64.urlsafe_b64encode(value.encode("utf-8")).decode("ascii").rstrip("=")
    return f"{BASE64_PREFIX}{raw}"


def decode_value(value: str) -> str:
    """
    Decode a stored cookie value.

    Values without the base64 prefix are returned unchanged so entries written
    by older clients stay readable.

    Raises:
        ValueError: If the payload is not valid base64url / UTF-8
    """
    if not value.startswith(BASE64_PREFIX):
        return value
    payload = value[len(BASE64_PREFIX):]
    padding = "=" * (-len(payload) % 4)
    return base64.urlsafe_b64decode(payload + padding).decode("utf-8")


def chunk_value(value: str, size: int = MAX_CHUNK_SIZE) -> List[str]:
    return [value[i:i + size] for i in range(0, len(value), size)] or [""]


class CookieSessionStore(SessionStore):
    """
    Cookie-backed session store.

    Args:
        request_cookies: Cookies sent with the current request
        domain: Cookie Domain attribute, None for a host-only cookie
        secure: Whether to set the Secure attribute
        max_age: Cookie lifetime in seconds
    """

    def __init__(
        self,
        request_cookies: Mapping[str, str],
        domain: Optional[str] = None,
        secure: bool = True,
        max_age: int = 400 * 24 * 3600,
        path: str = "/",
        samesite: str = "lax",
    ):
        self._cookies = dict(request_cookies or {})
        self.domain = domain
        self.secure = secure
        self.max_age = max_age
        self.path = path
        self.samesite = samesite
        # logical key -> decoded value (None = removed) written this request
        self._written: Dict[str, Optional[str]] = {}
        # cookie name -> encoded chunk (None = delete)
        self._pending: Dict[str, Optional[str]] = {}

    def get(self, key: str) -> Optional[str]:
        if key in self._written:
            return self._written[key]
        try:
            encoded = self._read_cookie(key)
            if encoded is None:
                return None
            return decode_value(encoded)
        except ValueError as e:
            logger.warning(f"Discarding unreadable session entry '{key}': {e}")
            return None

    def set(self, key: str, value: str) -> None:
        self._written[key] = value
        chunks = chunk_value(encode_value(value))
        stale = self._cookie_names(key)

        if len(chunks) == 1:
            names = [key]
        else:
            names = [f"{key}.{i}" for i in range(len(chunks))]

        for name in stale:
            if name not in names:
                self._pending[name] = None
        for name, chunk in zip(names, chunks):
            self._pending[name] = chunk

    def remove(self, key: str) -> None:
        self._written[key] = None
        for name in self._cookie_names(key):
            self._pending[name] = None

    def apply(self, response: Response) -> None:
        for name, value in self._pending.items():
            try:
                if value is None:
                    response.delete_cookie(
                        name,
                        path=self.path,
                        domain=self.domain,
                        secure=self.secure,
                        httponly=False,
                        samesite=self.samesite,
                    )
                else:
                    response.set_cookie(
                        name,
                        value,
                        max_age=self.max_age,
                        path=self.path,
                        domain=self.domain,
                        secure=self.secure,
                        httponly=False,
                        samesite=self.samesite,
                    )
            except (CookieError, ValueError) as e:
                logger.error(f"Failed to write session cookie '{name}': {e}")
        self._pending.clear()

    @property
    def pending_cookie_names(self) -> List[str]:
        return list(self._pending)

    def _read_cookie(self, key: str) -> Optional[str]:
        if key in self._cookies:
            return self._cookies[key]
        parts = []
        index = 0
        while f"{key}.{index}" in self._cookies:
            parts.append(self._cookies[f"{key}.{index}"])
            index += 1
        return "".join(parts) if parts else None

    def _cookie_names(self, key: str) -> List[str]:
        """Every cookie name currently holding a part of `key`."""
        prefix = f"{key}."
        names = {key} if key in self._cookies or key in self._pending else set()
        for name in list(self._cookies) + list(self._pending):
            if name.startswith(prefix) and name[len(prefix):].isdigit():
                names.add(name)
        return sorted(names)


class SharedDomainSessionStore(CookieSessionStore):
    """Cookie scoped to `.parent-domain`; always Secure."""

    def __init__(self, request_cookies: Mapping[str, str], domain: str, max_age: int):
        super().__init__(request_cookies, domain=domain, secure=True, max_age=max_age)


class LocalSessionStore(CookieSessionStore):
    """Host-only cookie used when the Hub runs outside the parent domain."""

    def __init__(self, request_cookies: Mapping[str, str], secure: bool, max_age: int):
        super().__init__(request_cookies, domain=None, secure=secure, max_age=max_age)


@lru_cache(maxsize=32)
def uses_shared_domain(hostname: str, parent_domain: str) -> bool:
    """
    Decide whether sessions can be shared across the parent domain.

    Args:
        hostname: Host the Hub is served from
        parent_domain: e.g. 'example.com'

    Returns:
        True if hostname is the parent domain or one of its subdomains.
    """
    hostname = (hostname or "").lower().rstrip(".")
    parent_domain = (parent_domain or "").lower().lstrip(".")
    if not hostname or not parent_domain:
        return False
    return hostname == parent_domain or hostname.endswith(f".{parent_domain}")


def session_store_factory(settings: Settings) -> Callable[[Mapping[str, str]], CookieSessionStore]:
    """
    Choose the store implementation once for the process.

    Returns:
        Callable building a store from a request's cookies.
    """
    max_age = settings.SESSION_COOKIE_MAX_AGE_DAYS * 24 * 3600

    if uses_shared_domain(settings.public_hostname, settings.PARENT_DOMAIN):
        logger.info(
            "Session cookies shared across parent domain",
            extra={"cookie_domain": settings.shared_cookie_domain},
        )
        return partial(SharedDomainSessionStore, domain=settings.shared_cookie_domain, max_age=max_age)

    logger.info(
        "Hub served outside parent domain, using host-only session cookies",
        extra={"hostname": settings.public_hostname},
    )
    return partial(LocalSessionStore, secure=settings.public_url_is_https, max_age=max_age)
