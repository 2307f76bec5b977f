"""
Return-target validation.

A pending return target arrives as `returnTo` (or `return_to`) and may only
point back into the Hub or to a host under the parent domain.
"""

import re
from typing import Mapping, Optional
from urllib.parse import urlencode, urlparse

RETURN_TO_PARAMS = ("returnTo", "return_to")

# backslash, whitespace and control characters
_UNSAFE_CHARACTERS = re.compile(r"[\\\s\x00-\x1f\x7f]")


def is_relative_path(value: str) -> bool:
    """In-app path: starts with '/', not protocol-relative."""
    return value.startswith("/") and not value.startswith("//") and not value.startswith("/\\")


def is_parent_domain_host(hostname: Optional[str], parent_domain: str) -> bool:
    if not hostname:
        return False
    hostname = hostname.lower().rstrip(".")
    parent_domain = parent_domain.lower().lstrip(".")
    return hostname == parent_domain or hostname.endswith(f".{parent_domain}")


def is_allowed_return_target(value: Optional[str], parent_domain: str) -> bool:
    """
    Check a return target against the parent-domain allow-list.

    Args:
        value: Raw target from the request
        parent_domain: e.g. 'example.com'

    Returns:
        True for in-app paths and http(s) URLs on the parent domain or a
        subdomain of it.

    Example:
        >>> is_allowed_return_target("https://app.example.com/x", "example.com")
        True
        >>> is_allowed_return_target("https://evil.example/", "example.com")
        False
    """
    if not value:
        return False
    value = value.strip()
    # browsers read '\' as '/' and drop tabs/newlines, urlparse does neither
    if _UNSAFE_CHARACTERS.search(value):
        return False
    if is_relative_path(value):
        return True

    try:
        parsed = urlparse(value)
        hostname = parsed.hostname
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    if "@" in parsed.netloc:
        return False
    return is_parent_domain_host(hostname, parent_domain)


def sanitize_return_target(value: Optional[str], parent_domain: str) -> Optional[str]:
    """Return the target unchanged if allowed, otherwise None."""
    if is_allowed_return_target(value, parent_domain):
        return value.strip()
    return None


def read_return_target(params: Mapping[str, str], parent_domain: str) -> Optional[str]:
    """First valid target among the accepted query parameter names."""
    for name in RETURN_TO_PARAMS:
        target = sanitize_return_target(params.get(name), parent_domain)
        if target:
            return target
    return None


def is_external(target: str) -> bool:
    return not is_relative_path(target)


def with_query(path: str, **params: Optional[str]) -> str:
    """Append non-empty query parameters to a path."""
    query = {key: value for key, value in params.items() if value}
    if not query:
        return path
    separator = "&" if "?" in path else "?"
    return f"{path}{separator}{urlencode(query)}"
