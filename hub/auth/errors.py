"""
Authentication error taxonomy.

Every failure that crosses a component boundary is one of the classes below.
Provider error text is interpreted in exactly one place,
`classify_provider_error`, so a change in the Auth Service's wording only
needs to be handled there.
"""

from typing import Optional

from fastapi import status


class HubAuthError(Exception):
    """
    Base class for all Hub authentication errors.

    Attributes:
        code: Stable error code, also the message key in `hub.messages`
        status_code: HTTP status the Hub answers with
        status: HTTP status reported by the Auth/Directory Service, if any
    """

    code = "auth_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "", status: Optional[int] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.status = status


class StorageError(HubAuthError):
    code = "storage_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class TransientNetworkError(HubAuthError):
    code = "network_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class InvalidCredentials(HubAuthError):
    code = "invalid_credentials"
    status_code = status.HTTP_401_UNAUTHORIZED


class RateLimited(HubAuthError):
    code = "rate_limited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class EmailUnconfirmed(HubAuthError):
    code = "email_unconfirmed"
    status_code = status.HTTP_403_FORBIDDEN


class TokenInvalidOrExpired(HubAuthError):
    code = "session_expired"
    status_code = status.HTTP_401_UNAUTHORIZED


class MembershipDenied(HubAuthError):
    code = "no_membership"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "", reason: str = "no_membership"):
        super().__init__(message or reason)
        self.code = reason


class ProfileLookupFailure(HubAuthError):
    code = "directory_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class AuthServiceError(HubAuthError):
    """Provider error that matched no known category."""
    code = "auth_error"
    status_code = status.HTTP_400_BAD_REQUEST


class NotAuthenticated(HubAuthError):
    code = "not_authenticated"
    status_code = status.HTTP_401_UNAUTHORIZED


class FormValidationError(HubAuthError):
    """A form rule was violated; `code` is the message key of the rule."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, key: str, **params):
        super().__init__(key)
        self.code = key
        self.params = params


def is_token_expired_message(message: str) -> bool:
    """
    Check whether a provider message describes an unusable token.

    Matches 'expired', 'refresh' together with 'invalid', and 'jwt' together
    with 'invalid'. Case-insensitive.
    """
    text = (message or "").lower()
    if "expired" in text:
        return True
    if "refresh" in text and "invalid" in text:
        return True
    if "jwt" in text and "invalid" in text:
        return True
    return False


def classify_provider_error(message: str, status: Optional[int] = None) -> HubAuthError:
    """
    Map an Auth Service error onto the Hub taxonomy.

    Rules are applied in order, first match wins:
        1. HTTP 429, 'rate limit' or 'too many requests'  -> RateLimited
        2. 'invalid' and 'credentials'                     -> InvalidCredentials
        3. 'email' and 'confirmed'                         -> EmailUnconfirmed
        4. token expired/invalid wording                   -> TokenInvalidOrExpired
        5. HTTP 5xx                                        -> TransientNetworkError
        6. anything else                                   -> AuthServiceError

    Args:
        message: Error text from the provider response body
        status: HTTP status of the provider response

    Returns:
        An error instance (not raised).
    """
    text = (message or "").lower()

    if status == 429 or "rate limit" in text or "too many requests" in text:
        return RateLimited(message, status)
    if "invalid" in text and "credentials" in text:
        return InvalidCredentials(message, status)
    if "email" in text and "confirmed" in text:
        return EmailUnconfirmed(message, status)
    if is_token_expired_message(text):
        return TokenInvalidOrExpired(message, status)
    if status is not None and status >= 500:
        return TransientNetworkError(message, status)
    return AuthServiceError(message, status)
