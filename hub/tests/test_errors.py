"""
Unit Tests for Provider Error Classification
=============================================

Tests for hub/auth/errors.py and hub/messages.py
"""

import pytest

from hub.auth.errors import (
    AuthServiceError,
    EmailUnconfirmed,
    FormValidationError,
    InvalidCredentials,
    MembershipDenied,
    RateLimited,
    TokenInvalidOrExpired,
    TransientNetworkError,
    classify_provider_error,
    is_token_expired_message,
)
from hub.messages import get_message


@pytest.mark.parametrize(
    "message,status,expected",
    [
        ("Invalid login credentials", 400, InvalidCredentials),
        ("Email not confirmed", 400, EmailUnconfirmed),
        ("Request rate limit reached", 400, RateLimited),
        ("Too many requests", 400, RateLimited),
        ("anything", 429, RateLimited),
        ("Invalid Refresh Token: Refresh Token Not Found", 400, TokenInvalidOrExpired),
        ("JWT expired", 401, TokenInvalidOrExpired),
        ("invalid JWT: unable to parse or verify signature", 401, TokenInvalidOrExpired),
        ("upstream connect error", 502, TransientNetworkError),
        ("User already registered", 422, AuthServiceError),
    ],
)
def test_classify_provider_error(message, status, expected):
    error = classify_provider_error(message, status)

    assert type(error) is expected
    assert error.status == status


def test_rate_limit_wins_over_credentials_wording():
    assert isinstance(classify_provider_error("Invalid credentials", 429), RateLimited)


def test_unknown_error_without_status_is_generic():
    assert isinstance(classify_provider_error("", None), AuthServiceError)


@pytest.mark.parametrize(
    "message,expected",
    [
        ("Token has expired", True),
        ("refresh token is invalid", True),
        ("JWT invalid", True),
        ("Invalid login credentials", False),
        ("", False),
    ],
)
def test_is_token_expired_message(message, expected):
    assert is_token_expired_message(message) is expected


def test_invalid_credentials_message_is_localized():
    error = classify_provider_error("Invalid login credentials", 400)

    assert get_message(error.code, "pl") == "Nieprawidłowy email/login lub hasło"
    assert get_message(error.code, "en") == "Invalid email/login or password"


def test_membership_denied_carries_reason():
    error = MembershipDenied(reason="inactive_account")

    assert error.code == "inactive_account"
    assert error.status_code == 403


def test_form_validation_error_formats_parameters():
    error = FormValidationError("password_too_short", min_length=8)

    assert error.status_code == 422
    assert "8" in get_message(error.code, "en", **error.params)


def test_unknown_message_key_falls_back_to_generic_text():
    assert get_message("no_such_key", "en") == get_message("auth_error", "en")


def test_unknown_locale_falls_back_to_polish():
    assert get_message("invalid_credentials", "de") == "Nieprawidłowy email/login lub hasło"
