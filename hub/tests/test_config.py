"""
Unit Tests for Configuration
=============================

Tests for hub/config.py
"""

import pytest
from pydantic import ValidationError

from hub.config import Settings, validate_configuration

BASE = {
    "AUTH_SERVICE_URL": "https://auth.example.com",
    "AUTH_SERVICE_API_KEY": "anon-test-key",
    "PARENT_DOMAIN": "example.com",
    "HUB_PUBLIC_URL": "https://hub.example.com",
    "HUB_SECRET_KEY": "test-hub-secret-key-1234567890-abcdef",
}


def make_settings(**overrides) -> Settings:
    return Settings(**{**BASE, **overrides})


def test_parent_domain_is_normalized():
    settings = make_settings(PARENT_DOMAIN=" .Example.COM ")

    assert settings.PARENT_DOMAIN == "example.com"
    assert settings.shared_cookie_domain == ".example.com"


@pytest.mark.parametrize("domain", ["localhost", "exa mple.com", "user@example.com", "example.com/path"])
def test_invalid_parent_domain_is_rejected(domain):
    with pytest.raises(ValidationError):
        make_settings(PARENT_DOMAIN=domain)


def test_short_secret_key_is_rejected():
    with pytest.raises(ValidationError):
        make_settings(HUB_SECRET_KEY="too-short")


def test_non_http_service_url_is_rejected():
    with pytest.raises(ValidationError):
        make_settings(AUTH_SERVICE_URL="ftp://auth.example.com")


def test_empty_optional_url_means_disabled():
    settings = make_settings(FLEET_APP_URL="", DIRECTORY_SERVICE_URL="")

    assert settings.FLEET_APP_URL is None
    assert settings.directory_service_url_str == "https://auth.example.com"


def test_landing_path_must_be_in_app():
    with pytest.raises(ValidationError):
        make_settings(DEFAULT_LANDING_PATH="https://evil.example/")


def test_staff_email_domain():
    assert make_settings().staff_email_domain == "staff.example.com"
    assert make_settings(STAFF_EMAIL_SUBDOMAIN="").staff_email_domain == "example.com"


def test_csv_settings_are_parsed():
    settings = make_settings(OAUTH_PROVIDERS=" Google, ,facebook ", FLEET_ROLES="Admin,DRIVER")

    assert settings.oauth_providers_list == ["google", "facebook"]
    assert settings.fleet_roles_set == {"admin", "driver"}
    assert settings.allowed_origins_list == []


def test_locale_and_log_level_are_normalized():
    settings = make_settings(DEFAULT_LOCALE="EN", LOG_LEVEL="debug")

    assert settings.DEFAULT_LOCALE == "en"
    assert settings.LOG_LEVEL == "DEBUG"

    with pytest.raises(ValidationError):
        make_settings(DEFAULT_LOCALE="de")


def test_validate_configuration_under_parent_domain():
    status = validate_configuration(make_settings(FLEET_APP_URL="https://fleet.example.com"))

    assert status["valid"]
    assert status["shared_cookie_domain"] == ".example.com"
    assert status["warnings"] == []


def test_validate_configuration_requires_https_on_parent_domain():
    status = validate_configuration(make_settings(HUB_PUBLIC_URL="http://hub.example.com"))

    assert not status["valid"]
    assert len(status["errors"]) == 1


def test_validate_configuration_warns_for_host_local_sessions():
    status = validate_configuration(make_settings(HUB_PUBLIC_URL="http://localhost:8080"))

    assert status["valid"]
    assert status["shared_cookie_domain"] is None
    assert any("host-local" in warning for warning in status["warnings"])
