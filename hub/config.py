"""
Configuration module for the Hub SSO gateway.

This module uses Pydantic Settings to load and validate environment variables
for the Auth Service, the Directory Service, cross-domain session cookies,
role policy and the HTTP server.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Optional, Set
from urllib.parse import urlparse

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

OPTIONAL_URL_FIELDS = ("DIRECTORY_SERVICE_URL", "FLEET_APP_URL")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Everything the Hub needs to reach its collaborators and to decide where a
    session cookie lives is defined here.
    """

    # =========================================================================
    # Auth Service Configuration
    # =========================================================================

    AUTH_SERVICE_URL: str = Field(
        ...,
        description="Auth Service base URL (e.g., https://auth.example.com)",
        min_length=1,
    )

    AUTH_SERVICE_API_KEY: str = Field(
        ...,
        description="Public API key sent with every Auth/Directory Service request",
        min_length=1,
    )

    OAUTH_PROVIDERS: str = Field(
        default="google,facebook",
        description="Comma-separated list of federated sign-in providers",
    )

    # =========================================================================
    # Directory Service Configuration
    # =========================================================================

    DIRECTORY_SERVICE_URL: Optional[str] = Field(
        None,
        description="Directory Service base URL (defaults to AUTH_SERVICE_URL)",
    )

    # =========================================================================
    # Cross-Domain Session Configuration
    # =========================================================================

    PARENT_DOMAIN: str = Field(
        ...,
        description="Parent domain shared by all product subdomains (e.g., 'example.com')",
        min_length=3,
    )

    HUB_PUBLIC_URL: str = Field(
        default="http://localhost:8080",
        description="Public URL the Hub is served from",
    )

    HUB_SECRET_KEY: str = Field(
        ...,
        description="Secret key for signing the Hub's own server-side session cookie",
        min_length=32,
    )

    SESSION_STORAGE_KEY: str = Field(
        default="hub-auth-token",
        description="Storage key (cookie name) of the shared session entry",
        min_length=1,
    )

    SESSION_COOKIE_MAX_AGE_DAYS: int = Field(
        default=3 * 365,
        description="Lifetime of the shared session cookie in days",
        ge=1,
        le=3650,
    )

    STAFF_EMAIL_SUBDOMAIN: str = Field(
        default="staff",
        description="Subdomain used to build technical emails for staff logins",
    )

    # =========================================================================
    # Access Policy Configuration
    # =========================================================================

    FLEET_APP_URL: Optional[str] = Field(
        None,
        description="Fleet application URL; fleet-only users are redirected there",
    )

    FLEET_ROLES: str = Field(
        default="admin,driver",
        description="Comma-separated fleet roles that qualify for the external redirect",
    )

    HUB_MEMBERSHIP_ROLES: str = Field(
        default="owner,manager,coordinator,worker",
        description="Comma-separated membership roles that keep a user in the Hub",
    )

    # =========================================================================
    # Navigation Configuration
    # =========================================================================

    DEFAULT_LANDING_PATH: str = Field(
        default="/dashboard",
        description="Where authenticated users land without a return target",
    )

    RESET_SCREEN_PATH: str = Field(
        default="/change-password",
        description="Credential change screen forced on must-reset accounts",
    )

    POST_LOGIN_REDIRECT_DELAY_MS: int = Field(
        default=0,
        description="Optional delay before answering a successful login",
        ge=0,
        le=10000,
    )

    DEFAULT_LOCALE: str = Field(
        default="pl",
        description="Language of user-facing messages (pl or en)",
    )

    # =========================================================================
    # Hub Server Configuration
    # =========================================================================

    HUB_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the Hub server",
    )

    HUB_PORT: int = Field(
        default=8080,
        description="Port to bind the Hub server",
        ge=1,
        le=65535,
    )

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for every outbound Auth/Directory Service call",
        gt=0,
        le=120,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level",
    )

    # =========================================================================
    # CORS Configuration
    # =========================================================================

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def auth_service_url_str(self) -> str:
        """Auth Service URL without trailing slash."""
        return self.AUTH_SERVICE_URL.rstrip("/")

    @property
    def directory_service_url_str(self) -> str:
        """Directory Service URL without trailing slash, falling back to the Auth Service."""
        return (self.DIRECTORY_SERVICE_URL or self.AUTH_SERVICE_URL).rstrip("/")

    @property
    def staff_email_domain(self) -> str:
        """
        Domain used to turn a staff login into a technical email.

        Returns:
            e.g. 'staff.example.com' for PARENT_DOMAIN 'example.com'
        """
        if not self.STAFF_EMAIL_SUBDOMAIN:
            return self.PARENT_DOMAIN
        return f"{self.STAFF_EMAIL_SUBDOMAIN}.{self.PARENT_DOMAIN}"

    @property
    def public_hostname(self) -> str:
        """Hostname part of HUB_PUBLIC_URL, lowercased."""
        return (urlparse(self.HUB_PUBLIC_URL).hostname or "").lower()

    @property
    def public_url_is_https(self) -> bool:
        return urlparse(self.HUB_PUBLIC_URL).scheme == "https"

    @property
    def shared_cookie_domain(self) -> str:
        """Cookie Domain attribute that makes the session visible to every subdomain."""
        return f".{self.PARENT_DOMAIN}"

    @property
    def oauth_providers_list(self) -> List[str]:
        return _split_csv(self.OAUTH_PROVIDERS, lower=True)

    @property
    def fleet_roles_set(self) -> Set[str]:
        return set(_split_csv(self.FLEET_ROLES, lower=True))

    @property
    def membership_roles_set(self) -> Set[str]:
        return set(_split_csv(self.HUB_MEMBERSHIP_ROLES, lower=True))

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []
        return _split_csv(self.ALLOWED_ORIGINS)

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("PARENT_DOMAIN")
    @classmethod
    def validate_parent_domain(cls, v: str) -> str:
        """
        Validate and normalize the parent domain.

        Args:
            v: Raw domain, optionally with a leading dot

        Returns:
            Lowercase domain without leading dot

        Raises:
            ValueError: If the value does not look like a domain
        """
        domain = v.strip().lstrip(".").lower()

        if not domain or "." not in domain:
            raise ValueError(
                f"Invalid domain format: '{v}'. "
                "Expected format: 'example.com'"
            )

        if " " in domain or "@" in domain or "/" in domain:
            raise ValueError(
                f"Invalid domain format: '{v}'. "
                "Domain should not contain spaces, slashes or @ symbols"
            )

        return domain

    @field_validator("AUTH_SERVICE_URL", "DIRECTORY_SERVICE_URL", "HUB_PUBLIC_URL", "FLEET_APP_URL")
    @classmethod
    def validate_http_url(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        if not v:
            if info.field_name in OPTIONAL_URL_FIELDS:
                return None
            raise ValueError(f"{info.field_name} must not be empty")
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError(f"Expected an absolute http(s) URL, got: {v}")
        return v

    @field_validator("DEFAULT_LANDING_PATH", "RESET_SCREEN_PATH")
    @classmethod
    def validate_relative_path(cls, v: str) -> str:
        if not v.startswith("/") or v.startswith("//"):
            raise ValueError(f"Expected an in-app path starting with '/', got: {v}")
        return v

    @field_validator("DEFAULT_LOCALE")
    @classmethod
    def validate_locale(cls, v: str) -> str:
        allowed_locales = ["pl", "en"]
        v = v.strip().lower()
        if v not in allowed_locales:
            raise ValueError(f"DEFAULT_LOCALE must be one of {allowed_locales}, got: {v}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.strip().upper()
        if v not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of {allowed_levels}, got: {v}")
        return v


def _split_csv(raw: str, lower: bool = False) -> List[str]:
    items = [item.strip() for item in raw.split(",") if item.strip()]
    if lower:
        items = [item.lower() for item in items]
    return items


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Optional[Settings] = None) -> dict:
    """
    Validate critical configuration settings and return a status report.

    This can be called during application startup to ensure the cookie scope
    and the collaborator URLs make sense together.

    Returns:
        Dictionary with validation status and any warnings.
    """
    settings = settings or get_settings()
    errors = []
    warnings = []

    hostname = settings.public_hostname
    parent = settings.PARENT_DOMAIN
    shares_parent = hostname == parent or hostname.endswith(f".{parent}")

    if not shares_parent:
        warnings.append(
            f"Hub host '{hostname}' is outside '{parent}'; sessions will be host-local "
            "and sibling applications will not see them"
        )
    elif not settings.public_url_is_https:
        errors.append("HUB_PUBLIC_URL must be https when serving under the parent domain")

    if settings.FLEET_APP_URL:
        fleet_host = (urlparse(settings.FLEET_APP_URL).hostname or "").lower()
        if not (fleet_host == parent or fleet_host.endswith(f".{parent}")):
            warnings.append("FLEET_APP_URL is outside the parent domain")
    elif settings.fleet_roles_set:
        warnings.append("FLEET_ROLES is set but FLEET_APP_URL is not; fleet redirect disabled")

    if "localhost" in settings.auth_service_url_str or "127.0.0.1" in settings.auth_service_url_str:
        warnings.append("Auth Service URL points to localhost (may cause issues in containers)")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "shared_cookie_domain": settings.shared_cookie_domain if shares_parent else None,
        "staff_email_domain": settings.staff_email_domain,
    }


if __name__ == "__main__":
    # python -m hub.config
    print("=" * 80)
    print("HUB CONFIGURATION")
    print("=" * 80)

    try:
        config = get_settings()

        print("\nAuth Service:")
        print(f"  URL:            {config.auth_service_url_str}")
        print(f"  Providers:      {', '.join(config.oauth_providers_list)}")
        print("\nDirectory Service:")
        print(f"  URL:            {config.directory_service_url_str}")
        print("\nSessions:")
        print(f"  Parent domain:  {config.PARENT_DOMAIN}")
        print(f"  Public URL:     {config.HUB_PUBLIC_URL}")
        print(f"  Storage key:    {config.SESSION_STORAGE_KEY}")
        print(f"  Staff domain:   {config.staff_email_domain}")

        status = validate_configuration(config)
        print("\n" + "=" * 80)
        if status["valid"]:
            print("All critical checks passed!")
        else:
            print("Configuration errors found:")
            for error in status["errors"]:
                print(f"  - {error}")
        for warning in status["warnings"]:
            print(f"  warning: {warning}")

    except Exception as e:
        print(f"\nConfiguration error: {e}")
        print("\nRequired variables: AUTH_SERVICE_URL, AUTH_SERVICE_API_KEY, PARENT_DOMAIN, HUB_SECRET_KEY")
