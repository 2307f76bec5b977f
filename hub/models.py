"""
Data Models Module

This module defines Pydantic models for Directory Service records and for
request/response validation of the Hub's HTTP surface.

Models are organized by functional area:
- Directory models (profiles, memberships, applications)
- Authentication request models (login, sign-up, credential changes)
- Response models (destinations, screens, sessions, errors, health)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator


# ============================================================================
# Directory Models
# ============================================================================

class AccountType(str, Enum):
    NORMAL = "normal"
    SIMPLIFIED = "simplified"


class Profile(BaseModel):
    """Account profile row from the `profiles` table."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., description="Subject id shared with the Auth Service")
    account_type: AccountType = Field(default=AccountType.NORMAL, description="normal or simplified (staff) account")
    must_reset_credentials: bool = Field(
        default=False,
        alias="is_first_login",
        description="User must change credentials before using the product",
    )
    is_active: bool = Field(default=True, description="False once the account was deactivated")

    @field_validator("account_type", mode="before")
    @classmethod
    def normalize_account_type(cls, v: Any) -> str:
        value = str(v or "").strip().lower()
        return value if value == AccountType.SIMPLIFIED.value else AccountType.NORMAL.value

    @field_validator("must_reset_credentials", mode="before")
    @classmethod
    def null_means_no_reset(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("is_active", mode="before")
    @classmethod
    def null_means_active(cls, v: Any) -> Any:
        return True if v is None else v

    @property
    def is_simplified(self) -> bool:
        return self.account_type == AccountType.SIMPLIFIED


class Membership(BaseModel):
    """A (user, tenant, role) row from the `memberships` table."""
    model_config = ConfigDict(extra="ignore")

    user_id: Optional[str] = None
    tenant_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("tenant_id", "company_id", "org_id"),
        description="Company (tenant) identifier",
    )
    role: Optional[str] = Field(None, description="Role within the tenant")


class Application(BaseModel):
    """Catalogue entry listed on the dashboard."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    description: Optional[str] = None
    domain_url: Optional[str] = None
    api_url: Optional[str] = None
    is_free: bool = False
    is_active: bool = True

    @property
    def launch_url(self) -> Optional[str]:
        return self.domain_url or self.api_url


# ============================================================================
# Authentication Request Models
# ============================================================================

class LoginRequest(BaseModel):
    """Password sign-in. The identifier is an email or a staff login."""
    identifier: str = Field(..., description="Email address or staff login", min_length=1)
    password: str = Field(..., description="Password or PIN", min_length=1)
    return_to: Optional[str] = Field(None, alias="returnTo", description="Pending return target")

    model_config = ConfigDict(populate_by_name=True)


class SignupRequest(BaseModel):
    """Self-service account creation."""
    email: EmailStr = Field(..., description="Account email")
    password: str = Field(..., min_length=1)
    confirm_password: str = Field(..., min_length=1)
    accept_terms: bool = Field(default=False, description="Terms of service accepted")
    marketing_consent: bool = Field(default=False, description="Marketing communication consent")


class ChangePasswordRequest(BaseModel):
    """Credential change, mandatory for must-reset accounts."""
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)
    confirm_password: str = Field(..., min_length=1)
    secret_type: str = Field(default="password", pattern="^(password|pin)$", description="password or pin")
    return_to: Optional[str] = Field(None, alias="returnTo")

    model_config = ConfigDict(populate_by_name=True)


class ForgotPasswordRequest(BaseModel):
    """Password reset request; only email accounts may use it."""
    identifier: str = Field(..., min_length=1)


class ResetPasswordRequest(BaseModel):
    """New password set from a recovery link."""
    new_password: str = Field(..., min_length=1)
    confirm_password: str = Field(..., min_length=1)


# ============================================================================
# Response Models
# ============================================================================

class DestinationResponse(BaseModel):
    """Where the client should go next after an auth action."""
    kind: str = Field(..., description="route, external or none")
    target: Optional[str] = Field(None, description="Relative path or absolute URL")
    message: Optional[str] = Field(None, description="Localized notice for the user")


class ScreenResponse(BaseModel):
    """Descriptor of a screen the client should render."""
    screen: str
    state: str
    error: Optional[str] = Field(None, description="Error marker code")
    message: Optional[str] = Field(None, description="Localized error or notice")
    notice: Optional[str] = None
    return_to: Optional[str] = None
    user: Optional[Dict[str, Any]] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class SessionResponse(BaseModel):
    """Authentication state as seen by the guard."""
    state: str
    user_id: Optional[str] = None
    email: Optional[str] = None
    expires_at: Optional[int] = None
    notice: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response model."""
    error: str = Field(..., description="Error type/code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    version: str = Field(..., description="Service version")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
