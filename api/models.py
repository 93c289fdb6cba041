"""
API request and response models for authgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import SessionData
from auth.tokens import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain part.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _check_password_bytes(value: str) -> str:
    # max_length counts characters; bcrypt's limit is in UTF-8 bytes.
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignUpRequest(BaseModel):
    """Body for POST /api/auth/sign-up/email (JSON or form-encoded)."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=MAX_PASSWORD_BYTES)
    callback_url: Optional[str] = Field(default=None, alias="callbackURL", max_length=2048)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class SignInRequest(BaseModel):
    """Body for POST /api/auth/sign-in/email (JSON or form-encoded)."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=MAX_PASSWORD_BYTES)
    callback_url: Optional[str] = Field(default=None, alias="callbackURL", max_length=2048)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    created_at: str
    updated_at: str


class SessionInfo(BaseModel):
    """Client-visible session fields. The token hash is never returned."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    expires_at: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class SessionResponse(BaseModel):
    """Response for sign-up, sign-in and get-session."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    session: SessionInfo

    @classmethod
    def from_data(cls, data: SessionData) -> "SessionResponse":
        return cls(
            user=UserResponse(**data.user.to_dict()),
            session=SessionInfo(**data.session.to_public_dict()),
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
