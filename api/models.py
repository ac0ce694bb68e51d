"""
API request and response models for IdentityGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Malformed input is rejected here, before any service code runs. FastAPI
turns a failed model into RequestValidationError, which api/main.py renders
as a 422 validation_error envelope.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.passwords import BCRYPT_MAX_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain. Deliverability
# is proven by the emailed code, not by a regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# Digits only; width is enforced by the challenge store comparison.
OTP_PATTERN = r"^[0-9]{4,10}$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _Credentials(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=False)

    email: str = Field(min_length=3, max_length=320, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=BCRYPT_MAX_BYTES)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        """Reject passwords bcrypt would truncate.

        max_length counts characters; bcrypt's limit is in UTF-8 bytes, so
        multi-byte passwords need this second check.
        """
        if len(value.encode("utf-8")) > BCRYPT_MAX_BYTES:
            raise ValueError(f"password must be at most {BCRYPT_MAX_BYTES} bytes")
        return value


class RegisterRequest(_Credentials):
    """Request body for POST /api/v1/user/register."""


class LoginRequest(_Credentials):
    """Request body for POST /api/v1/user/login."""


class OtpRequest(BaseModel):
    """Request body for POST /api/v1/user/otp."""

    email: str = Field(min_length=3, max_length=320, pattern=EMAIL_PATTERN)
    otp: str = Field(pattern=OTP_PATTERN)


class ResendRequest(BaseModel):
    """Request body for POST /api/v1/user/otp/resend."""

    email: str = Field(min_length=3, max_length=320, pattern=EMAIL_PATTERN)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class RegisterResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class LoginResponse(BaseModel):
    """Response for a successful login. The token goes in Authorization: Bearer."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    is_verified: bool


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
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
