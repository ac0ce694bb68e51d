"""
api/routes/v1/auth.py -- Registration, code verification, and login endpoints.

Routes:
  POST /api/v1/user/register     -- create unverified identity; emails a code
  POST /api/v1/user/otp          -- submit the emailed code
  POST /api/v1/user/otp/resend   -- supersede the code with a fresh one
  POST /api/v1/user/login        -- password login; returns a Bearer token
  GET  /api/v1/user/me           -- identity behind the token (requires auth)

Security:
  Login failures share one body ("bad_credentials") whether the email is
  unknown, the password is wrong, or the account is unverified.
  Code failures share one body ("invalid_code") whether the code is wrong or
  there is no active code (never issued, used, expired).
  Resend always answers 202 with the same message.
  Login, code and registration routes are rate-limited per IP, each with
  its own budget (LOGIN_RATE_LIMIT, OTP_RATE_LIMIT, REGISTER_RATE_LIMIT).
  Cache-Control: no-store on login and code responses.

Internal faults (EntropyError, SigningError, CredentialError,
PersistenceError) are not caught here; the InternalError handler in
api/main.py turns them into a generic 500.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.limiter import limiter, login_limit, otp_limit, register_limit
from api.models import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    OtpRequest,
    RegisterRequest,
    RegisterResponse,
    ResendRequest,
)
from auth.dependencies import get_current_identity
from auth.models import Identity
from auth.service import IdentityService
from core.config import get_settings
from core.errors import AuthenticationError, IdentityExistsError, MismatchError, NotFoundError

# Auth policy:
# - POST /api/v1/user/register:    public
# - POST /api/v1/user/otp:         public -- the code itself is the credential
# - POST /api/v1/user/otp/resend:  public
# - POST /api/v1/user/login:       public
# - GET  /api/v1/user/me:          requires auth (get_current_identity)
router = APIRouter()

_NO_STORE = {"Cache-Control": "no-store"}


def _service(request: Request) -> IdentityService:
    return request.app.state.identity_service


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(register_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/user/register", response_model=RegisterResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Create an unverified identity and send it a one-time code.

    The response does not wait for the email; a delivery failure is logged
    and does not fail registration.
    """
    try:
        identity = _service(request).register(body.email, body.password)
    except IdentityExistsError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "An account with that email already exists."},
        ) from exc
    return RegisterResponse(id=identity.id, email=identity.email)


@limiter.limit(otp_limit)
@router.post("/user/otp", response_model=MessageResponse)
def verify_otp(request: Request, response: Response, body: OtpRequest) -> MessageResponse:
    """Confirm the emailed code.

    Success means the code was consumed. Flipping the account's verified flag
    happens in the background and is not awaited.
    """
    try:
        _service(request).verify_code(body.email, body.otp)
    except (NotFoundError, MismatchError) as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": "invalid_code", "message": "Invalid or expired verification code."},
            headers=_NO_STORE,
        ) from exc
    response.headers.update(_NO_STORE)
    return MessageResponse(message="OTP verified.")


@limiter.limit(otp_limit)
@router.post("/user/otp/resend", response_model=MessageResponse, status_code=202)
def resend_otp(request: Request, body: ResendRequest) -> MessageResponse:
    """Issue a fresh code for an unverified account; the previous code stops working.

    Same answer for unknown, verified, and unverified emails.
    """
    _service(request).resend_code(body.email)
    return MessageResponse(message="If the account exists and is unverified, a new code has been sent.")


@limiter.limit(login_limit)  # brute-force mitigation
@router.post("/user/login", response_model=LoginResponse)
def login(request: Request, response: Response, body: LoginRequest) -> LoginResponse:
    """Authenticate with email and password; return a signed session token.

    IdentityService.authenticate() runs bcrypt even for unknown emails so
    the response time does not reveal which emails are registered.
    """
    try:
        token = _service(request).login(body.email, body.password)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": "bad_credentials", "message": "Invalid email or password."},
            headers=_NO_STORE,
        ) from exc
    response.headers.update(_NO_STORE)
    return LoginResponse(
        access_token=token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=get_settings().token_expire_seconds,
    )


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/user/me", response_model=MeResponse)
def me(request: Request, identity: Identity = Depends(get_current_identity)) -> MeResponse:
    """Return the identity the Bearer token was issued for."""
    return MeResponse(id=identity.id, email=identity.email, is_verified=_service(request).is_verified(identity))
