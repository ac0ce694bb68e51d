"""
auth/tokens.py -- Session token issuance and validation (JWT).

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       the subject email (sub), issued-at (iat) and expiry (exp). They are
       stateless -- nothing is recorded server-side, nothing is revoked.

  Issuance never degrades: an empty secret, a non-positive lifetime, or a
       jose failure raises SigningError. There is no unsigned fallback.

  Validation raises rather than returning None, so the caller can tell an
       expired session (prompt re-login) from a forged one. Both map to 401.

  SECRET_KEY: sourced from core.config.get_settings(), which validates it at
       startup. The secret_key argument exists so tests and tools can sign
       with an explicit key.

Layer rule: no imports from api/, challenges/, or notify/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from core.config import get_settings
from core.errors import ExpiredTokenError, InvalidSignatureError, SigningError

_ALGORITHM = "HS256"


def create_access_token(subject: str, expire_seconds: int = 0, secret_key: str | None = None) -> str:
    """Encode a signed JWT for a verified identity.

    Args:
        subject:        The identity's email, stored as the sub claim.
        expire_seconds: Session duration in seconds. If 0 (default), uses
                        Settings.token_expire_seconds.
        secret_key:     Signing key override. None = Settings.secret_key.
    """
    settings = get_settings()
    key = settings.secret_key if secret_key is None else secret_key
    if not key:
        raise SigningError("No signing secret configured.")
    duration = expire_seconds if expire_seconds != 0 else settings.token_expire_seconds
    if duration <= 0:
        raise SigningError("Token lifetime must be positive.")
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    try:
        return jwt.encode(payload, key, algorithm=_ALGORITHM)
    except JWTError as exc:
        raise SigningError("Token signing failed.") from exc


def decode_access_token(token: str, secret_key: str | None = None) -> dict:
    """Verify signature and expiry and return the claims dict.

    Raises ExpiredTokenError for an expired token and InvalidSignatureError
    for anything else that fails verification (bad signature, malformed
    token, missing sub).
    """
    key = get_settings().secret_key if secret_key is None else secret_key
    try:
        payload = jwt.decode(token, key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise ExpiredTokenError("Session token has expired.") from exc
    except JWTError as exc:
        raise InvalidSignatureError("Session token failed verification.") from exc
    if not payload.get("sub"):
        raise InvalidSignatureError("Session token has no subject.")
    return payload


def validate_token(token: str, secret_key: str | None = None) -> str:
    """Return the subject email of a valid token. Raises TokenError subclasses."""
    return decode_access_token(token, secret_key)["sub"]
