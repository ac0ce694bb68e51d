"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Sessions arrive as "Authorization: Bearer <token>". The token is validated
(signature + expiry) and its subject resolved to an Identity in the
directory.

get_current_identity() raises HTTP 401, with code "token_expired" when the
token was genuine but stale so clients know to log in again, and
"unauthorized" for everything else.

Layer rule: no imports from challenges/ or notify/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Identity
from auth.store import IdentityStore
from auth.tokens import validate_token
from core.errors import ExpiredTokenError, TokenError

_UNAUTHORIZED = {"code": "unauthorized", "message": "Authentication required."}


def get_current_identity(request: Request) -> Identity:
    """Require a valid session. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer ") or not auth_header[7:]:
        raise HTTPException(status_code=401, detail=_UNAUTHORIZED)

    try:
        email = validate_token(auth_header[7:])
    except ExpiredTokenError:
        raise HTTPException(
            status_code=401,
            detail={"code": "token_expired", "message": "Session expired. Log in again."},
        ) from None
    except TokenError:
        raise HTTPException(status_code=401, detail=_UNAUTHORIZED) from None

    store: IdentityStore = request.app.state.identity_store
    identity = store.get_by_email(email)
    if identity is None:
        raise HTTPException(status_code=401, detail=_UNAUTHORIZED)
    return identity
