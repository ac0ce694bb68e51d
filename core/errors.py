"""
core/errors.py -- Exception taxonomy for IdentityGate.

Two families matter to callers:

  CallerError:   the client did something wrong (unknown account, wrong
                 password, wrong or stale code, duplicate email). The API
                 reports these as generic authentication/verification
                 failures. NotFoundError and MismatchError must never be
                 distinguishable on the wire.

  InternalError: something on our side failed (bcrypt, the CSPRNG, JWT
                 signing, the database). The operation is aborted and the
                 client gets a generic 500 -- never a degraded result.

TokenError covers session-token validation and is mapped to 401.

Malformed request bodies are rejected by the pydantic request models before
any of this code runs (RequestValidationError -> 422), so there is no
ValidationError class here.

Layer rule: core/ is the kernel. This module imports nothing from the project.
"""

from __future__ import annotations


class IdentityGateError(Exception):
    """Base class for every error raised by IdentityGate code."""


# ---------------------------------------------------------------------------
# Caller mistakes
# ---------------------------------------------------------------------------


class CallerError(IdentityGateError):
    pass


class NotFoundError(CallerError):
    """Lookup miss -- no such identity, or no active challenge for the email."""


class MismatchError(CallerError):
    """The submitted one-time code does not match the active challenge."""


class AuthenticationError(CallerError):
    """Login failed. Deliberately carries no reason."""


class IdentityExistsError(CallerError):
    """An identity with this email is already registered."""


# ---------------------------------------------------------------------------
# Internal faults
# ---------------------------------------------------------------------------


class InternalError(IdentityGateError):
    pass


class CredentialError(InternalError):
    """bcrypt could not hash the input or parse a stored hash.

    A wrong password is NOT a CredentialError -- verify_password() returns
    False for that.
    """


HashingError = CredentialError


class EntropyError(InternalError):
    """The operating system's secure random source is unavailable."""


class SigningError(InternalError):
    """A session token could not be signed."""


class PersistenceError(InternalError):
    """An identity directory operation failed."""


# ---------------------------------------------------------------------------
# Session token validation
# ---------------------------------------------------------------------------


class TokenError(IdentityGateError):
    pass


class ExpiredTokenError(TokenError):
    pass


class InvalidSignatureError(TokenError):
    """Signature check failed, or the token is malformed / missing claims."""
