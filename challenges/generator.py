"""
challenges/generator.py -- Cryptographically random fixed-width numeric codes.

secrets.randbelow() draws from the OS CSPRNG (os.urandom). The module never
falls back to the `random` module: if the secure source fails, EntropyError
is raised and the issuing operation stops.

Width handling: the default range for n digits is 10^(n-1) .. 10^n - 1, so
a code never starts with 0 and its width is fixed by construction. With
leading_zeros=True the range is 0 .. 10^n - 1 and the result is zero-padded.
Either way the code is returned as a str, never an int.
"""

from __future__ import annotations

import secrets

from core.errors import EntropyError

DEFAULT_DIGITS = 5


def code_range(digits: int = DEFAULT_DIGITS, leading_zeros: bool = False) -> tuple[int, int]:
    """Return the inclusive (low, high) integer bounds for a code of this width."""
    if digits < 1:
        raise ValueError("digits must be positive")
    low = 0 if leading_zeros else 10 ** (digits - 1)
    return low, 10**digits - 1


def generate_code(digits: int = DEFAULT_DIGITS, leading_zeros: bool = False) -> str:
    """Return a uniformly distributed numeric code exactly `digits` wide."""
    low, high = code_range(digits, leading_zeros)
    try:
        value = low + secrets.randbelow(high - low + 1)
    except (OSError, NotImplementedError) as exc:
        raise EntropyError("Secure random source unavailable.") from exc
    return f"{value:0{digits}d}"


class CodeGenerator:
    """Callable holding a configured code width; injected into ChallengeStore."""

    def __init__(self, digits: int = DEFAULT_DIGITS, leading_zeros: bool = False) -> None:
        code_range(digits, leading_zeros)  # validate early
        self.digits = digits
        self.leading_zeros = leading_zeros

    def __call__(self) -> str:
        return generate_code(self.digits, self.leading_zeros)
