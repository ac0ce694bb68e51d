"""
core/redact.py -- Helpers for keeping personal data out of log lines.
"""

from __future__ import annotations


def mask_email(addr: str) -> str:
    """Return a log-safe form of an email address: a***@e***.com.

    Keeps the first character of the local part and domain plus the TLD so
    operators can still correlate log lines for one user.
    """
    try:
        local, domain = addr.split("@", 1)
    except ValueError:
        return "***"
    local_mask = local[:1] + "***" if local else "***"
    dot = domain.rfind(".")
    if dot > 0:
        domain_mask = domain[0] + "***" + domain[dot:]
    else:
        domain_mask = domain[:1] + "***"
    return f"{local_mask}@{domain_mask}"
