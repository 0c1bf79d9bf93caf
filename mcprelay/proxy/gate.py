"""Shared-secret gate for ``/mcp/{secret}`` routes."""

from __future__ import annotations

import hmac


def is_authorized(configured_secret: str | None, supplied: str | None) -> bool:
    """Return True if the caller may pass.

    The gate is open when no secret is configured. Otherwise the supplied
    token must equal the configured secret exactly (compared in constant
    time).

    Args:
        configured_secret: The secret from configuration, or None for open mode.
        supplied: The token taken from the request path.
    """
    if configured_secret is None:
        return True
    if supplied is None:
        return False
    return hmac.compare_digest(
        configured_secret.encode("utf-8"), supplied.encode("utf-8")
    )
