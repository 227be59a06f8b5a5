"""Exceptions raised when talking to a Keenetic router."""

from __future__ import annotations


class RouterError(Exception):
    """Base exception for router communication errors."""

    pass


class TransportError(RouterError):
    """Raised when the router cannot be reached (connection, DNS, timeout)."""

    pass


class InvalidResponse(RouterError):
    """Raised when the router answers with an unexpected status or body.

    This usually means the target is not a Keenetic router, or is not
    speaking the NDM dialect this client expects.
    """

    pass


class AuthFailed(RouterError):
    """Raised when the router rejects the supplied credentials."""

    pass
