"""
exceptions.py — Parley Unified Error Hierarchy

All Parley-specific exceptions live here. The gateway and REST layers raise
typed subclasses of ParleyError — never bare Exception.

Import from here, not from individual modules:
    from parley.exceptions import TransportError, AuthenticationError

Hierarchy:
    ParleyError
    ├── GatewayError
    │   ├── TransportError
    │   │   └── HandshakeTimeoutError
    │   ├── AuthenticationError
    │   └── FrameDecodeError
    └── RestError
        └── UserLookupError
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class ParleyError(Exception):
    """Base class for all Parley exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Gateway layer
# ─────────────────────────────────────────────────────────────────────────────

class GatewayError(ParleyError):
    """Base for gateway connection errors."""


class TransportError(GatewayError):
    """Connect, send or receive failed. Recovered by reconnecting with backoff."""


class HandshakeTimeoutError(TransportError):
    """The server did not send HELLO within the configured hello timeout."""


class AuthenticationError(GatewayError):
    """
    The session could not be authenticated.

    Fatal: the supervisor stops and the error is raised to its caller.
    """


class FrameDecodeError(GatewayError):
    """An inbound frame was not valid JSON or did not match its op's schema."""

    def __init__(self, message: str, raw: object = None) -> None:
        self.raw = raw
        super().__init__(message)


# ─────────────────────────────────────────────────────────────────────────────
# REST layer
# ─────────────────────────────────────────────────────────────────────────────

class RestError(ParleyError):
    """Base for request/response API errors."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        retry_after_ms: Optional[int] = None,
    ) -> None:
        self.status = status
        self.retry_after_ms = retry_after_ms
        super().__init__(message)


class UserLookupError(RestError):
    """GET /users/{id} failed or returned an error payload."""

    def __init__(self, user_id: int, message: str, status: Optional[int] = None) -> None:
        self.user_id = user_id
        super().__init__(message, status=status)


__all__ = [
    "ParleyError",
    # Gateway
    "GatewayError",
    "TransportError",
    "HandshakeTimeoutError",
    "AuthenticationError",
    "FrameDecodeError",
    # REST
    "RestError",
    "UserLookupError",
]
