"""
core/errors.py -- Error taxonomy shared by the client runtime and the frontend server.

  Unauthenticated    -- no valid session. Callers redirect to login, never crash.
  UpstreamError      -- network error, timeout, non-2xx, or {"success": false}.
                        Triggers rollback of optimistic state.
  MalformedCallback  -- OAuth return without success flag or token. Carries the
                        server-supplied message when there is one.
  StorageUnavailable -- a credential storage location refused a read or write.

Layer rule: no imports from api/, web/, auth/ or social/.
"""

from __future__ import annotations

from typing import Any


class InbookError(Exception):
    """Base exception for all Inbook client errors.

    Attributes:
        message: Human-readable error description, safe to show to the user.
        context: Optional dict with diagnostic details (never shown verbatim).
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.message = message
        self.context = context or {}
        super().__init__(message)


class Unauthenticated(InbookError):
    """Raised when no session is present or the backend rejects the token."""

    def __init__(self, message: str = "Authentication required", context: dict[str, Any] | None = None) -> None:
        super().__init__(message, context)


class UpstreamError(InbookError):
    """Raised when a backend call fails.

    status_code is None for transport-level failures (DNS, refused, timeout).
    """

    def __init__(self, message: str, status_code: int | None = None, context: dict[str, Any] | None = None) -> None:
        self.status_code = status_code
        super().__init__(message, context)


class MalformedCallback(InbookError):
    """Raised when the OAuth callback does not carry success=true and a token."""


class StorageUnavailable(InbookError):
    """Raised when a storage location is blocked or not writable."""
