"""
auth/models.py -- Domain dataclasses for session state.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in core/models.py -- dataclasses own domain shape; stores and the
synchronizer do the work.

Layer rule: no imports from api/, web/ or social/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from core.models import UserSnapshot


@dataclass
class Session:
    """A bearer token plus the user it was issued to.

    user is None when the token was recovered from the cookie only; the
    snapshot is filled in once the backend confirms who the token belongs to.
    """

    token: str
    user: UserSnapshot | None = None


class AuthPhase(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"
    FAILED = "failed"
    RESET = "reset"  # terminal; only a fresh page load leaves it


@dataclass
class AuthOutcome:
    """Result of one synchronizer trigger.

    redirect_to is the path the view should navigate to, or None to stay.
    """

    ok: bool
    redirect_to: str | None = None
    error: str | None = None


@dataclass
class AuthErrorRecord:
    """Last auth failure, kept in session storage for the login page."""

    message: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"message": self.message, "timestamp": self.timestamp, "context": self.context}
