"""
auth/oauth_state.py -- Signed state blob carried across the OAuth hop.

Security design decisions:
  The blob is a python-jose HS256 JWT signed with SECRET_KEY. It carries the
  origin, referrer and source tag the relay saw (debug/UX metadata), a
  timestamp, a random nonce and a 10 minute expiry.

  The nonce is also set as an httpOnly cookie on the initiation redirect.
  verify_state() only accepts a blob whose signature, expiry and nonce all
  match, so a callback that did not start in this browser is rejected
  (login CSRF). Verification returns None on any failure -- the relay turns
  that into a login redirect with an error.

  SECRET_KEY: sourced from core.config.get_settings() [M6].

Layer rule: no imports from api/, web/ or social/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from core.config import get_settings

logger = logging.getLogger("inbook.auth.oauth_state")

_ALGORITHM = "HS256"

STATE_TTL_SECONDS = 600
NONCE_COOKIE = "oauth_nonce"
SOURCE_TAG = "frontend_proxy"


def build_state(origin: str, referrer: str = "", source: str = SOURCE_TAG) -> tuple[str, str]:
    """Return (signed_state, nonce) for one OAuth initiation."""
    nonce = secrets.token_urlsafe(16)
    now = datetime.now(timezone.utc)
    payload = {
        "origin": origin,
        "referrer": referrer,
        "source": source,
        "timestamp": int(now.timestamp() * 1000),
        "nonce": nonce,
        "exp": now + timedelta(seconds=STATE_TTL_SECONDS),
    }
    return jwt.encode(payload, get_settings().secret_key, algorithm=_ALGORITHM), nonce


def verify_state(state: str | None, nonce: str | None) -> dict | None:
    """Decode and verify a state blob. Returns the claims or None on any failure."""
    if not state or not nonce:
        return None
    try:
        claims = jwt.decode(state, get_settings().secret_key, algorithms=[_ALGORITHM])
    except JWTError as exc:
        logger.warning("Rejected OAuth state: %s", exc)
        return None
    if not secrets.compare_digest(str(claims.get("nonce", "")), nonce):
        logger.warning("Rejected OAuth state: nonce mismatch")
        return None
    return claims


def set_nonce_cookie(response, nonce: str) -> None:
    """Write the state nonce as a short-lived httpOnly cookie on the response."""
    cfg = get_settings()
    response.set_cookie(
        NONCE_COOKIE,
        value=nonce,
        httponly=True,
        samesite="lax",
        secure=cfg.secure_cookies,
        max_age=STATE_TTL_SECONDS,
        path="/",
    )
