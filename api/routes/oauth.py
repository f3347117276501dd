"""
api/routes/oauth.py -- OAuth redirect relay (same-origin legs of Google login).

  GET /api/auth/google            initiation leg
      Builds a signed state blob, stores its nonce in an httpOnly cookie and
      302-redirects the browser to <backend>/api/auth/google with the state
      and debug parameters attached.

  GET /api/auth/google/callback   callback leg
      Verifies the state (unless VERIFY_OAUTH_STATE=false), forwards the
      provider's callback to the backend without following redirects, and
      re-issues the backend's redirect to the browser with debug_source and
      debug_time appended. A non-redirect answer is relayed as-is. Any
      failure or timeout becomes a redirect to the login page carrying an
      encoded error message -- the browser never sees a raw exception.

Neither leg holds business logic. The backend owns the OAuth exchange; the
token reaches the browser as query parameters of the final redirect to
/auth-callback, where the client's synchronizer takes over.

Security:
  [M8] State verification binds the callback to the browser that started the
       flow (nonce cookie) and to a 10 minute window (JWT exp).
  [H2] The initiation leg is rate limited per client address.
"""

from __future__ import annotations

import logging
import time
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests
from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse, Response
from jose import JWTError

from api.limiter import limiter
from api.routes.proxy import relay_set_cookies
from auth.guard import LOGIN_PATH
from auth.oauth_state import NONCE_COOKIE, SOURCE_TAG, build_state, set_nonce_cookie, verify_state
from core.config import get_settings

logger = logging.getLogger("inbook.relay")

router = APIRouter()

CALLBACK_SOURCE = "callback_proxy"

# Headers the callback leg forwards upstream.
_FORWARDED_HEADERS = ("cookie", "x-forwarded-for", "x-real-ip", "user-agent")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _own_origin(request: Request) -> str:
    return f"{request.url.scheme}://{request.url.netloc}"


def _login_error(message: str, source: str) -> RedirectResponse:
    """Redirect to the login page with an encoded error, never a raw exception."""
    query = urlencode({"error": message, "source": source, "time": _now_ms()})
    return RedirectResponse(f"{get_settings().frontend_url}{LOGIN_PATH}?{query}", status_code=302)


def _add_debug_params(location: str) -> str:
    try:
        parts = urlsplit(location)
    except ValueError:
        logger.warning("Could not parse upstream redirect %r; relaying unchanged", location)
        return location
    query = parse_qsl(parts.query, keep_blank_values=True)
    query += [("debug_source", CALLBACK_SOURCE), ("debug_time", str(_now_ms()))]
    return urlunsplit(parts._replace(query=urlencode(query)))


# ---------------------------------------------------------------------------
# Initiation leg
# ---------------------------------------------------------------------------


@limiter.limit(get_settings().oauth_rate_limit)  # [H2] -- must be ABOVE @router to preserve FastAPI introspection
@router.get("/api/auth/google", include_in_schema=False)
def google_start(request: Request) -> Response:
    cfg = get_settings()
    origin = request.headers.get("origin") or _own_origin(request)
    referrer = request.headers.get("referer") or origin
    try:
        state, nonce = build_state(origin, referrer)
    except JWTError as exc:
        logger.error("Could not sign OAuth state: %s", exc)
        return _login_error("Failed to connect to authentication service", source="oauth_init")

    params = {
        "source": SOURCE_TAG,
        "timestamp": _now_ms(),
        "state": state,
        "prompt": "select_account",
        "include_granted_scopes": "true",
    }
    if cfg.debug:
        params["debug"] = "true"
    target = f"{cfg.backend_url}/api/auth/google?{urlencode(params)}"
    logger.info("Relaying OAuth initiation to %s/api/auth/google (origin=%s)", cfg.backend_url, origin)

    response = RedirectResponse(target, status_code=302)
    set_nonce_cookie(response, nonce)
    return response


# ---------------------------------------------------------------------------
# Callback leg
# ---------------------------------------------------------------------------


@router.get("/api/auth/google/callback", include_in_schema=False)
def google_callback(request: Request) -> Response:
    cfg = get_settings()
    http: requests.Session = request.app.state.http

    if cfg.verify_oauth_state:  # [M8]
        claims = verify_state(request.query_params.get("state"), request.cookies.get(NONCE_COOKIE))
        if claims is None:
            return _login_error("Authentication failed: invalid or expired login request", source=CALLBACK_SOURCE)

    upstream_url = f"{cfg.backend_url}/api/auth/google/callback"
    if request.url.query:
        upstream_url = f"{upstream_url}?{request.url.query}"

    origin = request.headers.get("origin") or _own_origin(request)
    headers = {name: request.headers.get(name, "") for name in _FORWARDED_HEADERS}
    headers["origin"] = origin
    headers["referer"] = request.headers.get("referer") or origin

    try:
        upstream = http.get(upstream_url, headers=headers, allow_redirects=False, timeout=cfg.relay_timeout)
    except requests.RequestException as exc:
        logger.error("OAuth callback relay failed: %s", exc)
        return _login_error(f"Authentication failed: {exc}", source=CALLBACK_SOURCE)

    location = upstream.headers.get("location")
    if location:
        redirect_to = _add_debug_params(location)
        logger.info("Backend redirected OAuth callback (HTTP %d)", upstream.status_code)
        response: Response = RedirectResponse(redirect_to, status_code=302)
    else:
        logger.info("Backend answered OAuth callback without redirect (HTTP %d)", upstream.status_code)
        response = Response(
            content=upstream.content,
            status_code=upstream.status_code,
            media_type=upstream.headers.get("content-type") or "text/html",
        )
    relay_set_cookies(upstream, response)
    response.delete_cookie(NONCE_COOKIE, path="/")
    return response
