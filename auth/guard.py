"""
auth/guard.py -- Route guard decision logic.

evaluate_route() is a pure function of (path, credential presence, query):
no network calls, no storage access. The frontend server runs it as HTTP
middleware before a page is served; the CLI runs it directly.

Rules:
  asset/API paths            -> allow (never guarded)
  OAuth callback pages       -> allow (the session is still being established)
  public page + credential   -> redirect "/" unless a bypass flag is set
  public page                -> allow
  protected + no credential  -> redirect /user-login?callbackUrl=<path>
                                unless a bypass flag is set
  protected + credential     -> allow

Bypass flags (noredirect=true, loginSuccess=true) exist only to break
redirect loops while cookies propagate after a login. They do not grant
access to data: every API call still needs a valid token.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from auth.credentials import DEV_TOKEN_COOKIE, STATUS_COOKIE, STATUS_VALUE, TOKEN_COOKIE

LOGIN_PATH = "/user-login"
REGISTER_PATH = "/user-register"
PUBLIC_ROUTES = (LOGIN_PATH, REGISTER_PATH, "/forgot-password")
CALLBACK_ROUTES = ("/auth-callback", "/google-callback")
BYPASS_FLAGS = ("noredirect", "loginSuccess")

_UNGUARDED_PREFIXES = ("/api/", "/_next/", "/static/")
_UNGUARDED_PATHS = {"/api", "/healthz", "/favicon.ico"}


@dataclass(frozen=True)
class GuardDecision:
    action: str  # "allow" | "redirect"
    reason: str
    location: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.action == "allow"


def _allow(reason: str) -> GuardDecision:
    return GuardDecision(action="allow", reason=reason)


def _redirect(location: str, reason: str) -> GuardDecision:
    return GuardDecision(action="redirect", reason=reason, location=location)


def _matches(path: str, routes: tuple[str, ...]) -> bool:
    """Exact match or a sub-path of one of routes ("/user-login/x", not "/user-loginx")."""
    return any(path == route or path.startswith(route + "/") for route in routes)


def _is_unguarded(path: str) -> bool:
    if path in _UNGUARDED_PATHS or path.startswith(_UNGUARDED_PREFIXES):
        return True
    # Anything that looks like a file (robots.txt, logo.png) is static.
    return "." in path.rsplit("/", 1)[-1]


def is_public_route(path: str) -> bool:
    return _matches(path, PUBLIC_ROUTES)


def has_bypass_flag(query: Optional[Mapping[str, str]]) -> bool:
    if not query:
        return False
    return any(query.get(flag) == "true" for flag in BYPASS_FLAGS)


def has_credential_cookie(cookies: Mapping[str, str]) -> bool:
    """True when any cookie-backed credential marker is present."""
    if cookies.get(TOKEN_COOKIE) or cookies.get(DEV_TOKEN_COOKIE):
        return True
    return cookies.get(STATUS_COOKIE) == STATUS_VALUE


def login_redirect(path: str) -> str:
    return f"{LOGIN_PATH}?callbackUrl={quote(path, safe='/')}"


def evaluate_route(
    path: str,
    has_credential: bool,
    query: Optional[Mapping[str, str]] = None,
) -> GuardDecision:
    """Decide whether a page request is served or redirected."""
    path = path or "/"
    if _is_unguarded(path):
        return _allow("unguarded")
    if _matches(path, CALLBACK_ROUTES):
        return _allow("callback")

    bypass = has_bypass_flag(query)
    if is_public_route(path):
        if has_credential and not bypass:
            return _redirect("/", "already-authenticated")
        return _allow("public")

    if not has_credential:
        if bypass:
            return _allow("bypass")
        return _redirect(login_redirect(path), "unauthenticated")
    return _allow("authenticated")


def safe_callback_url(url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths. [C2]

    Rejects absolute URLs and protocol-relative ones ("//evil.com",
    "/\\evil.com"), which browsers would follow off-site.
    """
    if url and url.startswith("/") and not url.startswith("//") and not url.startswith("/\\"):
        return url
    return "/"
