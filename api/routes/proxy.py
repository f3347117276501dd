"""
api/routes/proxy.py -- Same-origin pass-through to the backend REST API.

Every /api/* request the server does not handle itself is forwarded to
BACKEND_URL with its method, query string, body and cookies intact. The
backend's Set-Cookie headers are rewritten on the way back: the Domain
attribute is removed so the cookie binds to the origin the browser is
actually talking to, not the backend's.

Registered after api/routes/oauth.py so the OAuth relay legs win route
resolution over the catch-all.
"""

from __future__ import annotations

import logging
import re

import requests
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from api.models import ApiEnvelope
from core.config import get_settings

logger = logging.getLogger("inbook.proxy")

router = APIRouter()

# Headers that describe one hop, not the message. Never forwarded.
_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "transfer-encoding",
    "te",
    "upgrade",
    "host",
    "content-length",
    "accept-encoding",
}

_DOMAIN_ATTR = re.compile(r";\s*domain=[^;]*", re.IGNORECASE)


def strip_cookie_domain(cookie: str) -> str:
    """Remove the Domain attribute from one Set-Cookie value."""
    return _DOMAIN_ATTR.sub("", cookie)


def upstream_set_cookies(resp: requests.Response) -> list[str]:
    """Return every Set-Cookie header of an upstream response, unfolded."""
    raw = getattr(resp, "raw", None)
    if raw is not None and hasattr(getattr(raw, "headers", None), "getlist"):
        return list(raw.headers.getlist("Set-Cookie"))
    value = resp.headers.get("set-cookie")
    return [value] if value else []


def relay_set_cookies(upstream: requests.Response, response: Response) -> None:
    for cookie in upstream_set_cookies(upstream):
        response.headers.append("set-cookie", strip_cookie_domain(cookie))


@router.api_route("/api/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def proxy(path: str, request: Request) -> Response:
    cfg = get_settings()
    http: requests.Session = request.app.state.http
    url = f"{cfg.backend_url}/api/{path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"

    headers = {k: v for k, v in request.headers.items() if k.lower() not in _HOP_HEADERS}
    body = await request.body()
    try:
        upstream = await run_in_threadpool(
            http.request,
            request.method,
            url,
            headers=headers,
            data=body or None,
            allow_redirects=False,
            timeout=cfg.api_timeout,
        )
    except requests.RequestException as exc:
        logger.error("Proxy %s %s failed: %s", request.method, url, exc)
        return JSONResponse(
            status_code=500,
            content=ApiEnvelope(success=False, message="Internal Server Error", error=str(exc)).model_dump(
                exclude_none=True
            ),
        )

    response = Response(content=upstream.content, status_code=upstream.status_code)
    # requests has already decoded the body, so the upstream encoding no longer applies.
    skip = _HOP_HEADERS | {"set-cookie", "content-encoding"}
    for name, value in upstream.headers.items():
        if name.lower() not in skip:
            response.headers[name] = value
    relay_set_cookies(upstream, response)
    return response
