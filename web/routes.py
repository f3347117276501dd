"""
web/routes.py -- Application shell for every page route.

Pages are rendered by the client runtime; the server only hands out the
shell document with the deployment config embedded. Access control happens
before these handlers run: the route guard middleware in api/main.py has
already redirected unauthenticated visitors of protected pages.

Routes:
  GET /             -- home feed shell
  GET /{page_path}  -- any other page (friends-list, posts/{id}, user-login, ...)
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from auth.guard import CALLBACK_ROUTES, LOGIN_PATH, REGISTER_PATH
from core.config import get_settings

logger = logging.getLogger("inbook.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

_TITLES = {
    "/": "Home",
    LOGIN_PATH: "Log in",
    REGISTER_PATH: "Sign up",
    "/forgot-password": "Reset password",
    "/friends-list": "Friends",
    "/video-feed": "Videos",
    "/user-profile": "Profile",
}


def _title(path: str) -> str:
    if path in CALLBACK_ROUTES:
        return "Signing in"
    first = "/" + path.strip("/").split("/", 1)[0] if path != "/" else "/"
    return _TITLES.get(first, "Inbook")


def _render_shell(request: Request, path: str) -> HTMLResponse:
    cfg = get_settings()
    response = templates.TemplateResponse(
        request,
        "shell.html",
        {
            "title": _title(path),
            "path": path,
            "backend_url": cfg.backend_url,
            "config": {
                "backendUrl": cfg.backend_url,
                "frontendUrl": cfg.frontend_url,
                "debug": cfg.debug,
            },
        },
    )
    # Callback pages carry a token in the query string; keep them out of caches.
    if path in CALLBACK_ROUTES:
        response.headers["Cache-Control"] = "no-store"
    return response


@router.get("/", response_class=HTMLResponse, include_in_schema=False)
def home(request: Request) -> HTMLResponse:
    return _render_shell(request, "/")


@router.get("/{page_path:path}", response_class=HTMLResponse, include_in_schema=False)
def page(request: Request, page_path: str) -> HTMLResponse:
    return _render_shell(request, f"/{page_path}")
