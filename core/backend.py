"""
core/backend.py -- Async client for the Inbook backend REST API.

Every endpoint answers with the envelope {"success": bool, "message"?: str,
"data"?: object}. This module owns the translation from HTTP outcomes to the
error taxonomy in core.errors:

  401 / 403                      -> Unauthenticated
  other non-2xx                  -> UpstreamError(status_code=...)
  2xx with "success": false      -> UpstreamError(status_code=...)
  timeout / connection failure   -> UpstreamError(status_code=None)

Callers never see httpx exceptions. The bearer token is read from a
token_provider callable at request time, so a token written to the credential
store after construction is picked up by the next call.

Layer rule: no imports from api/, web/, auth/ or social/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Optional

import httpx

from core.config import get_settings
from core.errors import Unauthenticated, UpstreamError
from core.models import UserSnapshot

logger = logging.getLogger("inbook.backend")

CURRENT_USER_PATH = "/api/users/me"


class BackendClient:
    """Thin async wrapper over the backend contract.

    Usage:
        client = BackendClient(token_provider=lambda: state.token)
        user = await client.current_user()
        await client.aclose()

    Tests pass transport=httpx.MockTransport(handler) to answer requests
    in-process.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        cfg = get_settings()
        self.base_url = (base_url or cfg.backend_url).rstrip("/")
        self._token_provider = token_provider
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else cfg.api_timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Core request
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        token: Optional[str] = None,
    ) -> dict:
        """Send one request and return the decoded envelope.

        Args:
            token: Explicit bearer token. Overrides the token provider; used
                   when validating a token that is not stored yet.
        """
        headers = {
            "Content-Type": "application/json",
            "Cache-Control": "no-cache, no-store, must-revalidate",
        }
        bearer = token or (self._token_provider() if self._token_provider else None)
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"

        try:
            resp = await self._client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("%s %s timed out", method, path)
            raise UpstreamError("The server took too long to respond", context={"path": path}) from exc
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise UpstreamError(f"Could not reach the server: {exc}", context={"path": path}) from exc

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {"success": resp.is_success, "data": payload}

        message = payload.get("message") or f"Request failed with HTTP {resp.status_code}"
        if resp.status_code in (401, 403):
            raise Unauthenticated(message, context={"path": path, "status": resp.status_code})
        if resp.is_error or payload.get("success") is False:
            raise UpstreamError(message, status_code=resp.status_code, context={"path": path})
        return payload

    async def _data(self, method: str, path: str, json: Any = None) -> Any:
        payload = await self.request(method, path, json=json)
        return payload.get("data") or {}

    async def _list(self, path: str) -> list:
        data = (await self.request("GET", path)).get("data")
        return data if isinstance(data, list) else []

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> tuple[str, UserSnapshot]:
        payload = await self.request("POST", "/api/auth/login", json={"email": email, "password": password})
        return _extract_grant(payload)

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        gender: str,
        date_of_birth: str,
    ) -> tuple[str, UserSnapshot]:
        body = {
            "username": username,
            "email": email,
            "password": password,
            "gender": gender,
            "dateOfBirth": date_of_birth,
        }
        payload = await self.request("POST", "/api/auth/register", json=body)
        return _extract_grant(payload)

    async def logout(self) -> None:
        await self.request("GET", "/api/auth/logout")

    async def current_user(self, token: Optional[str] = None) -> UserSnapshot:
        payload = await self.request("GET", CURRENT_USER_PATH, token=token)
        data = payload.get("data") or payload.get("user") or {}
        user = UserSnapshot.from_api(data) if isinstance(data, dict) else None
        if user is None or not user.id:
            raise UpstreamError("Server did not return the current user", context={"path": CURRENT_USER_PATH})
        return user

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    async def list_posts(self, page: int = 1, limit: int = 10) -> list:
        return await self._list(f"/api/posts?page={page}&limit={limit}")

    async def feed_posts(self, page: int = 1, limit: int = 10) -> list:
        """Posts from the viewer and the users they follow, newest first."""
        return await self._list(f"/api/posts/feed/timeline?page={page}&limit={limit}")

    async def get_post(self, post_id: str) -> dict:
        return await self._data("GET", f"/api/posts/{post_id}?includeComments=true")

    async def delete_post(self, post_id: str) -> dict:
        return await self._data("DELETE", f"/api/posts/{post_id}")

    async def like_post(self, post_id: str) -> dict:
        return await self._data("PUT", f"/api/posts/{post_id}/like")

    async def unlike_post(self, post_id: str) -> dict:
        return await self._data("PUT", f"/api/posts/{post_id}/unlike")

    async def share_post(self, post_id: str, platform: str) -> dict:
        return await self._data("PUT", f"/api/posts/{post_id}/share", json={"platform": platform})

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    async def add_comment(self, post_id: str, text: str) -> dict:
        return await self._data("POST", f"/api/posts/{post_id}/comment", json={"text": text})

    async def update_comment(self, comment_id: str, text: str) -> dict:
        return await self._data("PUT", f"/api/posts/comments/{comment_id}", json={"text": text})

    async def delete_comment(self, comment_id: str) -> dict:
        return await self._data("DELETE", f"/api/posts/comments/{comment_id}")

    async def like_comment(self, comment_id: str) -> dict:
        return await self._data("PUT", f"/api/posts/comments/{comment_id}/like")

    async def unlike_comment(self, comment_id: str) -> dict:
        return await self._data("PUT", f"/api/posts/comments/{comment_id}/unlike")

    async def reply_to_comment(self, comment_id: str, text: str) -> dict:
        return await self._data("POST", f"/api/posts/comments/{comment_id}/reply", json={"text": text})

    # ------------------------------------------------------------------
    # Stories
    # ------------------------------------------------------------------

    async def list_stories(self) -> list:
        return await self._list("/api/stories")

    async def feed_stories(self) -> list:
        return await self._list("/api/stories/feed/timeline")

    async def view_story(self, story_id: str) -> dict:
        return await self._data("PUT", f"/api/stories/{story_id}/view")

    async def delete_story(self, story_id: str) -> dict:
        return await self._data("DELETE", f"/api/stories/{story_id}")

    # ------------------------------------------------------------------
    # Social graph
    # ------------------------------------------------------------------

    async def following(self, user_id: str) -> list:
        return await self._list(f"/api/users/following/{user_id}")

    async def mutual_friends(self, user_id: str) -> list:
        return await self._list(f"/api/users/mutual-friends/{user_id}")

    async def friend_requests(self) -> list:
        """Pending requests addressed to the viewer, sender populated."""
        return await self._list("/api/friends/requests")

    async def follow_user(self, user_id: str) -> dict:
        return await self._data("PUT", f"/api/users/follow/{user_id}", json={})

    async def unfollow_user(self, user_id: str) -> dict:
        return await self._data("PUT", f"/api/users/unfollow/{user_id}", json={})

    async def send_friend_request(self, user_id: str) -> dict:
        return await self._data("POST", f"/api/friends/request/{user_id}")

    async def accept_friend_request(self, request_id: str) -> dict:
        return await self._data("PUT", f"/api/friends/accept/{request_id}")

    async def decline_friend_request(self, request_id: str) -> dict:
        return await self._data("PUT", f"/api/friends/decline/{request_id}")

    async def remove_friend(self, user_id: str) -> dict:
        return await self._data("DELETE", f"/api/friends/{user_id}")


def _extract_grant(payload: dict) -> tuple[str, UserSnapshot]:
    """Pull (token, user) out of a login/register response.

    Current backends nest both under "data"; older deployments returned them
    at the top level. A response without a token is a failed login even when
    it claims success.
    """
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    token = data.get("token") or payload.get("token")
    user = data.get("user") or payload.get("user")
    if not token or not isinstance(user, dict):
        raise UpstreamError("Login response did not include a token", context={"keys": sorted(payload)})
    return token, UserSnapshot.from_api(user)
