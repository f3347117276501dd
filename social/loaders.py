"""
social/loaders.py -- Fill the social store from the backend's list endpoints.

  load_posts(page)        GET /api/posts/feed/timeline (or /api/posts)
                          page 1 replaces the loaded posts, later pages append
  load_stories()          GET /api/stories/feed/timeline (or /api/stories)
  load_friend_requests()  GET /api/friends/requests
  load_graph()            GET /api/users/following/{viewer}
                          GET /api/users/mutual-friends/{viewer}

A failed load leaves whatever was loaded before in place, records the error on
the store and notifies the user. Like the mutations, loads never raise; the
outcome comes back as a MutationResult whose data is the loaded entities.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional

from core.backend import BackendClient
from core.errors import Unauthenticated, UpstreamError
from core.models import FriendRequest, Post, Story, UserSnapshot
from core.notify import Notifier
from social.coordinator import SESSION_EXPIRED_MESSAGE, MutationResult, OptimisticCoordinator
from social.store import SocialStore

logger = logging.getLogger("inbook.social.loaders")


def _entities(items: list) -> list[dict]:
    return [item for item in items if isinstance(item, dict) and (item.get("_id") or item.get("id"))]


def _user_ids(items: list) -> list[str]:
    """Ids from a list of users that may be populated documents or bare ids."""
    ids = []
    for item in items:
        user_id = UserSnapshot.from_api(item).id if isinstance(item, dict) else str(item or "")
        if user_id:
            ids.append(user_id)
    return ids


class SocialLoader:
    def __init__(self, coordinator: OptimisticCoordinator) -> None:
        self.coordinator = coordinator

    @property
    def store(self) -> SocialStore:
        return self.coordinator.store

    @property
    def backend(self) -> BackendClient:
        return self.coordinator.backend

    @property
    def notifier(self) -> Notifier:
        return self.coordinator.notifier

    async def _fetch(
        self, what: str, fetch: Callable[[], Awaitable[Any]]
    ) -> tuple[Any, Optional[MutationResult]]:
        """Run one list request. Returns (data, None) or (None, failed result)."""
        try:
            data = await fetch()
        except Unauthenticated as exc:
            logger.warning("Loading %s rejected: %s", what, exc.message)
            self.notifier.error(SESSION_EXPIRED_MESSAGE)
            return None, MutationResult(ok=False, error=exc.message, unauthenticated=True)
        except UpstreamError as exc:
            logger.warning("Loading %s failed (HTTP %s): %s", what, exc.status_code, exc.message)
            self.store.set_error(exc.message)
            self.notifier.error(f"Failed to load {what}")
            return None, MutationResult(ok=False, error=exc.message)
        return data, None

    # ------------------------------------------------------------------
    # Posts and stories
    # ------------------------------------------------------------------

    async def load_posts(self, page: int = 1, limit: int = 10, timeline: bool = True) -> MutationResult:
        fetch = self.backend.feed_posts if timeline else self.backend.list_posts
        items, failure = await self._fetch("posts", lambda: fetch(page, limit))
        if failure is not None:
            return failure

        viewer_id = self.coordinator.viewer_id
        posts = [Post.from_api(item, viewer_id) for item in _entities(items)]
        if page <= 1:
            self.store.load_posts(posts)
        else:
            for post in posts:
                # Pages shift when new posts arrive; a repeat replaces the older copy.
                if not self.store.refresh_post(post):
                    self.store.insert_post(post)
            if not posts:
                self.notifier.info("No more posts to show")
        self.store.set_error(None)
        logger.debug("Loaded %d posts (page %d)", len(posts), page)
        return MutationResult(ok=True, data=posts)

    async def load_stories(self, timeline: bool = True) -> MutationResult:
        fetch = self.backend.feed_stories if timeline else self.backend.list_stories
        items, failure = await self._fetch("stories", fetch)
        if failure is not None:
            return failure
        stories = [Story.from_api(item, self.coordinator.viewer_id) for item in _entities(items)]
        self.store.load_stories(stories)
        self.store.set_error(None)
        return MutationResult(ok=True, data=stories)

    # ------------------------------------------------------------------
    # Friends and follows
    # ------------------------------------------------------------------

    async def load_friend_requests(self) -> MutationResult:
        items, failure = await self._fetch("friend requests", self.backend.friend_requests)
        if failure is not None:
            return failure
        requests = [FriendRequest.from_api(item) for item in _entities(items)]
        self.store.load_friend_requests(r for r in requests if r.status == "pending")
        self.store.set_error(None)
        return MutationResult(ok=True, data=self.store.friend_requests)

    async def load_graph(self) -> MutationResult:
        """Load who the viewer follows and who their friends are."""
        viewer_id = self.coordinator.viewer_id
        if not viewer_id:
            self.notifier.error(SESSION_EXPIRED_MESSAGE)
            return MutationResult(ok=False, error="Authentication required", unauthenticated=True)

        following, failure = await self._fetch("following", lambda: self.backend.following(viewer_id))
        if failure is not None:
            return failure
        friends, failure = await self._fetch("friends", lambda: self.backend.mutual_friends(viewer_id))
        if failure is not None:
            return failure

        graph = {"following": _user_ids(following), "friends": _user_ids(friends)}
        for set_name, ids in graph.items():
            self.store.load_graph(set_name, ids)
        self.store.set_error(None)
        return MutationResult(ok=True, data=graph)
