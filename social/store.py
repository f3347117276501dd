"""
social/store.py -- Reactive collections of server-owned social entities.

SocialStore holds the locally mirrored posts (with nested comments and
replies), stories, friend requests and the viewer's follow/friend sets. All
writes go through the named operations below; each one notifies subscribers
with a topic ("posts", "stories", "requests", "graph", "error") and returns
whatever is needed to undo it.

Changeset wraps a store for one optimistic mutation. It applies operations
through the store, records their inverses, and rollback() replays the
inverses newest-first so every touched field returns to its exact
pre-mutation value.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any, Optional

from core.models import Comment, FriendRequest, Post, Story

logger = logging.getLogger("inbook.social.store")

Listener = Callable[["SocialStore", str], None]

# Membership sets kept per viewer.
GRAPH_SETS = ("following", "friends", "sent_requests")


def _find_comment(
    comments: list[Comment], comment_id: str, parent_id: Optional[str] = None
) -> Optional[tuple[list[Comment], int, Optional[str]]]:
    """Locate a comment anywhere in a comment tree. Returns (container, index, parent_id)."""
    for index, comment in enumerate(comments):
        if comment.id == comment_id:
            return comments, index, parent_id
        found = _find_comment(comment.replies, comment_id, comment.id)
        if found is not None:
            return found
    return None


class SocialStore:
    def __init__(self) -> None:
        self._posts: dict[str, Post] = {}
        self._stories: dict[str, Story] = {}
        self._requests: dict[str, FriendRequest] = {}
        self._graph: dict[str, set[str]] = {name: set() for name in GRAPH_SETS}
        self.error: Optional[str] = None
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, topic: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(self, topic)
            except Exception:
                logger.exception("Social store listener failed on %s", topic)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def posts(self) -> list[Post]:
        return list(self._posts.values())

    @property
    def stories(self) -> list[Story]:
        return list(self._stories.values())

    @property
    def friend_requests(self) -> list[FriendRequest]:
        return list(self._requests.values())

    def get_post(self, post_id: str) -> Optional[Post]:
        return self._posts.get(post_id)

    def get_story(self, story_id: str) -> Optional[Story]:
        return self._stories.get(story_id)

    def get_request(self, request_id: str) -> Optional[FriendRequest]:
        return self._requests.get(request_id)

    def get_comment(self, post_id: str, comment_id: str) -> Optional[Comment]:
        post = self._posts.get(post_id)
        if post is None:
            return None
        found = _find_comment(post.comments, comment_id)
        return found[0][found[1]] if found else None

    def locate_comment(self, comment_id: str) -> Optional[tuple[str, Comment, Optional[str]]]:
        """Find a comment across every loaded post. Returns (post_id, comment, parent_id)."""
        for post in self._posts.values():
            found = _find_comment(post.comments, comment_id)
            if found:
                container, index, parent_id = found
                return post.id, container[index], parent_id
        return None

    def is_member(self, set_name: str, user_id: str) -> bool:
        return user_id in self._graph[set_name]

    # ------------------------------------------------------------------
    # Bulk loads (from list/detail endpoints)
    # ------------------------------------------------------------------

    def load_posts(self, posts: Iterable[Post]) -> None:
        self._posts = {p.id: p for p in posts}
        self._emit("posts")

    def load_stories(self, stories: Iterable[Story]) -> None:
        self._stories = {s.id: s for s in stories}
        self._emit("stories")

    def load_friend_requests(self, requests: Iterable[FriendRequest]) -> None:
        self._requests = {r.id: r for r in requests}
        self._emit("requests")

    def load_graph(self, set_name: str, user_ids: Iterable[str]) -> None:
        self._graph[set_name] = set(user_ids)
        self._emit("graph")

    def refresh_post(self, post: Post) -> bool:
        """Replace a loaded post with a fresh server copy. Unknown posts are ignored."""
        if post.id not in self._posts:
            return False
        self._posts[post.id] = post
        self._emit("posts")
        return True

    # ------------------------------------------------------------------
    # Field updates -- each returns the previous values, or None if absent
    # ------------------------------------------------------------------

    def set_post_fields(self, post_id: str, **fields: Any) -> Optional[dict]:
        post = self._posts.get(post_id)
        if post is None:
            return None
        previous = {name: getattr(post, name) for name in fields}
        for name, value in fields.items():
            setattr(post, name, value)
        self._emit("posts")
        return previous

    def set_comment_fields(self, post_id: str, comment_id: str, **fields: Any) -> Optional[dict]:
        comment = self.get_comment(post_id, comment_id)
        if comment is None:
            return None
        previous = {name: getattr(comment, name) for name in fields}
        for name, value in fields.items():
            setattr(comment, name, value)
        self._emit("posts")
        return previous

    def set_story_fields(self, story_id: str, **fields: Any) -> Optional[dict]:
        story = self._stories.get(story_id)
        if story is None:
            return None
        previous = {name: getattr(story, name) for name in fields}
        for name, value in fields.items():
            setattr(story, name, value)
        self._emit("stories")
        return previous

    def set_membership(self, set_name: str, user_id: str, present: bool) -> bool:
        """Add or remove user_id from a graph set; returns the previous membership."""
        members = self._graph[set_name]
        previous = user_id in members
        if present:
            members.add(user_id)
        else:
            members.discard(user_id)
        if previous != present:
            self._emit("graph")
        return previous

    def set_error(self, message: Optional[str]) -> Optional[str]:
        previous = self.error
        self.error = message
        self._emit("error")
        return previous

    # ------------------------------------------------------------------
    # Structural updates
    # ------------------------------------------------------------------

    def insert_comment(
        self,
        post_id: str,
        comment: Comment,
        parent_id: Optional[str] = None,
        index: int = 0,
    ) -> bool:
        """Insert a comment at index (top-level, or under parent_id as a reply)."""
        post = self._posts.get(post_id)
        if post is None:
            return False
        if parent_id is None:
            container = post.comments
        else:
            parent = self.get_comment(post_id, parent_id)
            if parent is None:
                return False
            container = parent.replies
        container.insert(index, comment)
        self._emit("posts")
        return True

    def remove_comment(self, post_id: str, comment_id: str) -> Optional[tuple[Comment, Optional[str], int]]:
        """Remove a comment; returns (comment, parent_id, index) for re-insertion."""
        post = self._posts.get(post_id)
        if post is None:
            return None
        found = _find_comment(post.comments, comment_id)
        if found is None:
            return None
        container, index, parent_id = found
        comment = container.pop(index)
        self._emit("posts")
        return comment, parent_id, index

    def replace_comment(self, post_id: str, comment_id: str, comment: Comment) -> bool:
        """Swap a comment in place (temporary placeholder -> confirmed server copy)."""
        post = self._posts.get(post_id)
        if post is None:
            return False
        found = _find_comment(post.comments, comment_id)
        if found is None:
            return False
        container, index, _ = found
        container[index] = comment
        self._emit("posts")
        return True

    def remove_post(self, post_id: str) -> Optional[tuple[Post, int]]:
        if post_id not in self._posts:
            return None
        index = list(self._posts).index(post_id)
        post = self._posts.pop(post_id)
        self._emit("posts")
        return post, index

    def insert_post(self, post: Post, index: Optional[int] = None) -> None:
        items = list(self._posts.items())
        items.insert(len(items) if index is None else index, (post.id, post))
        self._posts = dict(items)
        self._emit("posts")

    def remove_story(self, story_id: str) -> Optional[tuple[Story, int]]:
        if story_id not in self._stories:
            return None
        index = list(self._stories).index(story_id)
        story = self._stories.pop(story_id)
        self._emit("stories")
        return story, index

    def remove_request(self, request_id: str) -> Optional[tuple[FriendRequest, int]]:
        if request_id not in self._requests:
            return None
        index = list(self._requests).index(request_id)
        request = self._requests.pop(request_id)
        self._emit("requests")
        return request, index

    def insert_request(self, request: FriendRequest, index: Optional[int] = None) -> None:
        items = list(self._requests.items())
        items.insert(len(items) if index is None else index, (request.id, request))
        self._requests = dict(items)
        self._emit("requests")


class Changeset:
    """Undo log for one optimistic mutation.

    Usage:
        changes = Changeset(store)
        changes.set_post_fields("p1", is_liked=True, like_count=4)
        ...
        changes.rollback()   # p1 is back to its previous is_liked/like_count
    """

    def __init__(self, store: SocialStore) -> None:
        self.store = store
        self._undo: list[Callable[[], Any]] = []

    @property
    def touched(self) -> bool:
        return bool(self._undo)

    def rollback(self) -> None:
        while self._undo:
            self._undo.pop()()

    def set_post_fields(self, post_id: str, **fields: Any) -> bool:
        previous = self.store.set_post_fields(post_id, **fields)
        if previous is None:
            return False
        self._undo.append(lambda: self.store.set_post_fields(post_id, **previous))
        return True

    def adjust_post_count(self, post_id: str, field: str, delta: int) -> bool:
        """Add delta to a post counter, never going below zero."""
        post = self.store.get_post(post_id)
        if post is None:
            return False
        return self.set_post_fields(post_id, **{field: max(0, getattr(post, field) + delta)})

    def set_comment_fields(self, post_id: str, comment_id: str, **fields: Any) -> bool:
        previous = self.store.set_comment_fields(post_id, comment_id, **fields)
        if previous is None:
            return False
        self._undo.append(lambda: self.store.set_comment_fields(post_id, comment_id, **previous))
        return True

    def set_story_fields(self, story_id: str, **fields: Any) -> bool:
        previous = self.store.set_story_fields(story_id, **fields)
        if previous is None:
            return False
        self._undo.append(lambda: self.store.set_story_fields(story_id, **previous))
        return True

    def set_membership(self, set_name: str, user_id: str, present: bool) -> None:
        previous = self.store.set_membership(set_name, user_id, present)
        self._undo.append(lambda: self.store.set_membership(set_name, user_id, previous))

    def insert_comment(self, post_id: str, comment: Comment, parent_id: Optional[str] = None, index: int = 0) -> bool:
        if not self.store.insert_comment(post_id, comment, parent_id=parent_id, index=index):
            return False
        self._undo.append(lambda: self.store.remove_comment(post_id, comment.id))
        return True

    def remove_comment(self, post_id: str, comment_id: str) -> Optional[Comment]:
        removed = self.store.remove_comment(post_id, comment_id)
        if removed is None:
            return None
        comment, parent_id, index = removed
        self._undo.append(lambda: self.store.insert_comment(post_id, comment, parent_id=parent_id, index=index))
        return comment

    def remove_request(self, request_id: str) -> Optional[FriendRequest]:
        removed = self.store.remove_request(request_id)
        if removed is None:
            return None
        request, index = removed
        self._undo.append(lambda: self.store.insert_request(request, index=index))
        return request
