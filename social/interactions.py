"""
social/interactions.py -- The concrete optimistic mutations behind the UI.

Each action builds a local mutator, a request and (where the backend returns
authoritative values) a reconcile step, then hands them to the coordinator.

Local effects per action:
  like / unlike post     flip is_liked, like_count +-1        reconcile likeCount/likes
  share post             share_count +1                       reconcile shareCount
  add comment            prepend temp comment, comment_count +1   swap temp for server copy
  reply to comment       append temp reply                    swap temp for server copy
  update comment         replace text                         server text
  delete comment         remove comment, comment_count -(1 + replies)
  like / unlike comment  flip is_liked, like_count +-1        reconcile likeCount/likes
  follow / unfollow      following set membership
  friend request         sent_requests membership
  accept / decline       remove request (accept also adds the sender to friends)
  remove friend          friends membership
  view story             viewed=True, view_count +1 (first view only)
  delete story / post    removed locally only once the backend confirms

Delete comment only adjusts the count for a comment that was actually present,
so repeating a delete reports the backend's failure without counting twice.

A like or unlike the backend reports as already in effect ("already liked",
"not liked yet") settles on that state rather than rolling back.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Optional

from core.backend import BackendClient
from core.config import Settings, get_settings
from core.errors import UpstreamError
from core.models import SHARE_PLATFORMS, TEMP_ID_PREFIX, Comment, contains_viewer
from core.notify import Notifier
from social.coordinator import MutationResult, OptimisticCoordinator, ViewScope
from social.store import Changeset, SocialStore

logger = logging.getLogger("inbook.social.actions")


def _temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def _int(data: Any, key: str) -> Optional[int]:
    if isinstance(data, dict) and data.get(key) is not None:
        return int(data[key])
    return None


def _like_fields(data: Any, viewer_id: Optional[str]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    count = _int(data, "likeCount")
    if count is not None:
        fields["like_count"] = count
    if isinstance(data, dict) and "isLiked" in data:
        fields["is_liked"] = bool(data["isLiked"])
    elif isinstance(data, dict) and "likes" in data:
        fields["is_liked"] = contains_viewer(data["likes"], viewer_id)
    return fields


# Backend answers to a like/unlike that was already in effect, keyed by the
# state the request was trying to reach.
_LIKE_CONFLICTS = {True: "already liked", False: "not liked yet"}


def _like_request(
    request: Callable[[str], Awaitable[Any]], entity_id: str, target: bool
) -> Callable[[], Awaitable[Any]]:
    """Wrap a like/unlike call so "already in that state" counts as success.

    A 400 saying the target state already holds means the local copy was
    stale; the reconcile step then adopts the target instead of rolling back.
    """

    async def send() -> Any:
        try:
            return await request(entity_id)
        except UpstreamError as exc:
            if exc.status_code == 400 and _LIKE_CONFLICTS[target] in exc.message.lower():
                logger.info("Like state of %s already %s on the server", entity_id, target)
                return {"isLiked": target}
            raise

    return send


class SocialActions:
    """User-facing social mutations.

    Usage:
        actions = SocialActions(coordinator)
        result = await actions.toggle_post_like("p1")
        if not result.ok:
            ...  # already rolled back and notified
    """

    def __init__(self, coordinator: OptimisticCoordinator, settings: Settings | None = None) -> None:
        self.coordinator = coordinator
        self._settings = settings or get_settings()

    @property
    def store(self) -> SocialStore:
        return self.coordinator.store

    @property
    def backend(self) -> BackendClient:
        return self.coordinator.backend

    @property
    def notifier(self) -> Notifier:
        return self.coordinator.notifier

    def _rejected(self, message: str) -> MutationResult:
        self.notifier.error(message)
        return MutationResult(ok=False, error=message)

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    async def toggle_post_like(self, post_id: str, scope: Optional[ViewScope] = None) -> MutationResult:
        post = self.store.get_post(post_id)
        liked = post.is_liked if post is not None else False

        def mutate(changes: Changeset) -> None:
            if post is not None:
                changes.set_post_fields(
                    post_id, is_liked=not liked, like_count=max(0, post.like_count + (-1 if liked else 1))
                )

        def reconcile(data: Any) -> None:
            fields = _like_fields(data, self.coordinator.viewer_id)
            if fields:
                self.store.set_post_fields(post_id, **fields)

        request = self.backend.unlike_post if liked else self.backend.like_post
        return await self.coordinator.apply(
            post_id,
            mutate,
            _like_request(request, post_id, not liked),
            reconcile,
            failure_message="Failed to update like",
            refetch_post=post_id,
            scope=scope,
        )

    async def share_post(self, post_id: str, platform: str = "copy", scope: Optional[ViewScope] = None) -> MutationResult:
        if platform not in SHARE_PLATFORMS:
            platform = "other"

        def reconcile(data: Any) -> None:
            count = _int(data, "shareCount")
            if count is not None:
                self.store.set_post_fields(post_id, share_count=count)

        return await self.coordinator.apply(
            post_id,
            lambda changes: changes.adjust_post_count(post_id, "share_count", 1),
            lambda: self.backend.share_post(post_id, platform),
            reconcile,
            failure_message="Failed to share post",
            success_message="Post shared successfully",
            refetch_post=post_id,
            scope=scope,
        )

    def shared_link(self, post_id: str) -> str:
        """Public URL of a post, for copy-to-clipboard sharing."""
        return f"{self._settings.frontend_url}/posts/{post_id}"

    async def delete_post(self, post_id: str, scope: Optional[ViewScope] = None) -> MutationResult:
        return await self.coordinator.apply(
            post_id,
            lambda changes: None,
            lambda: self.backend.delete_post(post_id),
            lambda data: self.store.remove_post(post_id),
            failure_message="Failed to delete post",
            success_message="Post deleted successfully",
            scope=scope,
        )

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    async def add_comment(self, post_id: str, text: str, scope: Optional[ViewScope] = None) -> MutationResult:
        text = (text or "").strip()
        if not text:
            return self._rejected("Comment text cannot be empty")

        temp = Comment(
            id=_temp_id(),
            post_id=post_id,
            text=text,
            user=self.coordinator.credentials.state.user,
            created_at=datetime.now(timezone.utc).isoformat(),
            is_temp=True,
        )

        def mutate(changes: Changeset) -> None:
            if changes.insert_comment(post_id, temp, index=0):
                changes.adjust_post_count(post_id, "comment_count", 1)

        def reconcile(data: Any) -> None:
            if isinstance(data, dict) and (data.get("_id") or data.get("id")):
                confirmed = Comment.from_api(data, post_id, self.coordinator.viewer_id)
                if confirmed.user is None:
                    confirmed.user = temp.user
                self.store.replace_comment(post_id, temp.id, confirmed)

        return await self.coordinator.apply(
            post_id,
            mutate,
            lambda: self.backend.add_comment(post_id, text),
            reconcile,
            failure_message="Failed to add comment",
            refetch_post=post_id,
            scope=scope,
        )

    async def reply_to_comment(self, comment_id: str, text: str, scope: Optional[ViewScope] = None) -> MutationResult:
        text = (text or "").strip()
        if not text:
            return self._rejected("Reply text cannot be empty")

        located = self.store.locate_comment(comment_id)
        post_id = located[0] if located else None
        temp = Comment(
            id=_temp_id(),
            post_id=post_id or "",
            text=text,
            user=self.coordinator.credentials.state.user,
            parent_id=comment_id,
            created_at=datetime.now(timezone.utc).isoformat(),
            is_temp=True,
        )

        def mutate(changes: Changeset) -> None:
            parent = self.store.get_comment(post_id, comment_id) if post_id is not None else None
            if parent is not None:
                changes.insert_comment(post_id, temp, parent_id=comment_id, index=len(parent.replies))

        def reconcile(data: Any) -> None:
            if post_id is not None and isinstance(data, dict) and (data.get("_id") or data.get("id")):
                confirmed = Comment.from_api(data, post_id, self.coordinator.viewer_id)
                confirmed.parent_id = comment_id
                if confirmed.user is None:
                    confirmed.user = temp.user
                self.store.replace_comment(post_id, temp.id, confirmed)

        return await self.coordinator.apply(
            comment_id,
            mutate,
            lambda: self.backend.reply_to_comment(comment_id, text),
            reconcile,
            failure_message="Failed to add reply",
            refetch_post=post_id,
            scope=scope,
        )

    async def update_comment(self, comment_id: str, text: str, scope: Optional[ViewScope] = None) -> MutationResult:
        text = (text or "").strip()
        if not text:
            return self._rejected("Comment text cannot be empty")
        located = self.store.locate_comment(comment_id)
        post_id = located[0] if located else None

        def mutate(changes: Changeset) -> None:
            if post_id is not None:
                changes.set_comment_fields(post_id, comment_id, text=text)

        def reconcile(data: Any) -> None:
            if post_id is not None and isinstance(data, dict) and data.get("text") is not None:
                self.store.set_comment_fields(post_id, comment_id, text=data["text"])

        return await self.coordinator.apply(
            comment_id,
            mutate,
            lambda: self.backend.update_comment(comment_id, text),
            reconcile,
            failure_message="Failed to update comment",
            scope=scope,
        )

    async def delete_comment(self, comment_id: str, scope: Optional[ViewScope] = None) -> MutationResult:
        located = self.store.locate_comment(comment_id)

        def mutate(changes: Changeset) -> None:
            if located is None:
                return
            post_id, _, parent_id = located
            removed = changes.remove_comment(post_id, comment_id)
            # Replies do not count toward the post total; a top-level comment
            # takes its replies with it.
            if removed is not None and parent_id is None:
                changes.adjust_post_count(post_id, "comment_count", -(1 + len(removed.replies)))

        return await self.coordinator.apply(
            comment_id,
            mutate,
            lambda: self.backend.delete_comment(comment_id),
            failure_message="Failed to delete comment",
            refetch_post=located[0] if located else None,
            scope=scope,
        )

    async def toggle_comment_like(self, comment_id: str, scope: Optional[ViewScope] = None) -> MutationResult:
        located = self.store.locate_comment(comment_id)
        liked = located[1].is_liked if located else False

        def mutate(changes: Changeset) -> None:
            if located is None:
                return
            post_id, comment, _ = located
            changes.set_comment_fields(
                post_id,
                comment_id,
                is_liked=not liked,
                like_count=max(0, comment.like_count + (-1 if liked else 1)),
            )

        def reconcile(data: Any) -> None:
            if located is None:
                return
            fields = _like_fields(data, self.coordinator.viewer_id)
            if fields:
                self.store.set_comment_fields(located[0], comment_id, **fields)

        request = self.backend.unlike_comment if liked else self.backend.like_comment
        return await self.coordinator.apply(
            comment_id,
            mutate,
            _like_request(request, comment_id, not liked),
            reconcile,
            failure_message="Failed to update comment like",
            refetch_post=located[0] if located else None,
            scope=scope,
        )

    # ------------------------------------------------------------------
    # Social graph
    # ------------------------------------------------------------------

    async def follow_user(self, user_id: str, scope: Optional[ViewScope] = None) -> MutationResult:
        return await self.coordinator.apply(
            user_id,
            lambda changes: changes.set_membership("following", user_id, True),
            lambda: self.backend.follow_user(user_id),
            failure_message="Failed to follow user",
            success_message="You are now following this user",
            scope=scope,
        )

    async def unfollow_user(self, user_id: str, scope: Optional[ViewScope] = None) -> MutationResult:
        return await self.coordinator.apply(
            user_id,
            lambda changes: changes.set_membership("following", user_id, False),
            lambda: self.backend.unfollow_user(user_id),
            failure_message="Failed to unfollow user",
            success_message="You have unfollowed this user",
            scope=scope,
        )

    async def send_friend_request(self, user_id: str, scope: Optional[ViewScope] = None) -> MutationResult:
        return await self.coordinator.apply(
            user_id,
            lambda changes: changes.set_membership("sent_requests", user_id, True),
            lambda: self.backend.send_friend_request(user_id),
            failure_message="Failed to send friend request",
            success_message="Friend request sent",
            scope=scope,
        )

    async def accept_friend_request(self, request_id: str, scope: Optional[ViewScope] = None) -> MutationResult:
        request = self.store.get_request(request_id)

        def mutate(changes: Changeset) -> None:
            if changes.remove_request(request_id) is not None and request.sender is not None:
                changes.set_membership("friends", request.sender.id, True)

        return await self.coordinator.apply(
            request_id,
            mutate,
            lambda: self.backend.accept_friend_request(request_id),
            failure_message="Failed to accept friend request",
            success_message="Friend request accepted",
            scope=scope,
        )

    async def decline_friend_request(self, request_id: str, scope: Optional[ViewScope] = None) -> MutationResult:
        return await self.coordinator.apply(
            request_id,
            lambda changes: changes.remove_request(request_id),
            lambda: self.backend.decline_friend_request(request_id),
            failure_message="Failed to decline friend request",
            success_message="Friend request declined",
            scope=scope,
        )

    async def remove_friend(self, user_id: str, scope: Optional[ViewScope] = None) -> MutationResult:
        return await self.coordinator.apply(
            user_id,
            lambda changes: changes.set_membership("friends", user_id, False),
            lambda: self.backend.remove_friend(user_id),
            failure_message="Failed to remove friend",
            success_message="Friend removed",
            scope=scope,
        )

    # ------------------------------------------------------------------
    # Stories
    # ------------------------------------------------------------------

    async def view_story(self, story_id: str, scope: Optional[ViewScope] = None) -> MutationResult:
        story = self.store.get_story(story_id)

        def mutate(changes: Changeset) -> None:
            if story is not None and not story.viewed:
                changes.set_story_fields(story_id, viewed=True, view_count=story.view_count + 1)

        def reconcile(data: Any) -> None:
            count = _int(data, "viewCount")
            if count is not None:
                self.store.set_story_fields(story_id, view_count=count)

        return await self.coordinator.apply(
            story_id,
            mutate,
            lambda: self.backend.view_story(story_id),
            reconcile,
            failure_message="Failed to record story view",
            scope=scope,
        )

    async def delete_story(self, story_id: str, scope: Optional[ViewScope] = None) -> MutationResult:
        return await self.coordinator.apply(
            story_id,
            lambda changes: None,
            lambda: self.backend.delete_story(story_id),
            lambda data: self.store.remove_story(story_id),
            failure_message="Failed to delete story",
            success_message="Story deleted successfully",
            scope=scope,
        )
