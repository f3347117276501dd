"""
tests/test_social_store.py -- SocialStore and the Changeset undo log.

Coverage:
  - rollback() restores fields, counters and structure in reverse order
  - Counters never go negative
  - Removed comments are re-inserted at their previous position
  - refresh_post() ignores posts that are not loaded
  - A failing listener does not break the store
"""

from __future__ import annotations

from core.models import Comment, FriendRequest, Post, UserSnapshot
from social.store import Changeset, SocialStore


def _store() -> SocialStore:
    store = SocialStore()
    store.load_posts(
        [
            Post(
                id="p1",
                like_count=1,
                comment_count=2,
                comments=[
                    Comment(id="c1", post_id="p1", text="first"),
                    Comment(
                        id="c2",
                        post_id="p1",
                        text="second",
                        replies=[Comment(id="r1", post_id="p1", text="reply", parent_id="c2")],
                    ),
                ],
            )
        ]
    )
    store.load_friend_requests(
        [
            FriendRequest(id="fr1", sender=UserSnapshot(id="u2")),
            FriendRequest(id="fr2", sender=UserSnapshot(id="u3")),
        ]
    )
    return store


class TestChangeset:
    def test_rollback_restores_everything(self):
        store = _store()
        changes = Changeset(store)
        changes.set_post_fields("p1", is_liked=True, like_count=2)
        changes.adjust_post_count("p1", "comment_count", -1)
        changes.remove_comment("p1", "c1")
        changes.set_membership("following", "u9", True)
        changes.remove_request("fr1")
        assert changes.touched

        changes.rollback()
        post = store.get_post("p1")
        assert (post.is_liked, post.like_count, post.comment_count) == (False, 1, 2)
        assert [c.id for c in post.comments] == ["c1", "c2"]
        assert not store.is_member("following", "u9")
        assert [r.id for r in store.friend_requests] == ["fr1", "fr2"]
        assert not changes.touched

    def test_counter_floors_at_zero(self):
        store = _store()
        Changeset(store).adjust_post_count("p1", "like_count", -5)
        assert store.get_post("p1").like_count == 0

    def test_reply_reinserted_under_parent(self):
        store = _store()
        changes = Changeset(store)
        removed = changes.remove_comment("p1", "r1")
        assert removed.text == "reply"
        assert store.get_comment("p1", "c2").replies == []
        changes.rollback()
        assert [r.id for r in store.get_comment("p1", "c2").replies] == ["r1"]

    def test_missing_targets_record_nothing(self):
        store = _store()
        changes = Changeset(store)
        assert changes.set_post_fields("nope", like_count=3) is False
        assert changes.remove_comment("p1", "nope") is None
        assert changes.insert_comment("nope", Comment(id="x", post_id="nope", text="t")) is False
        assert not changes.touched


class TestStore:
    def test_locate_comment(self):
        store = _store()
        post_id, comment, parent_id = store.locate_comment("r1")
        assert (post_id, comment.id, parent_id) == ("p1", "r1", "c2")
        assert store.locate_comment("missing") is None

    def test_refresh_unknown_post_ignored(self):
        store = _store()
        assert store.refresh_post(Post(id="p2")) is False
        assert [p.id for p in store.posts] == ["p1"]

    def test_failing_listener_is_isolated(self):
        store = _store()
        seen = []

        def broken(store, topic):
            raise RuntimeError("boom")

        store.subscribe(broken)
        unsubscribe = store.subscribe(lambda s, topic: seen.append(topic))
        store.set_post_fields("p1", like_count=5)
        unsubscribe()
        store.set_post_fields("p1", like_count=6)
        assert seen == ["posts"]
        assert store.get_post("p1").like_count == 6
