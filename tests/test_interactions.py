"""
tests/test_interactions.py -- Optimistic mutations through the coordinator.

Coverage:
  - Failed request rolls local state back and notifies the user
  - Successful request leaves the server's values in place
  - No session -> fail fast, no request, no local change
  - Deleting a comment twice never decrements the count twice
  - Temporary comments and replies are swapped for the server copy
  - Unmounted views get no callback, but the store is still updated
  - Delayed re-fetch converges the post with the server
  - A like the backend reports as already in effect settles on that state
  - Rejected mutations still re-fetch the post
  - Social graph, friend requests, stories and shares
"""

from __future__ import annotations

import asyncio
import json

import httpx

from auth.models import Session
from core.models import TEMP_ID_PREFIX, Comment, FriendRequest, Post, Story, UserSnapshot
from social.coordinator import ViewScope

from conftest import USER

ALICE = UserSnapshot(id="u1", username="alice")


def _post() -> Post:
    return Post(
        id="p1",
        like_count=4,
        comment_count=2,
        comments=[
            Comment(
                id="c1",
                post_id="p1",
                text="hello",
                replies=[Comment(id="r1", post_id="p1", text="hi back", parent_id="c1")],
            ),
            Comment(id="c2", post_id="p1", text="second", like_count=2, is_liked=True),
        ],
    )


def _run(make_context, body, logged_in=True):
    """Run body(ctx) against a context with one post loaded; return (ctx, body's result)."""

    async def scenario():
        ctx = make_context()
        if logged_in:
            ctx.credentials.set(Session(token="tok-1", user=ALICE))
        ctx.social.load_posts([_post()])
        try:
            result = await body(ctx)
        finally:
            await ctx.aclose()
        return ctx, result

    return asyncio.run(scenario())


class TestPostLike:
    def test_failure_rolls_back(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/posts/p1/like", {"success": False, "message": "boom"}, status=500)
        ctx, result = _run(make_context, lambda ctx: ctx.actions.toggle_post_like("p1"))
        post = ctx.social.get_post("p1")
        assert result.ok is False
        assert (post.like_count, post.is_liked) == (4, False)
        assert ctx.notifier.last().message == "Failed to update like"
        assert ctx.social.error == "boom"

    def test_success_commits_server_value(self, make_context, fake_backend):
        seen = {}

        def like(request):
            post = ctx_holder["ctx"].social.get_post("p1")
            seen["optimistic"] = (post.like_count, post.is_liked)
            return httpx.Response(200, json={"success": True, "data": {"likeCount": 7, "isLiked": True}})

        ctx_holder = {}
        fake_backend.on("PUT", "/api/posts/p1/like", handler=like)

        async def body(ctx):
            ctx_holder["ctx"] = ctx
            return await ctx.actions.toggle_post_like("p1")

        ctx, result = _run(make_context, body)
        post = ctx.social.get_post("p1")
        assert result.ok is True
        assert seen["optimistic"] == (5, True)
        assert (post.like_count, post.is_liked) == (7, True)

    def test_unlike_sends_unlike(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/posts/p1/unlike", {"success": True, "data": {"likeCount": 3}})

        async def body(ctx):
            ctx.social.set_post_fields("p1", is_liked=True)
            return await ctx.actions.toggle_post_like("p1")

        ctx, result = _run(make_context, body)
        assert result.ok
        assert ctx.social.get_post("p1").like_count == 3
        assert ("PUT", "/api/posts/p1/unlike") in fake_backend.paths()

    def test_likes_array_derives_is_liked(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/posts/p1/like", {"success": True, "data": {"likeCount": 5, "likes": ["u1", "u7"]}})
        ctx, _ = _run(make_context, lambda ctx: ctx.actions.toggle_post_like("p1"))
        assert ctx.social.get_post("p1").is_liked is True

    def test_already_liked_settles_on_liked(self, make_context, fake_backend):
        # Local copy is stale: the server already holds the like.
        server = {"likes": ["u9", "u8", "u7", "u6", "u1"]}

        def like(request):
            return httpx.Response(400, json={"success": False, "message": "Post already liked"})

        def unlike(request):
            server["likes"].remove("u1")
            return httpx.Response(200, json={"success": True, "data": {"likeCount": len(server["likes"])}})

        def get(request):
            data = {"_id": "p1", "likes": list(server["likes"]), "likeCount": len(server["likes"])}
            return httpx.Response(200, json={"success": True, "data": data})

        fake_backend.on("PUT", "/api/posts/p1/like", handler=like)
        fake_backend.on("PUT", "/api/posts/p1/unlike", handler=unlike)
        fake_backend.on("GET", "/api/posts/p1", handler=get)
        states = []

        async def body(ctx):
            first = await ctx.actions.toggle_post_like("p1")
            await ctx.coordinator.drain()
            post = ctx.social.get_post("p1")
            states.append((post.is_liked, post.like_count))
            second = await ctx.actions.toggle_post_like("p1")
            return first, second

        ctx, (first, second) = _run(make_context, body)
        post = ctx.social.get_post("p1")
        assert first.ok and second.ok
        assert states == [(True, 5)]
        assert (post.is_liked, post.like_count) == (False, 4)
        puts = [path for method, path in fake_backend.paths() if method == "PUT"]
        assert puts == ["/api/posts/p1/like", "/api/posts/p1/unlike"]
        assert ctx.social.error is None

    def test_not_liked_yet_settles_on_unliked(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/posts/p1/unlike", {"success": False, "message": "Post not liked yet"}, status=400)

        async def body(ctx):
            ctx.social.set_post_fields("p1", is_liked=True)
            return await ctx.actions.toggle_post_like("p1")

        ctx, result = _run(make_context, body)
        assert result.ok
        assert ctx.social.get_post("p1").is_liked is False

    def test_rejection_refetches_server_copy(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/posts/p1/like", {"success": False, "message": "boom"}, status=500)
        fake_backend.on("GET", "/api/posts/p1", {"success": True, "data": {"_id": "p1", "likes": ["u1"], "likeCount": 5}})

        async def body(ctx):
            result = await ctx.actions.toggle_post_like("p1")
            await ctx.coordinator.drain()
            return result

        ctx, result = _run(make_context, body)
        post = ctx.social.get_post("p1")
        assert result.ok is False
        assert ctx.notifier.last().message == "Failed to update like"
        assert (post.is_liked, post.like_count) == (True, 5)
        assert ("GET", "/api/posts/p1") in fake_backend.paths()


class TestSessionRequired:
    def test_no_session_fails_fast(self, make_context, fake_backend):
        ctx, result = _run(make_context, lambda ctx: ctx.actions.toggle_post_like("p1"), logged_in=False)
        assert result.unauthenticated is True
        assert fake_backend.calls == []
        assert ctx.social.get_post("p1").like_count == 4
        assert ctx.notifier.last().message == "Please log in to continue"

    def test_rejected_token_rolls_back(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/posts/p1/like", {"success": False}, status=401)
        ctx, result = _run(make_context, lambda ctx: ctx.actions.toggle_post_like("p1"))
        assert result.unauthenticated is True
        assert ctx.social.get_post("p1").like_count == 4


class TestComments:
    def test_add_comment_swaps_temp_for_server_copy(self, make_context, fake_backend):
        seen = {}
        ctx_holder = {}

        def add(request):
            seen["first_id"] = ctx_holder["ctx"].social.get_post("p1").comments[0].id
            return httpx.Response(201, json={"success": True, "data": {"_id": "c9", "text": "nice", "user": USER}})

        fake_backend.on("POST", "/api/posts/p1/comment", handler=add)

        async def body(ctx):
            ctx_holder["ctx"] = ctx
            return await ctx.actions.add_comment("p1", "  nice  ")

        ctx, result = _run(make_context, body)
        post = ctx.social.get_post("p1")
        assert result.ok
        assert seen["first_id"].startswith(TEMP_ID_PREFIX)
        assert post.comments[0].id == "c9"
        assert post.comments[0].is_temp is False
        assert post.comment_count == 3
        assert json.loads(fake_backend.calls[0].content) == {"text": "nice"}

    def test_add_comment_failure_removes_temp(self, make_context, fake_backend):
        fake_backend.on("POST", "/api/posts/p1/comment", exc=httpx.ConnectError("offline"))
        ctx, result = _run(make_context, lambda ctx: ctx.actions.add_comment("p1", "nice"))
        post = ctx.social.get_post("p1")
        assert not result.ok
        assert [c.id for c in post.comments] == ["c1", "c2"]
        assert post.comment_count == 2

    def test_empty_comment_rejected_locally(self, make_context, fake_backend):
        ctx, result = _run(make_context, lambda ctx: ctx.actions.add_comment("p1", "   "))
        assert not result.ok
        assert fake_backend.calls == []

    def test_delete_twice_counts_once(self, make_context, fake_backend):
        answers = iter(
            [
                httpx.Response(200, json={"success": True}),
                httpx.Response(404, json={"success": False, "message": "Comment not found"}),
            ]
        )
        fake_backend.on("DELETE", "/api/posts/comments/c2", handler=lambda request: next(answers))

        async def body(ctx):
            first = await ctx.actions.delete_comment("c2")
            second = await ctx.actions.delete_comment("c2")
            return first, second

        ctx, (first, second) = _run(make_context, body)
        post = ctx.social.get_post("p1")
        assert first.ok and not second.ok
        assert post.comment_count == 1
        assert [c.id for c in post.comments] == ["c1"]

    def test_delete_top_level_takes_replies_with_it(self, make_context, fake_backend):
        fake_backend.on("DELETE", "/api/posts/comments/c1", {"success": True})
        ctx, _ = _run(make_context, lambda ctx: ctx.actions.delete_comment("c1"))
        assert ctx.social.get_post("p1").comment_count == 0

    def test_delete_reply_keeps_post_count(self, make_context, fake_backend):
        fake_backend.on("DELETE", "/api/posts/comments/r1", {"success": True})
        ctx, _ = _run(make_context, lambda ctx: ctx.actions.delete_comment("r1"))
        post = ctx.social.get_post("p1")
        assert post.comment_count == 2
        assert post.comments[0].replies == []

    def test_delete_failure_restores_position(self, make_context, fake_backend):
        fake_backend.on("DELETE", "/api/posts/comments/c1", {"success": False}, status=500)
        ctx, _ = _run(make_context, lambda ctx: ctx.actions.delete_comment("c1"))
        post = ctx.social.get_post("p1")
        assert [c.id for c in post.comments] == ["c1", "c2"]
        assert post.comment_count == 2

    def test_reply_appended_and_confirmed(self, make_context, fake_backend):
        fake_backend.on("POST", "/api/posts/comments/c1/reply", {"success": True, "data": {"_id": "r2", "text": "me too"}})
        ctx, result = _run(make_context, lambda ctx: ctx.actions.reply_to_comment("c1", "me too"))
        replies = ctx.social.get_comment("p1", "c1").replies
        assert result.ok
        assert [r.id for r in replies] == ["r1", "r2"]
        assert replies[1].parent_id == "c1"
        assert replies[1].user == ALICE

    def test_update_failure_restores_text(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/posts/comments/c2", {"success": False}, status=403)
        ctx, _ = _run(make_context, lambda ctx: ctx.actions.update_comment("c2", "edited"))
        assert ctx.social.get_comment("p1", "c2").text == "second"

    def test_update_uses_server_text(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/posts/comments/c2", {"success": True, "data": {"text": "edited!"}})
        ctx, _ = _run(make_context, lambda ctx: ctx.actions.update_comment("c2", "edited"))
        assert ctx.social.get_comment("p1", "c2").text == "edited!"

    def test_comment_unlike(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/posts/comments/c2/unlike", {"success": True, "data": {"likeCount": 1}})
        ctx, _ = _run(make_context, lambda ctx: ctx.actions.toggle_comment_like("c2"))
        comment = ctx.social.get_comment("p1", "c2")
        assert (comment.like_count, comment.is_liked) == (1, False)

    def test_comment_not_liked_yet_settles_on_unliked(self, make_context, fake_backend):
        fake_backend.on(
            "PUT", "/api/posts/comments/c2/unlike", {"success": False, "message": "Comment not liked yet"}, status=400
        )
        ctx, result = _run(make_context, lambda ctx: ctx.actions.toggle_comment_like("c2"))
        comment = ctx.social.get_comment("p1", "c2")
        assert result.ok
        assert (comment.like_count, comment.is_liked) == (1, False)

    def test_comment_already_liked_settles_on_liked(self, make_context, fake_backend):
        fake_backend.on(
            "PUT", "/api/posts/comments/c1/like", {"success": False, "message": "Comment already liked"}, status=400
        )
        ctx, result = _run(make_context, lambda ctx: ctx.actions.toggle_comment_like("c1"))
        assert result.ok
        assert ctx.social.get_comment("p1", "c1").is_liked is True


class TestCoordination:
    def test_unmounted_view_gets_no_callback(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/posts/p1/like", {"success": True, "data": {"likeCount": 5}})
        delivered = []
        scope = ViewScope()

        async def body(ctx):
            mutation = ctx.coordinator.apply(
                "p1",
                lambda changes: changes.adjust_post_count("p1", "like_count", 1),
                lambda: ctx.backend.like_post("p1"),
                lambda data: ctx.social.set_post_fields("p1", like_count=data["likeCount"]),
                scope=scope,
                on_settled=delivered.append,
            )
            task = asyncio.create_task(mutation)
            scope.unmount()
            return await task

        ctx, result = _run(make_context, body)
        assert result.ok
        assert delivered == []
        assert ctx.social.get_post("p1").like_count == 5

    def test_mounted_view_gets_callback(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/posts/p1/like", {"success": True})
        delivered = []

        async def body(ctx):
            return await ctx.coordinator.apply(
                "p1",
                lambda changes: None,
                lambda: ctx.backend.like_post("p1"),
                scope=ViewScope(),
                on_settled=delivered.append,
            )

        _, result = _run(make_context, body)
        assert delivered == [result]

    def test_refetch_converges_with_server(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/posts/p1/like", {"success": True, "data": {"likeCount": 5}})
        fake_backend.on(
            "GET",
            "/api/posts/p1",
            {"success": True, "data": {"_id": "p1", "likes": ["u1", "u2", "u3"], "commentCount": 9}},
        )

        async def body(ctx):
            result = await ctx.actions.toggle_post_like("p1")
            await ctx.coordinator.drain()
            return result

        ctx, _ = _run(make_context, body)
        post = ctx.social.get_post("p1")
        assert (post.like_count, post.is_liked, post.comment_count) == (3, True, 9)

    def test_refetch_failure_keeps_reconciled_state(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/posts/p1/like", {"success": True, "data": {"likeCount": 5}})
        fake_backend.on("GET", "/api/posts/p1", exc=httpx.ConnectError("offline"))
        ctx, _ = _run(make_context, lambda ctx: ctx.actions.toggle_post_like("p1"))
        assert ctx.social.get_post("p1").like_count == 5


class TestGraph:
    def test_follow_failure_rolls_back(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/users/follow/u2", {"success": False}, status=500)
        ctx, _ = _run(make_context, lambda ctx: ctx.actions.follow_user("u2"))
        assert not ctx.social.is_member("following", "u2")

    def test_follow_success(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/users/follow/u2", {"success": True})
        ctx, _ = _run(make_context, lambda ctx: ctx.actions.follow_user("u2"))
        assert ctx.social.is_member("following", "u2")
        assert ctx.notifier.last().level == "success"

    def test_accept_request_adds_friend(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/friends/accept/fr1", {"success": True})

        async def body(ctx):
            ctx.social.load_friend_requests([FriendRequest(id="fr1", sender=UserSnapshot(id="u2"))])
            return await ctx.actions.accept_friend_request("fr1")

        ctx, _ = _run(make_context, body)
        assert ctx.social.friend_requests == []
        assert ctx.social.is_member("friends", "u2")

    def test_decline_failure_restores_request(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/friends/decline/fr2", {"success": False}, status=500)

        async def body(ctx):
            ctx.social.load_friend_requests([FriendRequest(id="fr1"), FriendRequest(id="fr2"), FriendRequest(id="fr3")])
            return await ctx.actions.decline_friend_request("fr2")

        ctx, _ = _run(make_context, body)
        assert [r.id for r in ctx.social.friend_requests] == ["fr1", "fr2", "fr3"]

    def test_remove_friend(self, make_context, fake_backend):
        fake_backend.on("DELETE", "/api/friends/u2", {"success": True})

        async def body(ctx):
            ctx.social.load_graph("friends", ["u2", "u3"])
            return await ctx.actions.remove_friend("u2")

        ctx, _ = _run(make_context, body)
        assert not ctx.social.is_member("friends", "u2")
        assert ctx.social.is_member("friends", "u3")


class TestStoriesAndPosts:
    def test_first_view_counts_once(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/stories/s1/view", {"success": True, "data": {"viewCount": 4}})

        async def body(ctx):
            ctx.social.load_stories([Story(id="s1", view_count=2)])
            await ctx.actions.view_story("s1")
            return await ctx.actions.view_story("s1")

        ctx, _ = _run(make_context, body)
        story = ctx.social.get_story("s1")
        assert story.viewed is True
        assert story.view_count == 4

    def test_view_failure_rolls_back(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/stories/s1/view", exc=httpx.ConnectError("offline"))

        async def body(ctx):
            ctx.social.load_stories([Story(id="s1", view_count=2)])
            return await ctx.actions.view_story("s1")

        ctx, _ = _run(make_context, body)
        story = ctx.social.get_story("s1")
        assert (story.viewed, story.view_count) == (False, 2)

    def test_delete_post_waits_for_confirmation(self, make_context, fake_backend):
        seen = {}
        ctx_holder = {}

        def delete(request):
            seen["present"] = ctx_holder["ctx"].social.get_post("p1") is not None
            return httpx.Response(200, json={"success": True})

        fake_backend.on("DELETE", "/api/posts/p1", handler=delete)

        async def body(ctx):
            ctx_holder["ctx"] = ctx
            return await ctx.actions.delete_post("p1")

        ctx, _ = _run(make_context, body)
        assert seen["present"] is True
        assert ctx.social.get_post("p1") is None

    def test_delete_story_failure_keeps_story(self, make_context, fake_backend):
        fake_backend.on("DELETE", "/api/stories/s1", {"success": False}, status=500)

        async def body(ctx):
            ctx.social.load_stories([Story(id="s1")])
            return await ctx.actions.delete_story("s1")

        ctx, result = _run(make_context, body)
        assert not result.ok
        assert ctx.social.get_story("s1") is not None

    def test_share_normalizes_platform(self, make_context, fake_backend):
        fake_backend.on("PUT", "/api/posts/p1/share", {"success": True, "data": {"shareCount": 12}})
        ctx, _ = _run(make_context, lambda ctx: ctx.actions.share_post("p1", "myspace"))
        assert json.loads(fake_backend.calls[0].content) == {"platform": "other"}
        assert ctx.social.get_post("p1").share_count == 12
        assert ctx.notifier.last().message == "Post shared successfully"

    def test_shared_link(self, make_context):
        ctx, link = _run(make_context, lambda ctx: _async(ctx.actions.shared_link("p1")))
        assert link == "http://frontend.test/posts/p1"


async def _async(value):
    return value
