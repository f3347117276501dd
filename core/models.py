from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Prefix for client-generated placeholder ids. Entities carrying it have not
# been confirmed by the backend yet.
TEMP_ID_PREFIX = "temp-"

SHARE_PLATFORMS = ("facebook", "twitter", "linkedin", "copy", "other")


def _ref_id(value: Any) -> Optional[str]:
    """Return the id of a backend reference that may be populated or bare."""
    if value is None:
        return None
    if isinstance(value, dict):
        ref = value.get("_id") or value.get("id")
        return str(ref) if ref is not None else None
    return str(value)


def contains_viewer(refs: Optional[list], viewer_id: Optional[str]) -> bool:
    if not viewer_id or not refs:
        return False
    return any(_ref_id(ref) == viewer_id for ref in refs)


@dataclass
class UserSnapshot:
    id: str
    username: str = ""
    email: str = ""
    profile_picture: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict) -> "UserSnapshot":
        return cls(
            id=str(data.get("_id") or data.get("id") or data.get("userId") or ""),
            username=data.get("username") or "",
            email=data.get("email") or "",
            profile_picture=data.get("profilePicture") or None,
        )

    def to_dict(self) -> dict:
        """Serialize in the backend's field naming (the shape kept in durable storage)."""
        return {
            "_id": self.id,
            "username": self.username,
            "email": self.email,
            "profilePicture": self.profile_picture,
        }


@dataclass
class Comment:
    id: str
    post_id: str
    text: str
    user: Optional[UserSnapshot] = None
    like_count: int = 0
    is_liked: bool = False
    replies: list["Comment"] = field(default_factory=list)
    parent_id: Optional[str] = None
    created_at: Optional[str] = None
    is_temp: bool = False

    @classmethod
    def from_api(cls, data: dict, post_id: str, viewer_id: Optional[str] = None) -> "Comment":
        user = data.get("user")
        likes = data.get("likes") or []
        like_count = data.get("likeCount")
        return cls(
            id=str(data.get("_id") or data.get("id")),
            post_id=post_id,
            text=data.get("text") or "",
            user=UserSnapshot.from_api(user) if isinstance(user, dict) else None,
            like_count=int(like_count) if like_count is not None else len(likes),
            is_liked=bool(data["isLiked"]) if "isLiked" in data else contains_viewer(likes, viewer_id),
            replies=[cls.from_api(r, post_id, viewer_id) for r in data.get("replies") or [] if isinstance(r, dict)],
            parent_id=_ref_id(data.get("parentComment")),
            created_at=data.get("createdAt"),
        )


@dataclass
class Post:
    id: str
    author: Optional[UserSnapshot] = None
    content: str = ""
    like_count: int = 0
    comment_count: int = 0
    share_count: int = 0
    is_liked: bool = False
    comments: list[Comment] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict, viewer_id: Optional[str] = None) -> "Post":
        post_id = str(data.get("_id") or data.get("id"))
        author = data.get("user")
        likes = data.get("likes") or []
        comments = [Comment.from_api(c, post_id, viewer_id) for c in data.get("comments") or [] if isinstance(c, dict)]
        # Replies are returned flat by some endpoints; keep only top-level comments.
        comments = [c for c in comments if c.parent_id is None]
        like_count = data.get("likeCount")
        comment_count = data.get("commentCount")
        return cls(
            id=post_id,
            author=UserSnapshot.from_api(author) if isinstance(author, dict) else None,
            content=data.get("content") or "",
            like_count=int(like_count) if like_count is not None else len(likes),
            comment_count=int(comment_count) if comment_count is not None else len(comments),
            share_count=int(data.get("shareCount") or 0),
            is_liked=bool(data["isLiked"]) if "isLiked" in data else contains_viewer(likes, viewer_id),
            comments=comments,
        )


@dataclass
class Story:
    id: str
    user: Optional[UserSnapshot] = None
    view_count: int = 0
    viewed: bool = False

    @classmethod
    def from_api(cls, data: dict, viewer_id: Optional[str] = None) -> "Story":
        user = data.get("user")
        viewers = data.get("viewers") or []
        view_count = data.get("viewCount")
        return cls(
            id=str(data.get("_id") or data.get("id")),
            user=UserSnapshot.from_api(user) if isinstance(user, dict) else None,
            view_count=int(view_count) if view_count is not None else len(viewers),
            viewed=bool(data["viewed"]) if "viewed" in data else contains_viewer(viewers, viewer_id),
        )


@dataclass
class FriendRequest:
    id: str
    sender: Optional[UserSnapshot] = None
    status: str = "pending"  # pending | accepted | declined

    @classmethod
    def from_api(cls, data: dict) -> "FriendRequest":
        sender = data.get("sender")
        return cls(
            id=str(data.get("_id") or data.get("id")),
            sender=UserSnapshot.from_api(sender) if isinstance(sender, dict) else None,
            status=data.get("status") or "pending",
        )
