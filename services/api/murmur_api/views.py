from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from murmur_api.content import find_user_by_username
from murmur_api.core.config import Settings
from murmur_api.entities import Comment, Post, User
from murmur_api.errors import NotFoundError
from murmur_api.integrity import violation
from murmur_api.store import (
    EntityStore,
    Transaction,
    require_post,
    require_user,
    transaction,
)


# Counts are computed from live set sizes at read time; nothing is stored.


class UserBriefOut(BaseModel):
    id: str
    username: str
    full_name: str
    avatar_url: str | None = None


class PostSummary(BaseModel):
    id: str
    message: str
    posted_by: UserBriefOut
    total_likes: int
    total_comments: int
    liked_by_viewer: bool = False
    created_at: datetime
    updated_at: datetime


class Profile(BaseModel):
    id: str
    username: str
    full_name: str
    email: str
    avatar_url: str | None = None
    posts_count: int
    followers_count: int
    following_count: int
    is_following: bool = False
    posts: list[PostSummary] = []


class CommentView(BaseModel):
    id: str
    text: str
    post_id: str
    user: UserBriefOut
    total_likes: int
    liked_by_viewer: bool = False
    created_at: datetime
    updated_at: datetime


class FeedFilter(BaseModel):
    owner_id: str | None = None
    username: str | None = None
    # Posts written by the users this user follows.
    followed_by: str | None = None
    limit: int | None = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)


def _brief(user: User) -> UserBriefOut:
    return UserBriefOut(
        id=user.id,
        username=user.username,
        full_name=user.full_name,
        avatar_url=user.avatar_url,
    )


def _owner(txn: Transaction, entity: Post | Comment, cache: dict[str, User]) -> User:
    owner = cache.get(entity.owner_id)
    if owner is None:
        found = txn.get("user", entity.owner_id)
        if not isinstance(found, User):
            raise violation(
                f"{entity.kind} owner does not exist",
                entity_id=entity.id,
                owner_id=entity.owner_id,
            )
        owner = found
        cache[owner.id] = owner
    return owner


def _summarize(
    txn: Transaction,
    post: Post,
    *,
    viewer_id: str | None,
    cache: dict[str, User],
) -> PostSummary:
    return PostSummary(
        id=post.id,
        message=post.message,
        posted_by=_brief(_owner(txn, post, cache)),
        total_likes=len(post.likes),
        total_comments=len(post.comments),
        liked_by_viewer=bool(viewer_id and viewer_id in post.likes),
        created_at=post.created_at,
        updated_at=post.updated_at,
    )


def _newest_first(posts: list[Post]) -> list[Post]:
    return sorted(posts, key=lambda p: (p.created_at, p.id), reverse=True)


def _profile(txn: Transaction, user: User, *, viewer_id: str | None) -> Profile:
    posts = _newest_first([p for p in txn.find("post", owner_id=user.id) if isinstance(p, Post)])
    cache = {user.id: user}
    return Profile(
        id=user.id,
        username=user.username,
        full_name=user.full_name,
        email=user.email,
        avatar_url=user.avatar_url,
        posts_count=len(posts),
        followers_count=len(user.followers),
        following_count=len(user.following),
        is_following=bool(viewer_id and viewer_id != user.id and viewer_id in user.followers),
        posts=[_summarize(txn, p, viewer_id=viewer_id, cache=cache) for p in posts],
    )


def get_user_profile(
    store: EntityStore, *, user_id: str, viewer_id: str | None = None
) -> Profile:
    with transaction(store, read_only=True) as txn:
        user = require_user(txn, user_id)
        return _profile(txn, user, viewer_id=viewer_id)


def get_user_profile_by_username(
    store: EntityStore, *, username: str, viewer_id: str | None = None
) -> Profile:
    with transaction(store, read_only=True) as txn:
        user = find_user_by_username(txn, username)
        if user is None:
            raise NotFoundError("User not found!", detail={"username": username})
        return _profile(txn, user, viewer_id=viewer_id)


def get_post_feed(
    store: EntityStore,
    *,
    feed_filter: FeedFilter | None = None,
    viewer_id: str | None = None,
    settings: Settings | None = None,
) -> list[PostSummary]:
    settings = settings or Settings()
    flt = feed_filter or FeedFilter()
    limit = min(int(flt.limit or settings.feed_default_limit), int(settings.feed_max_limit))

    with transaction(store, read_only=True) as txn:
        owners: set[str] | None = None
        if flt.owner_id:
            owners = {require_user(txn, flt.owner_id).id}
        if flt.username:
            user = find_user_by_username(txn, flt.username)
            if user is None:
                raise NotFoundError("User not found!", detail={"username": flt.username})
            owners = {user.id} if owners is None else owners & {user.id}
        if flt.followed_by:
            followed = set(require_user(txn, flt.followed_by).following)
            owners = followed if owners is None else owners & followed

        if owners is None:
            posts = [p for p in txn.find("post") if isinstance(p, Post)]
        else:
            posts = [
                p
                for owner_id in sorted(owners)
                for p in txn.find("post", owner_id=owner_id)
                if isinstance(p, Post)
            ]

        page = _newest_first(posts)[flt.offset : flt.offset + limit]
        cache: dict[str, User] = {}
        return [_summarize(txn, p, viewer_id=viewer_id, cache=cache) for p in page]


def get_post(store: EntityStore, *, post_id: str, viewer_id: str | None = None) -> PostSummary:
    with transaction(store, read_only=True) as txn:
        post = require_post(txn, post_id)
        return _summarize(txn, post, viewer_id=viewer_id, cache={})


def get_post_comments(
    store: EntityStore, *, post_id: str, viewer_id: str | None = None
) -> list[CommentView]:
    with transaction(store, read_only=True) as txn:
        post = require_post(txn, post_id)
        cache: dict[str, User] = {}
        out: list[CommentView] = []
        for cid in post.comments:
            comment = txn.get("comment", cid)
            if not isinstance(comment, Comment) or comment.post_id != post.id:
                raise violation(
                    "post lists a comment that is missing or belongs elsewhere",
                    post_id=post.id,
                    comment_id=cid,
                )
            out.append(
                CommentView(
                    id=comment.id,
                    text=comment.text,
                    post_id=comment.post_id,
                    user=_brief(_owner(txn, comment, cache)),
                    total_likes=len(comment.likes),
                    liked_by_viewer=bool(viewer_id and viewer_id in comment.likes),
                    created_at=comment.created_at,
                    updated_at=comment.updated_at,
                )
            )
        return out


def _peers(txn: Transaction, user: User, ids: set[str], *, relation: str) -> list[UserBriefOut]:
    out: list[User] = []
    for pid in ids:
        peer = txn.get("user", pid)
        if not isinstance(peer, User):
            raise violation(f"{relation} entry points at a missing user", user_id=user.id, peer_id=pid)
        out.append(peer)
    return [_brief(p) for p in sorted(out, key=lambda u: (u.username, u.id))]


def get_followers(store: EntityStore, *, user_id: str) -> list[UserBriefOut]:
    with transaction(store, read_only=True) as txn:
        user = require_user(txn, user_id)
        return _peers(txn, user, user.followers, relation="followers")


def get_following(store: EntityStore, *, user_id: str) -> list[UserBriefOut]:
    with transaction(store, read_only=True) as txn:
        user = require_user(txn, user_id)
        return _peers(txn, user, user.following, relation="following")
