from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from murmur_api.core.config import Settings
from murmur_api.entities import Comment, Post, User
from murmur_api.errors import InvalidInputError, SelfReferenceError
from murmur_api.integrity import violation
from murmur_api.oplog import op_scope
from murmur_api.store import (
    EntityStore,
    Transaction,
    require_comment,
    require_post,
    require_user,
    transaction,
)


LikeTargetKind = Literal["post", "comment"]
LIKE_TARGET_KINDS: tuple[LikeTargetKind, ...] = ("post", "comment")


@dataclass(frozen=True)
class FollowResult:
    following: bool
    changed: bool
    # Target's followers and follower's following, after the mutation.
    followers_count: int
    following_count: int


@dataclass(frozen=True)
class LikeResult:
    liked: bool
    changed: bool
    likes_count: int


def _follow_state(follower: User, target: User) -> bool:
    forward = target.id in follower.following
    backward = follower.id in target.followers
    if forward != backward:
        raise violation(
            "asymmetric follow edge",
            follower_id=follower.id,
            target_id=target.id,
            in_following=forward,
            in_followers=backward,
        )
    return forward


def _apply_follow(
    txn: Transaction, *, follower_id: str, target_id: str, desired: bool | None
) -> FollowResult:
    if str(follower_id) == str(target_id):
        raise SelfReferenceError("User cannot follow self!")
    follower = require_user(txn, follower_id)
    target = require_user(txn, target_id)

    current = _follow_state(follower, target)
    wanted = (not current) if desired is None else bool(desired)
    if wanted:
        follower.following.add(target.id)
        target.followers.add(follower.id)
    else:
        follower.following.discard(target.id)
        target.followers.discard(follower.id)

    # Both documents are written even for a no-op so the request serializes
    # against a concurrent deletion of either user.
    txn.put(follower)
    txn.put(target)
    return FollowResult(
        following=wanted,
        changed=wanted != current,
        followers_count=len(target.followers),
        following_count=len(follower.following),
    )


def set_follow(
    store: EntityStore, *, follower_id: str, target_id: str, desired: bool
) -> FollowResult:
    with op_scope("set_follow", follower_id=follower_id, target_id=target_id) as extra:
        with transaction(store) as txn:
            result = _apply_follow(
                txn, follower_id=follower_id, target_id=target_id, desired=bool(desired)
            )
        extra["changed"] = result.changed
        return result


def toggle_follow(store: EntityStore, *, follower_id: str, target_id: str) -> FollowResult:
    with op_scope("toggle_follow", follower_id=follower_id, target_id=target_id) as extra:
        with transaction(store) as txn:
            result = _apply_follow(
                txn, follower_id=follower_id, target_id=target_id, desired=None
            )
        extra["following"] = result.following
        return result


def _require_like_target(txn: Transaction, kind: str, target_id: str) -> Post | Comment:
    if kind == "post":
        return require_post(txn, target_id)
    if kind == "comment":
        return require_comment(txn, target_id)
    raise InvalidInputError(
        f"Cannot like a {kind!r}; expected one of {', '.join(LIKE_TARGET_KINDS)}."
    )


def _apply_like(
    txn: Transaction,
    *,
    actor_id: str,
    target_kind: str,
    target_id: str,
    desired: bool | None,
    settings: Settings,
) -> LikeResult:
    target = _require_like_target(txn, target_kind, target_id)
    actor = require_user(txn, actor_id)
    if not settings.allow_self_like and target.owner_id == actor.id:
        raise SelfReferenceError(f"User cannot like their own {target_kind}!")

    current = actor.id in target.likes
    wanted = (not current) if desired is None else bool(desired)
    if wanted:
        target.likes.add(actor.id)
    else:
        target.likes.discard(actor.id)

    txn.put(target)
    # Pin the actor: a like must not land on a user deleted concurrently.
    txn.put(actor)
    return LikeResult(liked=wanted, changed=wanted != current, likes_count=len(target.likes))


def set_like(
    store: EntityStore,
    *,
    actor_id: str,
    target_kind: LikeTargetKind,
    target_id: str,
    desired: bool,
    settings: Settings | None = None,
) -> LikeResult:
    settings = settings or Settings()
    with op_scope(
        "set_like", actor_id=actor_id, target_kind=target_kind, target_id=target_id
    ) as extra:
        with transaction(store) as txn:
            result = _apply_like(
                txn,
                actor_id=actor_id,
                target_kind=target_kind,
                target_id=target_id,
                desired=bool(desired),
                settings=settings,
            )
        extra["changed"] = result.changed
        return result


def toggle_like(
    store: EntityStore,
    *,
    actor_id: str,
    target_kind: LikeTargetKind,
    target_id: str,
    settings: Settings | None = None,
) -> LikeResult:
    settings = settings or Settings()
    with op_scope(
        "toggle_like", actor_id=actor_id, target_kind=target_kind, target_id=target_id
    ) as extra:
        with transaction(store) as txn:
            result = _apply_like(
                txn,
                actor_id=actor_id,
                target_kind=target_kind,
                target_id=target_id,
                desired=None,
                settings=settings,
            )
        extra["liked"] = result.liked
        return result
