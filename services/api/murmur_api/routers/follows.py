from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from murmur_api.content import find_user_by_username
from murmur_api.deps import CurrentUserId, Store
from murmur_api.edges import FollowResult, set_follow, toggle_follow
from murmur_api.errors import NotFoundError
from murmur_api.store import EntityStore, retry_on_conflict, transaction
from murmur_api.views import UserBriefOut, get_followers, get_following

router = APIRouter(prefix="/api/follows", tags=["follows"])


class FollowIn(BaseModel):
    follow: bool


class FollowOut(BaseModel):
    ok: bool = True
    following: bool
    changed: bool
    follower_count: int
    following_count: int


def _out(result: FollowResult) -> FollowOut:
    return FollowOut(
        following=result.following,
        changed=result.changed,
        follower_count=result.followers_count,
        following_count=result.following_count,
    )


def _user_id_for(store: EntityStore, username: str) -> str:
    with transaction(store, read_only=True) as txn:
        user = find_user_by_username(txn, username)
    if user is None:
        raise NotFoundError("User not found!", detail={"username": username})
    return user.id


@router.put("/{user_id}", response_model=FollowOut)
def put_follow(
    user_id: str,
    req: FollowIn,
    viewer_user_id: str = CurrentUserId,
    store: EntityStore = Store,
) -> FollowOut:
    result = retry_on_conflict(
        lambda: set_follow(
            store, follower_id=viewer_user_id, target_id=user_id, desired=req.follow
        ),
        op="set_follow",
    )
    return _out(result)


@router.post("/{user_id}/toggle", response_model=FollowOut)
def post_toggle_follow(
    user_id: str, viewer_user_id: str = CurrentUserId, store: EntityStore = Store
) -> FollowOut:
    result = retry_on_conflict(
        lambda: toggle_follow(store, follower_id=viewer_user_id, target_id=user_id),
        op="toggle_follow",
    )
    return _out(result)


@router.get("/followers/{username}", response_model=list[UserBriefOut])
def followers(
    username: str, _viewer_user_id: str = CurrentUserId, store: EntityStore = Store
) -> list[UserBriefOut]:
    return get_followers(store, user_id=_user_id_for(store, username))


@router.get("/following/{username}", response_model=list[UserBriefOut])
def following(
    username: str, _viewer_user_id: str = CurrentUserId, store: EntityStore = Store
) -> list[UserBriefOut]:
    return get_following(store, user_id=_user_id_for(store, username))
