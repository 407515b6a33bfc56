from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel

from murmur_api.cascade import delete_user
from murmur_api.content import register_user, update_profile
from murmur_api.deps import CurrentUserId, Store
from murmur_api.entities import User
from murmur_api.store import EntityStore, retry_on_conflict
from murmur_api.views import Profile, get_user_profile, get_user_profile_by_username

router = APIRouter(prefix="/api/users", tags=["users"])


class RegisterIn(BaseModel):
    username: str
    email: str
    full_name: str
    avatar_url: str | None = None


class UpdateProfileIn(BaseModel):
    username: str | None = None
    email: str | None = None
    full_name: str | None = None
    avatar_url: str | None = None


class UserOut(BaseModel):
    id: str
    username: str
    email: str
    full_name: str
    avatar_url: str | None = None
    created_at: datetime
    updated_at: datetime


class AccountDeletedOut(BaseModel):
    ok: bool = True
    posts_deleted: int
    comments_deleted: int
    likes_removed: int
    follow_edges_removed: int


def _user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        username=user.username,
        email=user.email,
        full_name=user.full_name,
        avatar_url=user.avatar_url,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


@router.post("/register", response_model=UserOut, status_code=201)
def register(req: RegisterIn, store: EntityStore = Store) -> UserOut:
    user = retry_on_conflict(
        lambda: register_user(
            store,
            username=req.username,
            email=req.email,
            full_name=req.full_name,
            avatar_url=req.avatar_url,
        ),
        op="register_user",
    )
    return _user_out(user)


@router.get("/me", response_model=Profile)
def my_profile(user_id: str = CurrentUserId, store: EntityStore = Store) -> Profile:
    return get_user_profile(store, user_id=user_id, viewer_id=user_id)


@router.patch("/me", response_model=UserOut)
def update_me(
    req: UpdateProfileIn, user_id: str = CurrentUserId, store: EntityStore = Store
) -> UserOut:
    user = retry_on_conflict(
        lambda: update_profile(
            store,
            user_id=user_id,
            username=req.username,
            email=req.email,
            full_name=req.full_name,
            avatar_url=req.avatar_url,
        ),
        op="update_profile",
    )
    return _user_out(user)


@router.delete("/me", response_model=AccountDeletedOut)
def delete_me(user_id: str = CurrentUserId, store: EntityStore = Store) -> AccountDeletedOut:
    report = retry_on_conflict(
        lambda: delete_user(store, user_id=user_id), op="delete_user"
    )
    return AccountDeletedOut(
        posts_deleted=report.posts_deleted,
        comments_deleted=report.comments_deleted,
        likes_removed=report.likes_removed,
        follow_edges_removed=report.follow_edges_removed,
    )


@router.get("/profile/{username}", response_model=Profile)
def profile_by_username(
    username: str, viewer_user_id: str = CurrentUserId, store: EntityStore = Store
) -> Profile:
    return get_user_profile_by_username(store, username=username, viewer_id=viewer_user_id)
