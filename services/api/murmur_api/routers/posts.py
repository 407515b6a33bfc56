from __future__ import annotations

from fastapi import APIRouter, Query
from pydantic import BaseModel

from murmur_api.cascade import delete_comment, delete_post
from murmur_api.content import add_comment, create_post, get_comment, update_post
from murmur_api.deps import CurrentUserId, Store
from murmur_api.edges import LikeResult, set_like, toggle_like
from murmur_api.errors import NotFoundError
from murmur_api.store import EntityStore, retry_on_conflict
from murmur_api.views import (
    CommentView,
    FeedFilter,
    PostSummary,
    get_post,
    get_post_comments,
    get_post_feed,
)

router = APIRouter(prefix="/api/posts", tags=["posts"])


class PostIn(BaseModel):
    message: str


class CommentIn(BaseModel):
    text: str


class LikeIn(BaseModel):
    like: bool


class LikeOut(BaseModel):
    ok: bool = True
    liked: bool
    changed: bool
    likes: int


class DeletedOut(BaseModel):
    ok: bool = True
    posts_deleted: int = 0
    comments_deleted: int = 0


def _like_out(result: LikeResult) -> LikeOut:
    return LikeOut(liked=result.liked, changed=result.changed, likes=result.likes_count)


def _require_comment_on_post(store: EntityStore, *, post_id: str, comment_id: str) -> None:
    comment = get_comment(store, comment_id=comment_id)
    if comment.post_id != post_id:
        raise NotFoundError("Comment does not exist!", detail={"comment_id": comment_id})


@router.post("", response_model=PostSummary, status_code=201)
def create(req: PostIn, user_id: str = CurrentUserId, store: EntityStore = Store) -> PostSummary:
    post = retry_on_conflict(
        lambda: create_post(store, owner_id=user_id, message=req.message),
        op="create_post",
    )
    return get_post(store, post_id=post.id, viewer_id=user_id)


@router.get("", response_model=list[PostSummary])
def feed(
    owner_id: str | None = None,
    username: str | None = None,
    followed_by: str | None = None,
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    viewer_user_id: str = CurrentUserId,
    store: EntityStore = Store,
) -> list[PostSummary]:
    flt = FeedFilter(
        owner_id=owner_id,
        username=username,
        followed_by=followed_by,
        limit=limit,
        offset=offset,
    )
    return get_post_feed(store, feed_filter=flt, viewer_id=viewer_user_id)


@router.get("/{post_id}", response_model=PostSummary)
def read(post_id: str, viewer_user_id: str = CurrentUserId, store: EntityStore = Store) -> PostSummary:
    return get_post(store, post_id=post_id, viewer_id=viewer_user_id)


@router.put("/{post_id}", response_model=PostSummary)
def edit(
    post_id: str, req: PostIn, user_id: str = CurrentUserId, store: EntityStore = Store
) -> PostSummary:
    retry_on_conflict(
        lambda: update_post(store, post_id=post_id, requester_id=user_id, message=req.message),
        op="update_post",
    )
    return get_post(store, post_id=post_id, viewer_id=user_id)


@router.delete("/{post_id}", response_model=DeletedOut)
def remove(post_id: str, user_id: str = CurrentUserId, store: EntityStore = Store) -> DeletedOut:
    report = retry_on_conflict(
        lambda: delete_post(store, post_id=post_id, requester_id=user_id),
        op="delete_post",
    )
    return DeletedOut(posts_deleted=report.posts_deleted, comments_deleted=report.comments_deleted)


@router.put("/{post_id}/like", response_model=LikeOut)
def put_post_like(
    post_id: str, req: LikeIn, user_id: str = CurrentUserId, store: EntityStore = Store
) -> LikeOut:
    result = retry_on_conflict(
        lambda: set_like(
            store, actor_id=user_id, target_kind="post", target_id=post_id, desired=req.like
        ),
        op="set_like",
    )
    return _like_out(result)


@router.patch("/{post_id}/like", response_model=LikeOut)
def toggle_post_like(post_id: str, user_id: str = CurrentUserId, store: EntityStore = Store) -> LikeOut:
    result = retry_on_conflict(
        lambda: toggle_like(store, actor_id=user_id, target_kind="post", target_id=post_id),
        op="toggle_like",
    )
    return _like_out(result)


@router.post("/{post_id}/comments", response_model=CommentView, status_code=201)
def comment(
    post_id: str, req: CommentIn, user_id: str = CurrentUserId, store: EntityStore = Store
) -> CommentView:
    created = retry_on_conflict(
        lambda: add_comment(store, post_id=post_id, owner_id=user_id, text=req.text),
        op="add_comment",
    )
    for item in get_post_comments(store, post_id=post_id, viewer_id=user_id):
        if item.id == created.id:
            return item
    raise NotFoundError("Comment does not exist!", detail={"comment_id": created.id})


@router.get("/{post_id}/comments", response_model=list[CommentView])
def comments(
    post_id: str, viewer_user_id: str = CurrentUserId, store: EntityStore = Store
) -> list[CommentView]:
    return get_post_comments(store, post_id=post_id, viewer_id=viewer_user_id)


@router.delete("/{post_id}/comments/{comment_id}", response_model=DeletedOut)
def remove_comment(
    post_id: str, comment_id: str, user_id: str = CurrentUserId, store: EntityStore = Store
) -> DeletedOut:
    report = retry_on_conflict(
        lambda: delete_comment(
            store, comment_id=comment_id, requester_id=user_id, post_id=post_id
        ),
        op="delete_comment",
    )
    return DeletedOut(comments_deleted=report.comments_deleted)


@router.put("/{post_id}/comments/{comment_id}/like", response_model=LikeOut)
def put_comment_like(
    post_id: str,
    comment_id: str,
    req: LikeIn,
    user_id: str = CurrentUserId,
    store: EntityStore = Store,
) -> LikeOut:
    _require_comment_on_post(store, post_id=post_id, comment_id=comment_id)
    result = retry_on_conflict(
        lambda: set_like(
            store,
            actor_id=user_id,
            target_kind="comment",
            target_id=comment_id,
            desired=req.like,
        ),
        op="set_like",
    )
    return _like_out(result)


@router.patch("/{post_id}/comments/{comment_id}/like", response_model=LikeOut)
def toggle_comment_like(
    post_id: str, comment_id: str, user_id: str = CurrentUserId, store: EntityStore = Store
) -> LikeOut:
    _require_comment_on_post(store, post_id=post_id, comment_id=comment_id)
    result = retry_on_conflict(
        lambda: toggle_like(store, actor_id=user_id, target_kind="comment", target_id=comment_id),
        op="toggle_like",
    )
    return _like_out(result)
