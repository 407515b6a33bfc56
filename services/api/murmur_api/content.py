from __future__ import annotations

from murmur_api.core.config import Settings
from murmur_api.entities import Comment, Post, User, new_id, utcnow
from murmur_api.errors import AlreadyExistsError, ForbiddenError, InvalidInputError
from murmur_api.oplog import op_scope
from murmur_api.store import (
    EntityStore,
    Transaction,
    require_comment,
    require_post,
    require_user,
    transaction,
)


def normalize_username(raw: str | None) -> str:
    return str(raw or "").strip().lower()


def normalize_email(raw: str | None) -> str:
    return str(raw or "").strip().lower()


def find_user_by_username(txn: Transaction, username: str) -> User | None:
    norm = normalize_username(username)
    if not norm:
        return None
    for user in txn.find("user", username=norm):
        if isinstance(user, User):
            return user
    return None


def _ensure_unique(
    txn: Transaction, *, username: str | None, email: str | None, exclude_id: str | None = None
) -> None:
    taken = []
    if username:
        taken += txn.find("user", username=username)
    if email:
        taken += txn.find("user", email=email)
    if any(u.id != exclude_id for u in taken):
        raise AlreadyExistsError("User with email or username already exists!")


def register_user(
    store: EntityStore,
    *,
    username: str,
    email: str,
    full_name: str,
    avatar_url: str | None = None,
) -> User:
    username_n = normalize_username(username)
    email_n = normalize_email(email)
    full_name_s = str(full_name or "").strip()
    if not (username_n and email_n and full_name_s):
        raise InvalidInputError("All fields are required!")

    with op_scope("register_user", username=username_n):
        with transaction(store) as txn:
            _ensure_unique(txn, username=username_n, email=email_n)
            user = User(
                id=new_id("u"),
                username=username_n,
                email=email_n,
                full_name=full_name_s,
                avatar_url=str(avatar_url) if avatar_url else None,
            )
            txn.put(user)
        return user


def update_profile(
    store: EntityStore,
    *,
    user_id: str,
    username: str | None = None,
    email: str | None = None,
    full_name: str | None = None,
    avatar_url: str | None = None,
) -> User:
    username_n = normalize_username(username) or None
    email_n = normalize_email(email) or None
    full_name_s = str(full_name or "").strip() or None
    if not (username_n or email_n or full_name_s or avatar_url is not None):
        raise InvalidInputError("At least one field is required!")

    with op_scope("update_profile", user_id=user_id):
        with transaction(store) as txn:
            user = require_user(txn, user_id)
            _ensure_unique(txn, username=username_n, email=email_n, exclude_id=user.id)
            if username_n:
                user.username = username_n
            if email_n:
                user.email = email_n
            if full_name_s:
                user.full_name = full_name_s
            if avatar_url is not None:
                # Opaque media reference; empty string clears it.
                user.avatar_url = str(avatar_url) or None
            user.updated_at = utcnow()
            txn.put(user)
        return user


def _clean_message(message: str | None) -> str:
    text = str(message or "").strip()
    if not text:
        raise InvalidInputError("Post message is required!")
    return text


def create_post(store: EntityStore, *, owner_id: str, message: str) -> Post:
    text = _clean_message(message)
    with op_scope("create_post", owner_id=owner_id):
        with transaction(store) as txn:
            owner = require_user(txn, owner_id)
            post = Post(id=new_id("p"), owner_id=owner.id, message=text)
            txn.put(owner)
            txn.put(post)
        return post


def update_post(
    store: EntityStore, *, post_id: str, requester_id: str, message: str
) -> Post:
    text = _clean_message(message)
    with op_scope("update_post", post_id=post_id, requester_id=requester_id):
        with transaction(store) as txn:
            post = require_post(txn, post_id)
            if post.owner_id != str(requester_id):
                raise ForbiddenError("Only the owner can edit this post!")
            post.message = text
            post.updated_at = utcnow()
            txn.put(post)
        return post


def add_comment(
    store: EntityStore,
    *,
    post_id: str,
    owner_id: str,
    text: str,
    settings: Settings | None = None,
) -> Comment:
    settings = settings or Settings()
    body = str(text or "").strip()
    if not body:
        raise InvalidInputError("Comment is required!")
    if len(body) > int(settings.comment_max_length):
        raise InvalidInputError(
            f"Comment is too long (max {int(settings.comment_max_length)} characters)!"
        )

    with op_scope("add_comment", post_id=post_id, owner_id=owner_id):
        with transaction(store) as txn:
            post = require_post(txn, post_id)
            author = require_user(txn, owner_id)
            comment = Comment(
                id=new_id("c"), post_id=post.id, owner_id=author.id, text=body
            )
            post.comments.append(comment.id)
            txn.put(comment)
            txn.put(post)
            txn.put(author)
        return comment


def get_comment(store: EntityStore, *, comment_id: str) -> Comment:
    with transaction(store, read_only=True) as txn:
        return require_comment(txn, comment_id)
