from __future__ import annotations

from typing import Any

from murmur_api.content import add_comment, create_post, find_user_by_username, register_user
from murmur_api.edges import set_follow, set_like
from murmur_api.entities import Post, User
from murmur_api.store import EntityStore, transaction


DEMO_USERS: list[tuple[str, str, str]] = [
    ("alice", "alice@example.com", "Alice Vector"),
    ("bob", "bob@example.com", "Bob Forge"),
    ("carol", "carol@example.com", "Carol Mist"),
    ("dave", "dave@example.com", "Dave Void"),
]

# (follower, target)
DEMO_FOLLOWS: list[tuple[str, str]] = [
    ("alice", "bob"),
    ("bob", "alice"),
    ("carol", "alice"),
    ("dave", "bob"),
    ("dave", "carol"),
]

# (author, message, [(commenter, text)], [likers])
DEMO_POSTS: list[tuple[str, str, list[tuple[str, str]], list[str]]] = [
    (
        "alice",
        "First murmur from the lab.",
        [("bob", "Welcome aboard!"), ("carol", "Nice.")],
        ["bob", "carol"],
    ),
    ("bob", "Shipping the new feed today.", [("alice", "Finally!")], ["alice", "dave"]),
    ("carol", "Anyone up for a walk?", [], ["dave"]),
]


def _user_ids(store: EntityStore) -> dict[str, str]:
    out: dict[str, str] = {}
    with transaction(store, read_only=True) as txn:
        for username, _email, _name in DEMO_USERS:
            user = find_user_by_username(txn, username)
            if user is not None:
                out[username] = user.id
    return out


def _existing_messages(store: EntityStore, owner_id: str) -> set[str]:
    with transaction(store, read_only=True) as txn:
        return {p.message for p in txn.find("post", owner_id=owner_id) if isinstance(p, Post)}


def seed_demo_graph(store: EntityStore) -> dict[str, Any]:
    """Create the demo users, follows, posts, comments and likes.

    Safe to re-run: existing users and posts (matched by username and by
    message) are reused, and follow/like writes are idempotent set operations.
    """
    ids = _user_ids(store)
    created_users = 0
    for username, email, full_name in DEMO_USERS:
        if username in ids:
            continue
        user = register_user(store, username=username, email=email, full_name=full_name)
        ids[username] = user.id
        created_users += 1

    for follower, target in DEMO_FOLLOWS:
        set_follow(store, follower_id=ids[follower], target_id=ids[target], desired=True)

    created_posts = 0
    created_comments = 0
    for author, message, comments, likers in DEMO_POSTS:
        if message in _existing_messages(store, ids[author]):
            continue
        post = create_post(store, owner_id=ids[author], message=message)
        created_posts += 1
        for commenter, text in comments:
            add_comment(store, post_id=post.id, owner_id=ids[commenter], text=text)
            created_comments += 1
        for liker in likers:
            set_like(
                store, actor_id=ids[liker], target_kind="post", target_id=post.id, desired=True
            )

    with transaction(store, read_only=True) as txn:
        total_users = sum(1 for u in txn.find("user") if isinstance(u, User))

    return {
        "users_created": created_users,
        "posts_created": created_posts,
        "comments_created": created_comments,
        "users_total": total_users,
        "user_ids": dict(sorted(ids.items())),
    }
