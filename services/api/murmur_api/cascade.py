from __future__ import annotations

from dataclasses import asdict, dataclass

from murmur_api.entities import Comment, Post, User
from murmur_api.errors import ForbiddenError, NotFoundError
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


@dataclass
class CascadeReport:
    users_deleted: int = 0
    posts_deleted: int = 0
    comments_deleted: int = 0
    comments_detached: int = 0
    likes_removed: int = 0
    follow_edges_removed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _detach_comment(txn: Transaction, comment: Comment, report: CascadeReport) -> None:
    post = txn.get("post", comment.post_id)
    if not isinstance(post, Post):
        raise violation(
            "comment points at a missing post",
            comment_id=comment.id,
            post_id=comment.post_id,
        )
    listed = post.comments.count(comment.id)
    if listed != 1:
        raise violation(
            "post does not list its comment exactly once",
            comment_id=comment.id,
            post_id=post.id,
            listed=listed,
        )
    post.comments.remove(comment.id)
    txn.put(post)
    txn.delete("comment", comment.id)
    report.comments_detached += 1
    report.comments_deleted += 1


def _delete_post_tree(txn: Transaction, post: Post, report: CascadeReport) -> None:
    for cid in list(post.comments):
        comment = txn.get("comment", cid)
        if not isinstance(comment, Comment) or comment.post_id != post.id:
            raise violation(
                "post lists a comment that is missing or belongs elsewhere",
                post_id=post.id,
                comment_id=cid,
            )
        txn.delete("comment", cid)
        report.comments_deleted += 1

    strays = txn.find("comment", post_id=post.id)
    if strays:
        raise violation(
            "comments point at a post that does not list them",
            post_id=post.id,
            comment_ids=",".join(c.id for c in strays),
        )
    txn.delete("post", post.id)
    report.posts_deleted += 1


def _purge_likes(txn: Transaction, user_id: str, report: CascadeReport) -> None:
    for kind in ("post", "comment"):
        targets = [t for t in txn.find(kind, likes=user_id) if isinstance(t, (Post, Comment))]
        for target in targets:
            target.likes.discard(user_id)
            txn.put(target)
            report.likes_removed += 1


def _purge_follow_edges(txn: Transaction, user: User, report: CascadeReport) -> None:
    for fid in sorted(user.followers):
        peer = txn.get("user", fid)
        if not isinstance(peer, User) or user.id not in peer.following:
            raise violation("follower does not mirror the edge", user_id=user.id, peer_id=fid)
        peer.following.discard(user.id)
        txn.put(peer)
        report.follow_edges_removed += 1

    for fid in sorted(user.following):
        peer = txn.get("user", fid)
        if not isinstance(peer, User) or user.id not in peer.followers:
            raise violation("followee does not mirror the edge", user_id=user.id, peer_id=fid)
        peer.followers.discard(user.id)
        txn.put(peer)
        report.follow_edges_removed += 1

    # Anyone still pointing at the user had an edge the user never mirrored.
    strays = {u.id for u in txn.find("user", followers=user.id)}
    strays |= {u.id for u in txn.find("user", following=user.id)}
    strays.discard(user.id)
    if strays:
        raise violation(
            "users reference the deleted user without a mirrored edge",
            user_id=user.id,
            peer_ids=",".join(sorted(strays)),
        )


def delete_user(store: EntityStore, *, user_id: str) -> CascadeReport:
    """Delete a user and everything that references them, atomically.

    Order matters: comments are detached from their posts before any post is
    removed, and every like and follow edge pointing at the user is purged
    before the user record itself goes. Any failure aborts the whole
    transaction, leaving the user, their content and their edges untouched.
    """
    with op_scope("delete_user", user_id=user_id) as extra:
        report = CascadeReport()
        with transaction(store) as txn:
            user = require_user(txn, user_id)
            if user.id in user.followers or user.id in user.following:
                raise violation("user appears in its own follow sets", user_id=user.id)

            comments = [c for c in txn.find("comment", owner_id=user.id) if isinstance(c, Comment)]
            for comment in comments:
                _detach_comment(txn, comment, report)

            posts = [p for p in txn.find("post", owner_id=user.id) if isinstance(p, Post)]
            for post in posts:
                _delete_post_tree(txn, post, report)

            _purge_likes(txn, user.id, report)
            _purge_follow_edges(txn, user, report)

            txn.delete("user", user.id)
            report.users_deleted = 1
        extra.update(report.as_dict())
        return report


def delete_post(store: EntityStore, *, post_id: str, requester_id: str) -> CascadeReport:
    with op_scope("delete_post", post_id=post_id, requester_id=requester_id) as extra:
        report = CascadeReport()
        with transaction(store) as txn:
            post = require_post(txn, post_id)
            if post.owner_id != str(requester_id):
                raise ForbiddenError("Only the owner can delete this post!")
            _delete_post_tree(txn, post, report)
        extra.update(report.as_dict())
        return report


def delete_comment(
    store: EntityStore,
    *,
    comment_id: str,
    requester_id: str,
    post_id: str | None = None,
) -> CascadeReport:
    with op_scope("delete_comment", comment_id=comment_id, requester_id=requester_id) as extra:
        report = CascadeReport()
        with transaction(store) as txn:
            comment = require_comment(txn, comment_id)
            if post_id is not None and comment.post_id != str(post_id):
                raise NotFoundError("Comment does not exist!", detail={"comment_id": comment_id})
            if comment.owner_id != str(requester_id):
                raise ForbiddenError("Only the owner can delete this comment!")
            _detach_comment(txn, comment, report)
        extra.update(report.as_dict())
        return report
