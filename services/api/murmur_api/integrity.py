from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from murmur_api.alerts import send_alert
from murmur_api.entities import Comment, Post, User
from murmur_api.errors import IntegrityViolation
from murmur_api.store import EntityStore, transaction


def violation(summary: str, **detail: Any) -> IntegrityViolation:
    """Build an IntegrityViolation and alert on it. Callers raise the result.

    Broken invariants are reported, never patched over: the operation that
    found one aborts with its transaction.
    """
    send_alert(severity="CRIT", summary=f"integrity violation: {summary}", extra=detail)
    return IntegrityViolation(
        "The social graph is in an inconsistent state; the operation was aborted.",
        detail={"summary": summary, **detail},
    )


@dataclass(frozen=True)
class IntegrityIssue:
    code: str
    kind: str
    entity_id: str
    detail: str

    def as_dict(self) -> dict[str, str]:
        return asdict(self)


def audit_graph(store: EntityStore) -> list[IntegrityIssue]:
    with transaction(store, read_only=True) as txn:
        users = {u.id: u for u in txn.find("user") if isinstance(u, User)}
        posts = {p.id: p for p in txn.find("post") if isinstance(p, Post)}
        comments = {c.id: c for c in txn.find("comment") if isinstance(c, Comment)}

    issues: list[IntegrityIssue] = []

    def add(code: str, kind: str, entity_id: str, detail: str) -> None:
        issues.append(IntegrityIssue(code=code, kind=kind, entity_id=entity_id, detail=detail))

    for user in users.values():
        if user.id in user.followers or user.id in user.following:
            add("self_follow", "user", user.id, "user appears in its own follow sets")
        for fid in sorted(user.following - {user.id}):
            peer = users.get(fid)
            if peer is None:
                add("dangling_follow", "user", user.id, f"follows missing user {fid}")
            elif user.id not in peer.followers:
                add("asymmetric_follow", "user", user.id, f"follows {fid} but is not in its followers")
        for fid in sorted(user.followers - {user.id}):
            peer = users.get(fid)
            if peer is None:
                add("dangling_follow", "user", user.id, f"followed by missing user {fid}")
            elif user.id not in peer.following:
                add("asymmetric_follow", "user", user.id, f"lists follower {fid} that does not follow it")

    for post in posts.values():
        if post.owner_id not in users:
            add("orphan_owner", "post", post.id, f"owner {post.owner_id} does not exist")
        for uid in sorted(post.likes):
            if uid not in users:
                add("dangling_like", "post", post.id, f"liked by missing user {uid}")
        seen: set[str] = set()
        for cid in post.comments:
            if cid in seen:
                add("duplicate_comment_link", "post", post.id, f"lists comment {cid} twice")
                continue
            seen.add(cid)
            comment = comments.get(cid)
            if comment is None:
                add("dangling_comment_link", "post", post.id, f"lists missing comment {cid}")
            elif comment.post_id != post.id:
                add(
                    "mismatched_comment_link",
                    "post",
                    post.id,
                    f"lists comment {cid} that belongs to post {comment.post_id}",
                )

    for comment in comments.values():
        if comment.owner_id not in users:
            add("orphan_owner", "comment", comment.id, f"owner {comment.owner_id} does not exist")
        for uid in sorted(comment.likes):
            if uid not in users:
                add("dangling_like", "comment", comment.id, f"liked by missing user {uid}")
        parent = posts.get(comment.post_id)
        if parent is None:
            add("orphan_comment", "comment", comment.id, f"parent post {comment.post_id} does not exist")
        elif comment.id not in parent.comments:
            add("unlisted_comment", "comment", comment.id, f"not listed by parent post {parent.id}")

    issues.sort(key=lambda i: (i.kind, i.entity_id, i.code, i.detail))
    return issues


def assert_graph_consistent(store: EntityStore) -> None:
    issues = audit_graph(store)
    if not issues:
        return
    raise violation(
        f"{len(issues)} issue(s) found by graph audit",
        codes=",".join(sorted({i.code for i in issues})),
        first=issues[0].detail,
    )
