from __future__ import annotations

import contextlib
import random
import time
from typing import Any, Callable, Iterator, Protocol, TypeVar

from murmur_api.core.config import Settings
from murmur_api.entities import Comment, Entity, EntityKind, Post, User
from murmur_api.errors import ConflictError, NotFoundError
from murmur_api.metrics import inc_txn
from murmur_api.oplog import log_json


T = TypeVar("T")


class Transaction(Protocol):
    def get(self, kind: EntityKind, entity_id: str) -> Entity | None: ...

    def put(self, entity: Entity) -> None: ...

    def delete(self, kind: EntityKind, entity_id: str) -> None: ...

    def find(self, kind: EntityKind, **filters: Any) -> list[Entity]: ...

    def commit(self) -> None: ...

    def abort(self) -> None: ...


class EntityStore(Protocol):
    def begin_transaction(self) -> Transaction: ...


@contextlib.contextmanager
def transaction(store: EntityStore, *, read_only: bool = False) -> Iterator[Transaction]:
    """Scoped transaction: commit on normal exit, abort on every other path.

    Read-only scopes never commit. A failed commit has already released the
    transaction inside the store, so nothing is left open either way.
    """
    txn = store.begin_transaction()
    try:
        yield txn
    except BaseException:
        txn.abort()
        inc_txn(outcome="abort")
        raise

    if read_only:
        txn.abort()
        inc_txn(outcome="read")
        return
    try:
        txn.commit()
    except ConflictError as exc:
        inc_txn(outcome=exc.kind)
        raise
    inc_txn(outcome="commit")


def retry_on_conflict(
    fn: Callable[[], T],
    *,
    attempts: int | None = None,
    base_delay_sec: float | None = None,
    op: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Re-run a whole operation on ConflictError with exponential backoff.

    Only ConflictError (and its subclasses) is retried; every other error is
    terminal for the request and propagates on the first attempt. Each delay
    is capped at ``conflict_retry_max_delay_ms`` plus jitter.
    """
    settings = Settings()
    max_attempts = int(attempts) if attempts is not None else settings.conflict_retry_attempts
    if max_attempts < 1:
        raise ValueError("attempts must be >= 1")
    base = (
        float(base_delay_sec)
        if base_delay_sec is not None
        else settings.conflict_retry_base_delay_ms / 1000.0
    )
    max_delay = settings.conflict_retry_max_delay_ms / 1000.0

    attempt = 1
    while True:
        try:
            return fn()
        except ConflictError as exc:
            if attempt >= max_attempts:
                raise
            delay = min(base * (2 ** (attempt - 1)), max_delay)
            delay += random.uniform(0.0, base)
            if settings.log_json:
                log_json(
                    {
                        "level": "warn",
                        "op": op,
                        "event": "retry",
                        "attempt": attempt,
                        "error": exc.kind,
                        "delay_ms": round(delay * 1000.0, 2),
                    }
                )
            sleep(delay)
            attempt += 1


def require_user(txn: Transaction, user_id: str) -> User:
    user = txn.get("user", str(user_id))
    if not isinstance(user, User):
        raise NotFoundError("User does not exist!", detail={"user_id": user_id})
    return user


def require_post(txn: Transaction, post_id: str) -> Post:
    post = txn.get("post", str(post_id))
    if not isinstance(post, Post):
        raise NotFoundError("Post not found!", detail={"post_id": post_id})
    return post


def require_comment(txn: Transaction, comment_id: str) -> Comment:
    comment = txn.get("comment", str(comment_id))
    if not isinstance(comment, Comment):
        raise NotFoundError("Comment does not exist!", detail={"comment_id": comment_id})
    return comment


def build_store(settings: Settings | None = None) -> EntityStore:
    settings = settings or Settings()
    if settings.store_backend == "memory":
        from murmur_api.memory_store import InMemoryEntityStore

        return InMemoryEntityStore(settings=settings)

    from murmur_api.sql_store import SqlEntityStore

    return SqlEntityStore.from_url(settings.db_url, settings=settings)
