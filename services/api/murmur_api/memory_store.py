from __future__ import annotations

import threading
import time
from typing import Any, Callable

from murmur_api.core.config import Settings
from murmur_api.entities import (
    ENTITY_KINDS,
    Entity,
    EntityKind,
    User,
    clone_entity,
    matches_filters,
)
from murmur_api.errors import ConflictError, TransactionTimeoutError


_Key = tuple[str, str]
_Version = tuple[int, Entity | None]


def _visible(versions: list[_Version], at: int) -> Entity | None:
    for seq, doc in reversed(versions):
        if seq <= at:
            return doc
    return None


class InMemoryEntityStore:
    """Process-local document store with snapshot reads.

    Each commit takes the next sequence number and appends a version to every
    document it writes (``None`` marks a delete). A transaction reads the graph
    as of the sequence number current when it began, so everything it sees
    comes from one committed state no matter what commits meanwhile. Commit
    fails with ConflictError when a document it writes or deletes gained a
    newer version after that point: first committer wins. Versions no open
    transaction can see any more are dropped when the document is next written.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = settings or Settings()
        self._lock = threading.RLock()
        self._seq = 0
        # Oldest first. A delete stays as a None version while older
        # snapshots may still read the document.
        self._history: dict[_Key, list[_Version]] = {}
        # snapshot seq -> number of open transactions reading at it
        self._open: dict[int, int] = {}
        self._timeout_sec = float(settings.txn_timeout_sec)
        self._clock = clock

    def begin_transaction(self) -> "InMemoryTransaction":
        with self._lock:
            snapshot = self._seq
            self._open[snapshot] = self._open.get(snapshot, 0) + 1
        return InMemoryTransaction(self, snapshot=snapshot, started_at=self._clock())

    def _release(self, snapshot: int) -> None:
        with self._lock:
            left = self._open.get(snapshot, 0) - 1
            if left > 0:
                self._open[snapshot] = left
            else:
                self._open.pop(snapshot, None)

    def _read(self, key: _Key, at: int) -> Entity | None:
        with self._lock:
            doc = _visible(self._history.get(key, []), at)
            return clone_entity(doc) if doc is not None else None

    def _scan(self, kind: EntityKind, at: int) -> list[tuple[_Key, Entity]]:
        with self._lock:
            out: list[tuple[_Key, Entity]] = []
            for key, versions in self._history.items():
                if key[0] != kind:
                    continue
                doc = _visible(versions, at)
                if doc is not None:
                    out.append((key, clone_entity(doc)))
            return out

    def _apply(self, *, snapshot: int, writes: dict[_Key, Entity | None]) -> None:
        with self._lock:
            for key in writes:
                versions = self._history.get(key)
                if versions and versions[-1][0] > snapshot:
                    raise ConflictError(
                        "The resource was modified concurrently, please retry.",
                        detail={"kind": key[0], "id": key[1]},
                    )
            self._check_unique_users(writes)
            self._seq += 1
            horizon = min(
                (s for s, n in self._open.items() if s != snapshot or n > 1),
                default=self._seq,
            )
            for key, doc in writes.items():
                versions = self._history.setdefault(key, [])
                versions.append((self._seq, clone_entity(doc) if doc is not None else None))
                self._prune(key, horizon)

    def _prune(self, key: _Key, horizon: int) -> None:
        versions = self._history[key]
        # Keep the newest version visible at the horizon and everything after.
        keep_from = 0
        for i, (seq, _) in enumerate(versions):
            if seq <= horizon:
                keep_from = i
        del versions[:keep_from]
        if len(versions) == 1 and versions[0][1] is None and versions[0][0] <= horizon:
            del self._history[key]

    def _check_unique_users(self, writes: dict[_Key, Entity | None]) -> None:
        incoming = [doc for doc in writes.values() if isinstance(doc, User)]
        if not incoming:
            return
        taken_usernames: dict[str, str] = {}
        taken_emails: dict[str, str] = {}
        for key, versions in self._history.items():
            doc = versions[-1][1]
            if key in writes or not isinstance(doc, User):
                continue
            taken_usernames[doc.username] = doc.id
            taken_emails[doc.email] = doc.id
        for doc in incoming:
            if doc.username in taken_usernames or doc.email in taken_emails:
                raise ConflictError(
                    "Username or email was taken concurrently, please retry.",
                    detail={"kind": "user", "id": doc.id},
                )
            taken_usernames[doc.username] = doc.id
            taken_emails[doc.email] = doc.id


class InMemoryTransaction:
    def __init__(
        self, store: InMemoryEntityStore, *, snapshot: int, started_at: float
    ) -> None:
        self._store = store
        self._snapshot = snapshot
        self._started_at = started_at
        self._writes: dict[_Key, Entity | None] = {}
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("transaction is closed")

    def get(self, kind: EntityKind, entity_id: str) -> Entity | None:
        self._check_open()
        key = (kind, str(entity_id))
        if key in self._writes:
            doc = self._writes[key]
            return clone_entity(doc) if doc is not None else None
        return self._store._read(key, self._snapshot)

    def put(self, entity: Entity) -> None:
        self._check_open()
        self._writes[(entity.kind, str(entity.id))] = clone_entity(entity)

    def delete(self, kind: EntityKind, entity_id: str) -> None:
        self._check_open()
        self._writes[(kind, str(entity_id))] = None

    def find(self, kind: EntityKind, **filters: Any) -> list[Entity]:
        self._check_open()
        if kind not in ENTITY_KINDS:
            raise ValueError(f"unknown entity kind {kind!r}")
        out = {
            key: doc
            for key, doc in self._store._scan(kind, self._snapshot)
            if key not in self._writes
        }
        for key, doc in self._writes.items():
            if key[0] == kind and doc is not None:
                out[key] = clone_entity(doc)
        return [doc for _, doc in sorted(out.items()) if matches_filters(doc, filters)]

    def commit(self) -> None:
        self._check_open()
        self._closed = True
        try:
            elapsed = self._store._clock() - self._started_at
            if elapsed > self._store._timeout_sec:
                raise TransactionTimeoutError(
                    "The operation took too long and was cancelled, please retry.",
                    detail={"elapsed_sec": round(elapsed, 3)},
                )
            if self._writes:
                self._store._apply(snapshot=self._snapshot, writes=self._writes)
        finally:
            self._writes.clear()
            self._store._release(self._snapshot)

    def abort(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writes.clear()
        self._store._release(self._snapshot)
