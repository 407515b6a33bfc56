from __future__ import annotations

import contextlib
import time
from datetime import UTC, datetime
from typing import Any, Callable, Iterator

import orjson
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from murmur_api.core.config import Settings
from murmur_api.db import Base, make_engine, make_session_factory
from murmur_api.entities import (
    Comment,
    Entity,
    EntityKind,
    Post,
    User,
    matches_filters,
)
from murmur_api.errors import ConflictError, TransactionTimeoutError
from murmur_api.models import CommentRecord, PostRecord, UserRecord


_RECORDS: dict[str, type] = {
    "user": UserRecord,
    "post": PostRecord,
    "comment": CommentRecord,
}

# Entity set/list field -> JSON text column.
_JSON_FIELDS: dict[str, dict[str, str]] = {
    "user": {"followers": "followers_json", "following": "following_json"},
    "post": {"likes": "likes_json", "comments": "comments_json"},
    "comment": {"likes": "likes_json"},
}

_RETRYABLE_OPERATIONAL = ("database is locked", "deadlock", "could not serialize")


def _aware(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def _dump_ids(values: Any, *, ordered: bool = False) -> str:
    items = [str(v) for v in values]
    if not ordered:
        items = sorted(items)
    return orjson.dumps(items).decode("utf-8")


def _load_ids(raw: str | None) -> list[str]:
    try:
        obj = orjson.loads((raw or "[]").encode("utf-8"))
    except orjson.JSONDecodeError:
        return []
    if not isinstance(obj, list):
        return []
    return [str(v) for v in obj]


def _to_entity(kind: EntityKind, row: Any) -> Entity:
    if kind == "user":
        return User(
            id=row.id,
            username=row.username,
            email=row.email,
            full_name=row.full_name,
            avatar_url=row.avatar_url,
            followers=set(_load_ids(row.followers_json)),
            following=set(_load_ids(row.following_json)),
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )
    if kind == "post":
        return Post(
            id=row.id,
            owner_id=row.owner_id,
            message=row.message,
            likes=set(_load_ids(row.likes_json)),
            comments=_load_ids(row.comments_json),
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )
    return Comment(
        id=row.id,
        post_id=row.post_id,
        owner_id=row.owner_id,
        text=row.text,
        likes=set(_load_ids(row.likes_json)),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _copy_into(row: Any, entity: Entity) -> None:
    row.created_at = entity.created_at
    row.updated_at = entity.updated_at
    if isinstance(entity, User):
        row.username = entity.username
        row.email = entity.email
        row.full_name = entity.full_name
        row.avatar_url = entity.avatar_url
        row.followers_json = _dump_ids(entity.followers)
        row.following_json = _dump_ids(entity.following)
    elif isinstance(entity, Post):
        row.owner_id = entity.owner_id
        row.message = entity.message
        row.likes_json = _dump_ids(entity.likes)
        row.comments_json = _dump_ids(entity.comments, ordered=True)
    else:
        row.post_id = entity.post_id
        row.owner_id = entity.owner_id
        row.text = entity.text
        row.likes_json = _dump_ids(entity.likes)


@contextlib.contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except StaleDataError as exc:
        raise ConflictError(
            "The resource was modified concurrently, please retry."
        ) from exc
    except IntegrityError as exc:
        raise ConflictError(
            "A conflicting write was committed first, please retry."
        ) from exc
    except OperationalError as exc:
        msg = str(exc).lower()
        if any(marker in msg for marker in _RETRYABLE_OPERATIONAL):
            raise ConflictError("The store is busy, please retry.") from exc
        raise


class SqlEntityStore:
    """Entity store over SQLAlchemy; one session per transaction.

    Each record has a mapper ``version_id_col``: every UPDATE and DELETE is
    issued with ``WHERE version = <version read>``, so a write based on a stale
    read matches zero rows and the commit fails with ConflictError.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = settings or Settings()
        self._session_factory = session_factory
        self._timeout_sec = float(settings.txn_timeout_sec)
        self._clock = clock

    @classmethod
    def from_url(
        cls,
        db_url: str,
        *,
        settings: Settings | None = None,
        create_schema: bool = True,
    ) -> "SqlEntityStore":
        engine = make_engine(db_url)
        if create_schema:
            Base.metadata.create_all(engine)
        return cls(make_session_factory(engine), settings=settings)

    def begin_transaction(self) -> "SqlTransaction":
        return SqlTransaction(
            self._session_factory(),
            timeout_sec=self._timeout_sec,
            clock=self._clock,
        )


class SqlTransaction:
    def __init__(
        self,
        session: Session,
        *,
        timeout_sec: float,
        clock: Callable[[], float],
    ) -> None:
        self._session = session
        self._timeout_sec = timeout_sec
        self._clock = clock
        self._started_at = clock()
        self._deleted: set[tuple[str, str]] = set()
        # New rows are not in the identity map until flushed.
        self._pending: dict[tuple[str, str], Any] = {}
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("transaction is closed")

    def _row(self, kind: EntityKind, entity_id: str) -> Any:
        if (kind, entity_id) in self._deleted:
            return None
        pending = self._pending.get((kind, entity_id))
        if pending is not None:
            return pending
        with _translate_errors():
            return self._session.get(_RECORDS[kind], entity_id)

    def get(self, kind: EntityKind, entity_id: str) -> Entity | None:
        self._check_open()
        row = self._row(kind, str(entity_id))
        return _to_entity(kind, row) if row is not None else None

    def put(self, entity: Entity) -> None:
        self._check_open()
        kind = entity.kind
        key = (kind, str(entity.id))
        if key in self._deleted:
            # Re-creating an id deleted in this transaction: push the DELETE
            # first so the INSERT does not collide with it.
            with _translate_errors():
                self._session.flush()
            self._deleted.discard(key)
        row = self._row(kind, key[1])
        if row is None:
            row = _RECORDS[kind](id=key[1])
            _copy_into(row, entity)
            self._session.add(row)
            self._pending[key] = row
            return
        _copy_into(row, entity)
        # Always emit the versioned UPDATE, even when nothing changed.
        flag_modified(row, "updated_at")

    def delete(self, kind: EntityKind, entity_id: str) -> None:
        self._check_open()
        row = self._row(kind, str(entity_id))
        if row is None:
            return
        if self._pending.pop((kind, str(entity_id)), None) is not None:
            self._session.expunge(row)
        else:
            self._session.delete(row)
        self._deleted.add((kind, str(entity_id)))

    def find(self, kind: EntityKind, **filters: Any) -> list[Entity]:
        self._check_open()
        record = _RECORDS.get(kind)
        if record is None:
            raise ValueError(f"unknown entity kind {kind!r}")
        json_fields = _JSON_FIELDS[kind]
        stmt = select(record)
        membership: dict[str, Any] = {}
        for name, value in filters.items():
            if name in json_fields:
                # Coarse text match on the JSON array; exact check below.
                column = getattr(record, json_fields[name])
                needle = orjson.dumps(str(value)).decode("utf-8")
                stmt = stmt.where(column.contains(needle, autoescape=True))
                membership[name] = value
                continue
            column = getattr(record, name, None)
            if column is None:
                raise ValueError(f"{kind} has no field {name!r}")
            stmt = stmt.where(column == value)

        with _translate_errors():
            self._session.flush()
            rows = self._session.scalars(stmt.order_by(record.id)).all()
        self._pending.clear()
        entities = [_to_entity(kind, row) for row in rows]
        return [e for e in entities if matches_filters(e, membership)]

    def commit(self) -> None:
        self._check_open()
        self._closed = True
        try:
            elapsed = self._clock() - self._started_at
            if elapsed > self._timeout_sec:
                raise TransactionTimeoutError(
                    "The operation took too long and was cancelled, please retry.",
                    detail={"elapsed_sec": round(elapsed, 3)},
                )
            with _translate_errors():
                self._session.commit()
        except BaseException:
            self._session.rollback()
            raise
        finally:
            self._session.close()

    def abort(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._session.rollback()
        finally:
            self._session.close()
