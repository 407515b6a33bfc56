from __future__ import annotations

import itertools
import os
import tempfile
from pathlib import Path
from typing import Any, Callable

import pytest


_TEST_ROOT = Path(tempfile.mkdtemp(prefix="murmur_test_"))
_DB_PATH = _TEST_ROOT / "murmur_test.db"

os.environ["MURMUR_DB_URL"] = f"sqlite:///{_DB_PATH}"
os.environ["MURMUR_AUTH_JWT_SECRET"] = "test-secret"
os.environ["MURMUR_LOG_JSON"] = "0"
os.environ["MURMUR_ALERTS_ENABLED"] = "0"
os.environ["MURMUR_CONFLICT_RETRY_BASE_DELAY_MS"] = "1"


class InjectedFailure(RuntimeError):
    pass


class _FaultyTransaction:
    def __init__(self, inner: Any, owner: "FaultyStore") -> None:
        self._inner = inner
        self._owner = owner

    def _tick(self) -> None:
        self._owner.writes += 1
        if self._owner.fail_at is not None and self._owner.writes >= self._owner.fail_at:
            raise InjectedFailure(f"injected failure at write {self._owner.writes}")

    def get(self, kind, entity_id):
        return self._inner.get(kind, entity_id)

    def find(self, kind, **filters):
        return self._inner.find(kind, **filters)

    def put(self, entity) -> None:
        self._tick()
        self._inner.put(entity)

    def delete(self, kind, entity_id) -> None:
        self._tick()
        self._inner.delete(kind, entity_id)

    def commit(self) -> None:
        self._inner.commit()

    def abort(self) -> None:
        self._inner.abort()


class FaultyStore:
    """Wraps a store and raises on the Nth write (put or delete)."""

    def __init__(self, inner: Any, *, fail_at: int | None = None) -> None:
        self._inner = inner
        self.fail_at = fail_at
        self.writes = 0

    def begin_transaction(self) -> _FaultyTransaction:
        return _FaultyTransaction(self._inner.begin_transaction(), self)


class _InterleavedTransaction:
    def __init__(self, inner: Any, owner: "InterleavedStore") -> None:
        self._inner = inner
        self._owner = owner

    def get(self, kind, entity_id):
        self._owner.reached(kind, str(entity_id))
        return self._inner.get(kind, entity_id)

    def find(self, kind, **filters):
        self._owner.reached(kind, None)
        return self._inner.find(kind, **filters)

    def put(self, entity) -> None:
        self._inner.put(entity)

    def delete(self, kind, entity_id) -> None:
        self._inner.delete(kind, entity_id)

    def commit(self) -> None:
        self._inner.commit()

    def abort(self) -> None:
        self._inner.abort()


class InterleavedStore:
    """Wraps a store and, once, runs ``action(inner)`` in the middle of a transaction.

    The action fires just before the first ``get(kind, entity_id)``; with
    ``entity_id=None`` it fires before the first ``find(kind)``. It runs and
    commits against the wrapped store while the caller's transaction is open.
    """

    def __init__(
        self,
        inner: Any,
        *,
        kind: str,
        entity_id: str | None,
        action: Callable[[Any], Any],
    ) -> None:
        self.inner = inner
        self._trigger = (kind, entity_id)
        self._action = action
        self.fired = False

    def reached(self, kind: str, entity_id: str | None) -> None:
        if self.fired or (kind, entity_id) != self._trigger:
            return
        self.fired = True
        self._action(self.inner)

    def begin_transaction(self) -> _InterleavedTransaction:
        return _InterleavedTransaction(self.inner.begin_transaction(), self)


@pytest.fixture(autouse=True)
def _reset_process_state() -> None:
    from murmur_api.alerts import clear_alerts
    from murmur_api.metrics import reset_metrics

    reset_metrics()
    clear_alerts()


@pytest.fixture()
def memory_store():
    from murmur_api.memory_store import InMemoryEntityStore

    return InMemoryEntityStore()


@pytest.fixture()
def sql_store(tmp_path):
    from murmur_api.sql_store import SqlEntityStore

    return SqlEntityStore.from_url(f"sqlite:///{tmp_path / 'graph.db'}")


@pytest.fixture(params=["memory", "sql"])
def store(request):
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture(params=["memory", "sql"])
def store_factory(request, tmp_path) -> Callable[[], Any]:
    """Returns a callable building a fresh, empty store of the given backend."""
    from murmur_api.memory_store import InMemoryEntityStore
    from murmur_api.sql_store import SqlEntityStore

    counter = itertools.count()

    def _make():
        if request.param == "memory":
            return InMemoryEntityStore()
        return SqlEntityStore.from_url(f"sqlite:///{tmp_path / f'graph_{next(counter)}.db'}")

    return _make


@pytest.fixture()
def make_user() -> Callable[..., Any]:
    from murmur_api.content import register_user

    def _make(store, username: str, *, full_name: str | None = None):
        return register_user(
            store,
            username=username,
            email=f"{username}@example.com",
            full_name=full_name or username.title(),
        )

    return _make


@pytest.fixture()
def dump_graph() -> Callable[[Any], dict[tuple[str, str], Any]]:
    from murmur_api.store import transaction

    def _dump(store) -> dict[tuple[str, str], Any]:
        out: dict[tuple[str, str], Any] = {}
        with transaction(store, read_only=True) as txn:
            for kind in ("user", "post", "comment"):
                for entity in txn.find(kind):
                    out[(kind, entity.id)] = entity
        return out

    return _dump


@pytest.fixture()
def api_client(memory_store):
    from fastapi.testclient import TestClient

    from murmur_api.main import create_app

    return TestClient(create_app(store=memory_store))


@pytest.fixture()
def auth_headers() -> Callable[[str], dict[str, str]]:
    from murmur_api.core.security import create_access_token

    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(subject=user_id)}"}

    return _headers


@pytest.fixture()
def faulty_store() -> type[FaultyStore]:
    return FaultyStore


@pytest.fixture()
def interleaved_store() -> type[InterleavedStore]:
    return InterleavedStore
