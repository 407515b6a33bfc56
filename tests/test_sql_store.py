from __future__ import annotations

from datetime import UTC

import orjson
from sqlalchemy import select


def test_edge_sets_are_stored_as_sorted_json(sql_store) -> None:
    from murmur_api.entities import Post, User
    from murmur_api.models import PostRecord, UserRecord
    from murmur_api.store import transaction

    with transaction(sql_store) as txn:
        txn.put(
            User(
                id="u_1",
                username="ada",
                email="ada@example.com",
                full_name="Ada",
                followers={"u_9", "u_3", "u_5"},
            )
        )
        txn.put(Post(id="p_1", owner_id="u_1", message="hi", comments=["c_9", "c_1", "c_5"]))

    with sql_store._session_factory() as session:
        user_row = session.scalars(select(UserRecord).where(UserRecord.id == "u_1")).one()
        post_row = session.scalars(select(PostRecord).where(PostRecord.id == "p_1")).one()
    assert orjson.loads(user_row.followers_json) == ["u_3", "u_5", "u_9"]
    assert orjson.loads(user_row.following_json) == []
    # Comment order is insertion order, not sorted.
    assert orjson.loads(post_row.comments_json) == ["c_9", "c_1", "c_5"]


def test_round_trip_restores_sets_and_aware_datetimes(sql_store) -> None:
    from murmur_api.entities import User
    from murmur_api.store import require_user, transaction

    original = User(
        id="u_1",
        username="ada",
        email="ada@example.com",
        full_name="Ada",
        followers={"u_2"},
        following={"u_2", "u_3"},
    )
    with transaction(sql_store) as txn:
        txn.put(original)

    with transaction(sql_store, read_only=True) as txn:
        loaded = require_user(txn, "u_1")
    assert loaded.followers == {"u_2"}
    assert loaded.following == {"u_2", "u_3"}
    assert loaded.created_at.tzinfo is not None
    assert loaded.created_at.astimezone(UTC) == original.created_at


def test_every_put_bumps_the_row_version(sql_store, make_user) -> None:
    from murmur_api.models import UserRecord
    from murmur_api.store import require_user, transaction

    user = make_user(sql_store, "ada")

    def version() -> int:
        with sql_store._session_factory() as session:
            return session.get(UserRecord, user.id).version

    before = version()
    with transaction(sql_store) as txn:
        # Unchanged document: the write still pins the version.
        txn.put(require_user(txn, user.id))
    assert version() == before + 1


def test_membership_filter_is_exact(sql_store) -> None:
    from murmur_api.entities import Post
    from murmur_api.store import transaction

    with transaction(sql_store) as txn:
        txn.put(Post(id="p_1", owner_id="u_1", message="a", likes={"u_10"}))
        txn.put(Post(id="p_2", owner_id="u_1", message="b", likes={"u_1"}))
        txn.put(Post(id="p_3", owner_id="u_1", message="c", likes={"u%1"}))

    with transaction(sql_store, read_only=True) as txn:
        assert [p.id for p in txn.find("post", likes="u_1")] == ["p_2"]
        assert [p.id for p in txn.find("post", likes="u%1")] == ["p_3"]
        assert txn.find("post", likes="u") == []


def test_from_url_creates_parent_directory(tmp_path) -> None:
    from murmur_api.sql_store import SqlEntityStore
    from murmur_api.store import transaction

    db_path = tmp_path / "nested" / "dir" / "graph.db"
    store = SqlEntityStore.from_url(f"sqlite:///{db_path}")
    with transaction(store, read_only=True) as txn:
        assert txn.find("user") == []
    assert db_path.parent.is_dir()


def test_sqlite_files_run_in_wal_mode(sql_store) -> None:
    from sqlalchemy import text

    with sql_store._session_factory() as session:
        assert session.execute(text("PRAGMA journal_mode")).scalar() == "wal"
