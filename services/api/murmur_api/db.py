from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
    pass


def _sqlite_snapshots(engine: Engine, *, wal: bool) -> None:
    """Make every SQLite transaction read from one snapshot.

    pysqlite only opens a transaction before the first write, so reads taken
    earlier each see the latest commit. Driver-level transaction handling is
    switched off and BEGIN is emitted when SQLAlchemy starts a transaction.
    With WAL, a transaction that tries to write after its snapshot went stale
    fails at once with "database is locked".
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn: Any, _record: Any) -> None:
        dbapi_conn.isolation_level = None
        if wal:
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA journal_mode=WAL")
            cur.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN")


def make_engine(db_url: str) -> Engine:
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(db_url, future=True, isolation_level="REPEATABLE READ")

    on_disk = bool(url.database) and url.database != ":memory:"
    if on_disk:
        Path(str(url.database)).parent.mkdir(parents=True, exist_ok=True)
    # Sessions are opened per request from worker threads.
    engine = create_engine(db_url, future=True, connect_args={"check_same_thread": False})
    _sqlite_snapshots(engine, wal=on_disk)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )
