"""Async database engine construction.

PostgreSQL (asyncpg) is the production backend. SQLite (aiosqlite) is
supported for development and tests. On SQLite a transaction marked with
`begin_write` is opened with `BEGIN IMMEDIATE`, so concurrent writers queue
on the database lock instead of failing when a read lock is upgraded. Every
other transaction opens with a plain `BEGIN` and never waits on a writer.
"""

from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

WRITE_TRANSACTION_OPTION = "bonjour_write"


def create_database_engine(database_url: str, **kwargs: Any) -> AsyncEngine:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_async_engine(url, **kwargs)

    connect_args = kwargs.pop("connect_args", {})
    connect_args.setdefault("timeout", 30)
    engine = create_async_engine(url, connect_args=connect_args, **kwargs)

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        # The driver must not emit its own BEGIN.
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        if conn.get_execution_options().get(WRITE_TRANSACTION_OPTION, False):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")

    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def begin_write(database_session: AsyncSession) -> None:
    """
    Mark the session's transaction as a writer.

    Must be the first statement inside `database_session.begin()`: execution
    options only apply when the session procures its connection.
    """
    await database_session.connection(
        execution_options={WRITE_TRANSACTION_OPTION: True}
    )
