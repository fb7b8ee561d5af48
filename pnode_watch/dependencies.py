from __future__ import annotations

from functools import lru_cache
from time import perf_counter
from typing import Any, AsyncIterator
from uuid import uuid4

from fastapi import Depends, Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pnode_watch.config import Settings, get_settings
from pnode_watch.logger import get_logger
from pnode_watch.services.auto_snapshot import AutoSnapshotTrigger
from pnode_watch.services.bots import BotCommands, TelegramClient
from pnode_watch.services.credits import CreditsService
from pnode_watch.services.nodes import NodeStore
from pnode_watch.services.notifications import Notifier
from pnode_watch.services.snapshots import SnapshotJob

_DB_LOGGER = get_logger("db")
_DB_SESSION_LOGGER = get_logger("db.session")
_QUERY_START_KEY = "pnodewatch_query_start"
_SLOW_QUERY_MS = 200


def _truncate(value: str, max_length: int) -> str:
    if max_length <= 0 or len(value) <= max_length:
        return value
    if max_length <= 3:
        return value[:max_length]
    return f"{value[: max_length - 3]}..."


def _format_sql(statement: Any, max_length: int) -> str:
    return _truncate(" ".join(str(statement or "").split()), max_length)


def _install_query_logging(engine: AsyncEngine, *, settings: Settings) -> None:
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _before_cursor_execute(
        conn: Any,
        cursor: Any,
        statement: Any,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        conn.info.setdefault(_QUERY_START_KEY, []).append(perf_counter())

    @event.listens_for(sync_engine, "after_cursor_execute")
    def _after_cursor_execute(
        conn: Any,
        cursor: Any,
        statement: Any,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        starts = conn.info.get(_QUERY_START_KEY) or [perf_counter()]
        duration_ms = round((perf_counter() - starts.pop()) * 1000, 1)
        sql = _format_sql(statement, settings.log_sql_max_length)
        if settings.log_db_queries:
            fields: dict[str, Any] = {
                "duration_ms": duration_ms,
                "rowcount": getattr(cursor, "rowcount", None),
                "sql": sql,
            }
            if settings.log_db_query_params:
                fields["params"] = _truncate(repr(parameters), settings.log_sql_max_length)
            _DB_LOGGER.info("query.execute", "Executed SQL statement", **fields)
        if duration_ms >= _SLOW_QUERY_MS:
            _DB_LOGGER.warning("query.slow", "Slow SQL statement", duration_ms=duration_ms, sql=sql)

    @event.listens_for(sync_engine, "handle_error")
    def _handle_error(exception_context: Any) -> None:
        connection = exception_context.connection
        if connection is not None:
            starts = connection.info.get(_QUERY_START_KEY)
            if starts:
                starts.pop()
        _DB_LOGGER.error(
            "query.error",
            "SQL execution failed",
            error_type=type(exception_context.original_exception).__name__,
            error=str(exception_context.original_exception),
            sql=_format_sql(exception_context.statement, settings.log_sql_max_length),
        )


def configure_engine(engine: AsyncEngine, database_url: str, settings: Settings) -> AsyncEngine:
    if database_url.startswith("sqlite"):

        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            if ":memory:" not in database_url:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    _install_query_logging(engine, settings=settings)
    return engine


@lru_cache
def get_engine(database_url: str) -> AsyncEngine:
    engine = create_async_engine(database_url, pool_pre_ping=True)
    return configure_engine(engine, database_url, get_settings())


@lru_cache
def get_sessionmaker(database_url: str) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=get_engine(database_url), expire_on_commit=False)


async def get_db_session(
    settings: Settings = Depends(get_settings),
) -> AsyncIterator[AsyncSession]:
    sessionmaker = get_sessionmaker(settings.database_url)
    session_id = uuid4().hex[:12]
    start = perf_counter()

    with _DB_SESSION_LOGGER.context(db_session_id=session_id):
        _DB_SESSION_LOGGER.debug("session.open", "Opened DB session")
        async with sessionmaker() as session:
            try:
                yield session
            except Exception as exc:
                if session.in_transaction():
                    await session.rollback()
                    _DB_SESSION_LOGGER.warning(
                        "session.rollback",
                        "Rolled back DB transaction after error",
                        error_type=type(exc).__name__,
                    )
                raise
            finally:
                _DB_SESSION_LOGGER.debug(
                    "session.close",
                    "Closed DB session",
                    duration_ms=round((perf_counter() - start) * 1000, 1),
                )


def get_node_store(request: Request) -> NodeStore:
    return request.app.state.node_store


def get_credits_service(request: Request) -> CreditsService:
    return request.app.state.credits_service


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_auto_snapshot(request: Request) -> AutoSnapshotTrigger:
    return request.app.state.auto_snapshot


def get_snapshot_job(request: Request) -> SnapshotJob:
    return request.app.state.snapshot_job


def get_bot_commands(request: Request) -> BotCommands:
    return request.app.state.bot_commands


def get_telegram_client(request: Request) -> TelegramClient:
    return request.app.state.telegram_client
