from __future__ import annotations
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Callable
from fastapi import Request
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from quoteboard.config import Settings
from quoteboard.errors import StoreTimeout, TransientStoreError

class Base(DeclarativeBase):
    pass

# SQLSTATEs for serialization_failure / deadlock_detected
_RETRYABLE_SQLSTATES = {"40001", "40P01"}
_RETRYABLE_SQLITE_MESSAGES = ("database is locked", "database table is locked", "database is busy")

def is_transient(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in _RETRYABLE_SQLSTATES:
        return True
    if isinstance(exc, OperationalError):
        text = str(orig).lower()
        return any(m in text for m in _RETRYABLE_SQLITE_MESSAGES)
    return False

def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value

def _install_sqlite_hooks(engine: AsyncEngine, *, writer: bool, wal: bool, busy_ms: Callable[[], int] | None = None) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        if writer:
            # take over BEGIN from the driver so we can open IMMEDIATE transactions
            dbapi_connection.isolation_level = None
        # built-in lower() only folds ASCII
        dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    if writer:
        @event.listens_for(engine.sync_engine, "begin")
        def _on_begin(conn):
            if busy_ms is not None:
                conn.exec_driver_sql(f"PRAGMA busy_timeout={busy_ms()}")
            conn.exec_driver_sql("BEGIN IMMEDIATE")


class Store:
    """Handle on the persistent store.

    Writes go through a single logical write path: one writer connection and
    an in-process lock around it, so at most one write transaction runs at a
    time. Reads use a separate pool and only ever see committed state. A
    private in-memory SQLite database has a single connection, so there reads
    queue behind the write lock instead.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        url = make_url(settings.database_url)
        self.is_sqlite = url.get_backend_name() == "sqlite"
        self.in_memory = self.is_sqlite and url.database in (None, "", ":memory:")
        timeout = settings.write_timeout_seconds
        self._default_busy_ms = int(timeout * 1000)
        self._busy_ms = self._default_busy_ms

        if self.is_sqlite:
            connect_args = {"timeout": timeout}
            if self.in_memory:
                # a private in-memory database only exists on its one connection
                self.write_engine = create_async_engine(url, connect_args=connect_args, echo=False)
                self.read_engine = self.write_engine
            else:
                self.write_engine = create_async_engine(
                    url, connect_args=connect_args, pool_size=1, max_overflow=0, pool_timeout=timeout, echo=False,
                )
                self.read_engine = create_async_engine(
                    url, connect_args=connect_args, pool_size=settings.read_pool_size, max_overflow=0, echo=False,
                )
                _install_sqlite_hooks(self.read_engine, writer=False, wal=True)
            _install_sqlite_hooks(
                self.write_engine, writer=True, wal=not self.in_memory, busy_ms=lambda: self._busy_ms,
            )
        else:
            self.write_engine = create_async_engine(
                url, pool_size=1, max_overflow=0, pool_timeout=timeout,
                isolation_level="SERIALIZABLE", pool_pre_ping=True, echo=False,
            )
            self.read_engine = create_async_engine(
                url, pool_size=settings.read_pool_size, max_overflow=0, pool_pre_ping=True, echo=False,
            )

        self._write_sessions = async_sessionmaker(self.write_engine, expire_on_commit=False)
        self._read_sessions = async_sessionmaker(self.read_engine, expire_on_commit=False)
        self._write_lock = asyncio.Lock()

    async def _acquire_write_lock(self, wait: float) -> None:
        try:
            await asyncio.wait_for(self._write_lock.acquire(), timeout=max(wait, 0))
        except asyncio.TimeoutError:
            raise StoreTimeout() from None

    @asynccontextmanager
    async def write_transaction(self, timeout: float | None = None) -> AsyncIterator[AsyncSession]:
        """Run a block as the only writer, inside one transaction.

        Commits when the block exits cleanly and rolls back on any exception.
        ``timeout`` bounds the whole wait for the write path: the in-process
        lock and, on SQLite, the database write lock held by other
        connections. Raises StoreTimeout once that bound is spent,
        TransientStoreError for lock contention or serialization failures
        reported by the database before it.
        """
        loop = asyncio.get_running_loop()
        wait = self.settings.write_timeout_seconds if timeout is None else timeout
        deadline = loop.time() + max(wait, 0)
        await self._acquire_write_lock(wait)
        # read by the BEGIN IMMEDIATE hook while this task holds the lock
        self._busy_ms = max(int((deadline - loop.time()) * 1000), 0)
        try:
            async with self._write_sessions() as session:
                try:
                    async with session.begin():
                        yield session
                except DBAPIError as exc:
                    if not is_transient(exc):
                        raise
                    if loop.time() >= deadline:
                        raise StoreTimeout() from exc
                    raise TransientStoreError(str(exc.orig)) from exc
        finally:
            self._busy_ms = self._default_busy_ms
            self._write_lock.release()

    @asynccontextmanager
    async def read_session(self) -> AsyncIterator[AsyncSession]:
        if not self.in_memory:
            async with self._read_sessions() as session:
                yield session
            return
        await self._acquire_write_lock(self.settings.write_timeout_seconds)
        try:
            async with self._read_sessions() as session:
                yield session
        finally:
            self._write_lock.release()

    async def create_all(self) -> None:
        # models must be registered on Base.metadata before create_all
        import quoteboard.models.user  # noqa: F401
        import quoteboard.models.quote  # noqa: F401
        import quoteboard.models.vote  # noqa: F401
        async with self.write_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.write_engine.dispose()
        if self.read_engine is not self.write_engine:
            await self.read_engine.dispose()


def get_store(request: Request) -> Store:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise RuntimeError("store is not initialised; start the app through its lifespan or pass store=")
    return store

async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with get_store(request).read_session() as session:
        yield session
