"""
Store connection management - sync and async engines from one connection string.
Challenge: Blocking and asyncio callers must hit the same store with matching drivers.
Design: One connection per operation (NullPool unless pooling is enabled); every
connection is scoped by a context manager so it is released on all exit paths.
"""

from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from functools import cached_property

from sqlalchemy import Connection, Engine, create_engine
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from sqlrepo.config import get_settings

# backend -> (sync driver, async driver)
_DRIVERS = {
    "postgresql": ("postgresql+psycopg2", "postgresql+asyncpg"),
    "sqlite": ("sqlite", "sqlite+aiosqlite"),
}


def to_sync_url(connection_string: str | URL) -> URL:
    """Same store, blocking driver (postgresql+asyncpg -> postgresql+psycopg2)."""
    url = make_url(connection_string)
    drivers = _DRIVERS.get(url.get_backend_name())
    if drivers is None:
        return url
    return url.set(drivername=drivers[0])


def to_async_url(connection_string: str | URL) -> URL:
    """Same store, asyncio driver (postgresql -> postgresql+asyncpg, sqlite -> sqlite+aiosqlite)."""
    url = make_url(connection_string)
    drivers = _DRIVERS.get(url.get_backend_name())
    if drivers is None:
        return url
    return url.set(drivername=drivers[1])


class ConnectionFactory:
    """Opens short-lived connections (query, execute, transact) for one store."""

    def __init__(self, connection_string: str | None = None, *, echo: bool | None = None,
                 pooled: bool | None = None):
        settings = get_settings()
        self.connection_string = connection_string or settings.database_url
        self.echo = settings.debug if echo is None else echo
        self.pooled = settings.pool_connections if pooled is None else pooled

    def _engine_options(self) -> dict:
        if self.pooled:
            return {"echo": self.echo, "pool_pre_ping": True}
        return {"echo": self.echo, "poolclass": NullPool}

    # Engines are created on first use so a sync-only caller never needs the async driver
    @cached_property
    def engine(self) -> Engine:
        return create_engine(to_sync_url(self.connection_string), **self._engine_options())

    @cached_property
    def async_engine(self) -> AsyncEngine:
        return create_async_engine(to_async_url(self.connection_string), **self._engine_options())

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        """Blocking connection for reads. Closed on exit."""
        with self.engine.connect() as conn:
            yield conn

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        """Blocking connection inside a transaction: commit on success, rollback on error."""
        with self.engine.begin() as conn:
            yield conn

    @asynccontextmanager
    async def connect_async(self) -> AsyncIterator[AsyncConnection]:
        """Async connection for reads. Closed on exit."""
        async with self.async_engine.connect() as conn:
            yield conn

    @asynccontextmanager
    async def begin_async(self) -> AsyncIterator[AsyncConnection]:
        """Async connection inside a transaction: commit on success, rollback on error."""
        async with self.async_engine.begin() as conn:
            yield conn

    def dispose(self) -> None:
        if "engine" in self.__dict__:
            self.engine.dispose()

    async def dispose_async(self) -> None:
        if "async_engine" in self.__dict__:
            await self.async_engine.dispose()
