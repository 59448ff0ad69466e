"""
Connection handling for pg_compute.

The engine talks to PostgreSQL through the asyncpg connection surface
(``execute``, ``fetch``, ``transaction``) and never inspects concrete
driver classes. How a connection is obtained is hidden behind the
ConnectionSource capability:
- SingleConnectionSource: Uses one caller-owned connection, never closes it
- PoolConnectionSource: Checks a connection out of a pool per operation

Invariants:
    - Every acquire() is paired with exactly one release(), on all paths
    - A single connection given by the caller is never released or closed

How to change safely:
    - New drivers only need the DataStoreConnection surface
    - Pool adapters must tolerate release() after a failed statement
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncContextManager,
    AsyncIterator,
    List,
    Mapping,
    Protocol,
    runtime_checkable,
)

import asyncpg

if TYPE_CHECKING:
    from .config import DatabaseConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class DataStoreConnection(Protocol):
    """The subset of asyncpg.Connection the engine relies on."""

    async def execute(self, query: str, *args: Any) -> str:
        """Run a statement, return its status string."""
        ...

    async def fetch(self, query: str, *args: Any) -> List[Mapping[str, Any]]:
        """Run a query, return its rows."""
        ...

    def transaction(self) -> AsyncContextManager[Any]:
        """Atomic unit: commits on clean exit, rolls back on error."""
        ...


@runtime_checkable
class ConnectionSource(Protocol):
    """Capability to obtain and give back a working connection."""

    async def acquire(self) -> DataStoreConnection:
        ...

    async def release(self, connection: DataStoreConnection) -> None:
        ...


class SingleConnectionSource:
    """Hands out the same caller-owned connection every time.

    Example:
        >>> conn = await asyncpg.connect(dsn)
        >>> source = SingleConnectionSource(conn)
        >>> async with checkout(source) as c:
        ...     await c.fetch("select 1")
    """

    def __init__(self, connection: DataStoreConnection) -> None:
        self.connection = connection

    async def acquire(self) -> DataStoreConnection:
        return self.connection

    async def release(self, connection: DataStoreConnection) -> None:
        # Owned by the caller
        return None


class PoolConnectionSource:
    """Checks connections out of a pool (asyncpg.Pool or compatible)."""

    def __init__(self, pool: Any) -> None:
        self.pool = pool

    async def acquire(self) -> DataStoreConnection:
        return await self.pool.acquire()

    async def release(self, connection: DataStoreConnection) -> None:
        await self.pool.release(connection)


def as_connection_source(client: Any) -> ConnectionSource:
    """Adapt a connection, a pool or a ready ConnectionSource.

    Pools are recognised by their ``acquire``/``release`` capability,
    not by class.

    Raises:
        ValueError: If client is None
    """
    if client is None:
        raise ValueError(
            "Undefined client connection. Make sure to pass a valid client connection"
        )
    if isinstance(client, (SingleConnectionSource, PoolConnectionSource)):
        return client
    if callable(getattr(client, "acquire", None)) and callable(getattr(client, "release", None)):
        return PoolConnectionSource(client)
    return SingleConnectionSource(client)


@asynccontextmanager
async def checkout(source: ConnectionSource) -> AsyncIterator[DataStoreConnection]:
    """Acquire a connection for the duration of the block."""
    connection = await source.acquire()
    try:
        yield connection
    finally:
        await source.release(connection)


async def create_pool(config: DatabaseConfig) -> asyncpg.Pool:
    """Open an asyncpg pool from configuration.

    Args:
        config: Database configuration

    Returns:
        Connected asyncpg pool
    """
    logger.info(
        "Opening connection pool",
        extra={"min_size": config.min_pool_size, "max_size": config.max_pool_size},
    )
    return await asyncpg.create_pool(
        dsn=config.dsn,
        min_size=config.min_pool_size,
        max_size=config.max_pool_size,
        command_timeout=config.command_timeout,
    )
