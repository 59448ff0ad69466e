"""
Unit tests for connection sources.
"""

import pytest

from pgcompute import PoolConnectionSource, SingleConnectionSource
from pgcompute.connection import as_connection_source, checkout


class TestConnectionSource:
    """Tests for as_connection_source and checkout."""

    def test_none_rejected(self):
        """A missing client is an error."""
        with pytest.raises(ValueError, match="Undefined client connection"):
            as_connection_source(None)

    def test_connection_wrapped(self, store):
        """Plain connections become single-connection sources."""
        source = as_connection_source(store)

        assert isinstance(source, SingleConnectionSource)

    def test_pool_detected_by_capability(self, pool):
        """Anything with acquire/release is treated as a pool."""
        source = as_connection_source(pool)

        assert isinstance(source, PoolConnectionSource)
        assert source.pool is pool

    def test_source_passthrough(self, store):
        """Ready sources are used as given."""
        source = SingleConnectionSource(store)

        assert as_connection_source(source) is source

    @pytest.mark.asyncio
    async def test_single_connection_checkout(self, store):
        """A single connection is handed out and never closed."""
        async with checkout(as_connection_source(store)) as conn:
            assert conn is store

        assert not store.closed

    @pytest.mark.asyncio
    async def test_pool_checkout_releases(self, pool, store):
        """Pool checkouts are released when the block ends."""
        async with checkout(as_connection_source(pool)) as conn:
            assert conn is store
            assert pool.in_use == 1

        assert pool.in_use == 0

    @pytest.mark.asyncio
    async def test_pool_checkout_releases_on_error(self, pool):
        """Pool checkouts are released when the block raises."""
        with pytest.raises(RuntimeError):
            async with checkout(as_connection_source(pool)):
                raise RuntimeError("boom")

        assert pool.acquired == 1
        assert pool.released == 1
