from __future__ import annotations

from dataclasses import dataclass

import asyncpg


def to_plain_dsn(dsn: str) -> str:
    """Strip a SQLAlchemy driver suffix so asyncpg accepts the DSN."""

    scheme, sep, rest = dsn.partition("://")
    if not sep:
        return dsn
    return f"{scheme.split('+', 1)[0]}://{rest}"


@dataclass(slots=True)
class PostgresConnectionTester:
    """Readiness check for the queue database."""

    dsn: str
    _pool: asyncpg.Pool | None = None

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(dsn=to_plain_dsn(self.dsn), min_size=1, max_size=1)
        return self._pool

    async def test_connection(self) -> bool:
        pool = await self._ensure_pool()
        async with pool.acquire() as connection:
            await connection.execute("SELECT 1")
        return True

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
