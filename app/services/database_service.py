from collections.abc import Sequence
import json
import logging
from typing import Any

import asyncpg

logger = logging.getLogger(__name__)


class DatabaseService:
    """Thin asyncpg pool wrapper; JSON/JSONB columns round-trip as Python objects."""

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 10) -> None:
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._pool: asyncpg.Pool | None = None

    async def _initialize_connection(self, connection: asyncpg.Connection) -> None:
        for type_name in ("json", "jsonb"):
            await connection.set_type_codec(
                type_name,
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )

    async def connect(self) -> None:
        if self._pool is not None:
            return
        logger.info("creating database connection pool", extra={"max_size": self._max_size})
        self._pool = await asyncpg.create_pool(
            dsn=self._dsn,
            min_size=self._min_size,
            max_size=self._max_size,
            init=self._initialize_connection,
        )

    async def disconnect(self) -> None:
        if self._pool is None:
            return
        logger.info("closing database connection pool")
        await self._pool.close()
        self._pool = None

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("database service is not connected")
        return self._pool

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        pool = self._require_pool()
        logger.debug("executing fetchrow", extra={"args_count": len(args)})
        async with pool.acquire() as connection:
            return await connection.fetchrow(query, *args)

    async def fetch(self, query: str, *args: Any) -> Sequence[asyncpg.Record]:
        pool = self._require_pool()
        logger.debug("executing fetch", extra={"args_count": len(args)})
        async with pool.acquire() as connection:
            return await connection.fetch(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        pool = self._require_pool()
        logger.debug("executing statement", extra={"args_count": len(args)})
        async with pool.acquire() as connection:
            return await connection.execute(query, *args)
