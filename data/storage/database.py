# data/storage/database.py

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional

import asyncpg
import orjson
from asyncpg.pool import Pool

from analysis.models import SuperTokenScore
from data.storage.models import CacheEntry
from utils.constants import DURABLE_TABLE
from utils.errors import DatabaseError
from utils.helpers import ensure_utc

logger = logging.getLogger(__name__)

# Server-side, client-side and transport failures all surface as DatabaseError
BACKEND_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    asyncpg.exceptions.InternalClientError,
    asyncio.TimeoutError,
    OSError,
)


class DatabaseManager:
    """
    PostgreSQL durable store for super token analyses.

    One row per token: the latest SuperTokenScore as JSONB plus its analysis
    timestamp. Backend failures are raised as DatabaseError.
    """

    def __init__(self, database_url: str, min_size: int = 2, max_size: int = 10,
                 table: str = DURABLE_TABLE):
        self.database_url = database_url
        self.min_size = min_size
        self.max_size = max_size
        self.table = table
        self.pool: Optional[Pool] = None
        self.is_connected = False

    async def connect(self) -> None:
        """Establish connection pool to PostgreSQL database."""
        try:
            self.pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=30,
                init=self._init_connection,
            )
            await self._create_tables()
            self.is_connected = True
            logger.info("Successfully connected to PostgreSQL database")
        except BACKEND_ERRORS as e:
            logger.error(f"Failed to connect to database: {e}")
            raise DatabaseError(f"Database connection failed: {e}") from e

    async def disconnect(self) -> None:
        """Close database connection pool."""
        if self.pool:
            await self.pool.close()
            self.is_connected = False
            logger.info("Disconnected from database")

    @staticmethod
    async def _init_connection(conn) -> None:
        # JSONB in and out through orjson
        await conn.set_type_codec(
            'jsonb',
            encoder=lambda value: orjson.dumps(value).decode(),
            decoder=orjson.loads,
            schema='pg_catalog',
        )

    @asynccontextmanager
    async def acquire(self):
        """Acquire a connection from the pool."""
        if self.pool is None:
            raise DatabaseError("Database is not connected")
        try:
            async with self.pool.acquire() as connection:
                yield connection
        except BACKEND_ERRORS as e:
            raise DatabaseError(str(e)) from e

    async def _create_tables(self) -> None:
        async with self.acquire() as conn:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    token_address VARCHAR(64) PRIMARY KEY,
                    analyzed_at TIMESTAMPTZ NOT NULL,
                    super_score SMALLINT NOT NULL,
                    risk_level VARCHAR(16) NOT NULL,
                    payload JSONB NOT NULL
                )
            """)
            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.table}_analyzed_at
                ON {self.table} (analyzed_at DESC)
            """)

    async def get_analysis(self, token_address: str) -> Optional[CacheEntry]:
        """Latest stored analysis for a token, fresh or not"""
        async with self.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT token_address, analyzed_at, payload FROM {self.table} WHERE token_address = $1",
                token_address,
            )
        if row is None:
            return None
        return self._row_to_entry(row)

    async def save_analysis(self, entry: CacheEntry) -> None:
        """Upsert the analysis for its token"""
        score = entry.payload
        async with self.acquire() as conn:
            await conn.execute(f"""
                INSERT INTO {self.table} (token_address, analyzed_at, super_score, risk_level, payload)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (token_address) DO UPDATE
                SET analyzed_at = EXCLUDED.analyzed_at,
                    super_score = EXCLUDED.super_score,
                    risk_level = EXCLUDED.risk_level,
                    payload = EXCLUDED.payload
            """,
                entry.token_address,
                entry.analyzed_at,
                score.super_score,
                score.global_risk_level.value,
                score.model_dump(mode='json'),
            )

    async def delete_older_than(self, cutoff: datetime) -> int:
        async with self.acquire() as conn:
            result = await conn.execute(
                f"DELETE FROM {self.table} WHERE analyzed_at < $1", ensure_utc(cutoff)
            )
        # asyncpg returns the command tag, e.g. "DELETE 3"
        return int(result.split()[-1])

    @staticmethod
    def _row_to_entry(row: Dict[str, Any]) -> CacheEntry:
        payload = row['payload']
        if isinstance(payload, (str, bytes)):
            payload = orjson.loads(payload)
        return CacheEntry(
            token_address=row['token_address'],
            analyzed_at=row['analyzed_at'],
            payload=SuperTokenScore.model_validate(payload),
        )
