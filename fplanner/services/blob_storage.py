"""Key-value blob stores used as cold storage for archived gameweeks.

Backends:
- S3BlobStore: AWS S3 via boto3 (blocking calls run in a worker thread)
- PostgresBlobStore: a single key/value table via asyncpg
- MemoryBlobStore: process-local dict, for local development
- NullBlobStore: storage disabled, every read misses

Backends raise StorageUnavailableError on any failure other than a missing key;
callers decide whether that is fatal (the gameweek archive never lets it be).
"""

import asyncio
import logging
from typing import Any, Protocol

import asyncpg
import boto3
from botocore.exceptions import BotoCoreError, ClientError

from fplanner.config import Settings

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}


class StorageUnavailableError(Exception):
    """Raised when cold storage cannot be read or written."""


class BlobStore(Protocol):
    """Minimal key-value contract for cold storage."""

    enabled: bool

    async def put(self, key: str, body: bytes) -> None: ...

    async def get(self, key: str) -> bytes | None: ...

    async def exists(self, key: str) -> bool: ...

    async def close(self) -> None: ...


class NullBlobStore:
    """Cold storage disabled."""

    enabled = False

    async def put(self, key: str, body: bytes) -> None:
        return None

    async def get(self, key: str) -> bytes | None:
        return None

    async def exists(self, key: str) -> bool:
        return False

    async def close(self) -> None:
        return None


class MemoryBlobStore:
    """Dict-backed store; last write wins per key."""

    enabled = True

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}

    async def put(self, key: str, body: bytes) -> None:
        self.objects[key] = body

    async def get(self, key: str) -> bytes | None:
        return self.objects.get(key)

    async def exists(self, key: str) -> bool:
        return key in self.objects

    async def close(self) -> None:
        return None


def _is_not_found(error: ClientError) -> bool:
    code = str(error.response.get("Error", {}).get("Code", ""))
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code in NOT_FOUND_CODES or status == 404


class S3BlobStore:
    """AWS S3 bucket as cold storage."""

    enabled = True

    def __init__(self, bucket: str, region: str, prefix: str = "", client: Any = None):
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self._client = client or boto3.client("s3", region_name=region)
        logger.info(f"S3 cold storage initialized (bucket: {bucket}, region: {region})")

    def _key(self, key: str) -> str:
        return f"{self.prefix}/{key}" if self.prefix else key

    def _put(self, key: str, body: bytes) -> None:
        self._client.put_object(
            Bucket=self.bucket,
            Key=self._key(key),
            Body=body,
            ContentType="application/json",
        )

    def _get(self, key: str) -> bytes | None:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=self._key(key))
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise
        return response["Body"].read()

    def _exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=self._key(key))
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise
        return True

    async def put(self, key: str, body: bytes) -> None:
        try:
            await asyncio.to_thread(self._put, key, body)
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailableError(f"S3 put {key} failed: {e}") from e

    async def get(self, key: str) -> bytes | None:
        try:
            return await asyncio.to_thread(self._get, key)
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailableError(f"S3 get {key} failed: {e}") from e

    async def exists(self, key: str) -> bool:
        try:
            return await asyncio.to_thread(self._exists, key)
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailableError(f"S3 head {key} failed: {e}") from e

    async def close(self) -> None:
        return None


PG_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class PostgresBlobStore:
    """Postgres table as cold storage (one row per key, upserted)."""

    enabled = True

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    @classmethod
    async def connect(cls, db_url: str) -> "PostgresBlobStore":
        """Create a pool and make sure the archive table exists."""
        if not db_url:
            raise ValueError(
                "Database connection string not configured. "
                "Set DATABASE_URL to use the postgres storage backend."
            )
        logger.info("Initializing database connection pool for cold storage")
        pool = await asyncpg.create_pool(db_url, min_size=1, max_size=5, command_timeout=30)
        store = cls(pool)
        await store.ensure_schema()
        return store

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS blob_archive (
                    key TEXT PRIMARY KEY,
                    body BYTEA NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
                """
            )

    async def put(self, key: str, body: bytes) -> None:
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO blob_archive (key, body, updated_at)
                    VALUES ($1, $2, NOW())
                    ON CONFLICT (key) DO UPDATE SET
                        body = EXCLUDED.body,
                        updated_at = NOW()
                    """,
                    key,
                    body,
                )
        except PG_ERRORS as e:
            raise StorageUnavailableError(f"Postgres put {key} failed: {e}") from e

    async def get(self, key: str) -> bytes | None:
        try:
            async with self._pool.acquire() as conn:
                body = await conn.fetchval("SELECT body FROM blob_archive WHERE key = $1", key)
        except PG_ERRORS as e:
            raise StorageUnavailableError(f"Postgres get {key} failed: {e}") from e
        return bytes(body) if body is not None else None

    async def exists(self, key: str) -> bool:
        try:
            async with self._pool.acquire() as conn:
                return bool(
                    await conn.fetchval(
                        "SELECT EXISTS(SELECT 1 FROM blob_archive WHERE key = $1)", key
                    )
                )
        except PG_ERRORS as e:
            raise StorageUnavailableError(f"Postgres exists {key} failed: {e}") from e

    async def close(self) -> None:
        logger.info("Closing cold storage connection pool")
        await self._pool.close()


async def create_blob_store(settings: Settings) -> BlobStore:
    """Build the configured cold storage backend."""
    backend = settings.storage_backend.lower()
    if backend == "s3":
        return S3BlobStore(settings.aws_s3_bucket, settings.aws_region, settings.aws_s3_prefix)
    if backend == "postgres":
        return await PostgresBlobStore.connect(settings.database_url)
    if backend == "memory":
        return MemoryBlobStore()
    if backend != "none":
        logger.warning(f"Unknown storage backend {backend!r}, cold storage disabled")
    else:
        logger.info("Cold storage disabled")
    return NullBlobStore()
