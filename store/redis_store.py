"""
Redis-backed measurement store.

Entries live in two hashes keyed by the JSON-encoded MeasurementKey:

- ``<prefix>:entries`` holds each LatestEntry serialized as JSON
- ``<prefix>:order`` holds its ordering pair as ``<ts_us>:<ingested_us>``
  (epoch microseconds)

The conditional write runs as a Lua script, so the compare and both
HSETs are one atomic step on the server. Every Redis failure is raised
as ``store_unavailable``.
"""

import json
import logging
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from errors.exceptions import store_unavailable
from latest.models import LatestEntry, MeasurementKey
from store.base import MeasurementStore

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# KEYS[1] entries hash, KEYS[2] order hash
# ARGV[1] field, ARGV[2] timestamp us, ARGV[3] ingested_at us, ARGV[4] entry json
PUT_IF_NEWER_SCRIPT = """
local current = redis.call('HGET', KEYS[2], ARGV[1])
if current then
  local sep = string.find(current, ':', 2, true)
  local cur_ts = tonumber(string.sub(current, 1, sep - 1))
  local cur_ing = tonumber(string.sub(current, sep + 1))
  local new_ts = tonumber(ARGV[2])
  local new_ing = tonumber(ARGV[3])
  if new_ts < cur_ts or (new_ts == cur_ts and new_ing <= cur_ing) then
    return 0
  end
end
redis.call('HSET', KEYS[1], ARGV[1], ARGV[4])
redis.call('HSET', KEYS[2], ARGV[1], ARGV[2] .. ':' .. ARGV[3])
return 1
"""


def epoch_micros(value: datetime) -> int:
    """Whole microseconds since the epoch, exact for any aware datetime."""
    delta = value - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def encode_key(key: MeasurementKey) -> str:
    return json.dumps([key.location_id, key.parameter], separators=(",", ":"))


def decode_key(field: str) -> MeasurementKey:
    location_id, parameter = json.loads(field)
    return MeasurementKey(location_id, parameter)


class RedisMeasurementStore(MeasurementStore):
    """
    Redis-backed store with an atomic conditional write.

    Attributes:
        redis_url: Redis connection URL (e.g., "redis://localhost:6379/0")
        key_prefix: Prefix of the two hashes
        client: Redis async client instance (initialized via connect())
    """

    supports_conditional_write = True

    def __init__(self, redis_url: str, key_prefix: str = "latest", client=None):
        """
        Initialize the Redis measurement store.

        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for the entries/order hashes
            client: Pre-built async client, mainly for tests
        """
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.client = client
        self._put_if_newer = client.register_script(PUT_IF_NEWER_SCRIPT) if client is not None else None

    @property
    def entries_key(self) -> str:
        return f"{self.key_prefix}:entries"

    @property
    def order_key(self) -> str:
        return f"{self.key_prefix}:order"

    async def connect(self) -> None:
        """Create the async client; must be called before any other method."""
        self.client = aioredis.from_url(self.redis_url, decode_responses=True)
        self._put_if_newer = self.client.register_script(PUT_IF_NEWER_SCRIPT)

    async def disconnect(self) -> None:
        """Close the Redis connection."""
        if self.client is not None:
            await self.client.aclose()
            self.client = None
            self._put_if_newer = None

    def _require_client(self):
        if self.client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self.client

    def _fail(self, operation: str, error: Exception):
        logger.error(
            f"Redis {operation} failed: {error}",
            extra={"extra_data": {"operation": operation, "error": str(error)}}
        )
        return store_unavailable(
            message=f"Measurement store operation failed: {operation}",
            details={"operation": operation, "error": str(error)}
        )

    async def get(self, key: MeasurementKey) -> Optional[LatestEntry]:
        client = self._require_client()
        try:
            raw = await client.hget(self.entries_key, encode_key(key))
        except RedisError as e:
            raise self._fail("get", e) from e
        if raw is None:
            return None
        return LatestEntry.model_validate_json(raw)

    async def put(self, key: MeasurementKey, entry: LatestEntry) -> None:
        client = self._require_client()
        field = encode_key(key)
        order = f"{epoch_micros(entry.timestamp)}:{epoch_micros(entry.ingested_at)}"
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.hset(self.entries_key, field, entry.model_dump_json())
                pipe.hset(self.order_key, field, order)
                await pipe.execute()
        except RedisError as e:
            raise self._fail("put", e) from e

    async def put_if_newer(self, key: MeasurementKey, entry: LatestEntry) -> bool:
        self._require_client()
        try:
            written = await self._put_if_newer(
                keys=[self.entries_key, self.order_key],
                args=[
                    encode_key(key),
                    epoch_micros(entry.timestamp),
                    epoch_micros(entry.ingested_at),
                    entry.model_dump_json(),
                ],
            )
        except RedisError as e:
            raise self._fail("put_if_newer", e) from e
        return int(written) == 1

    async def scan_all(self) -> AsyncIterator[tuple[MeasurementKey, LatestEntry]]:
        client = self._require_client()
        try:
            async for field, raw in client.hscan_iter(self.entries_key):
                yield decode_key(field), LatestEntry.model_validate_json(raw)
        except RedisError as e:
            raise self._fail("scan_all", e) from e

    async def health_check(self) -> bool:
        if self.client is None:
            return False
        try:
            return await self.client.ping() is True
        except Exception:
            return False
