"""Redis-backed shared state tree with optimistic updates and change feeds.

Paths look like ``collection/record_id`` or ``collection/record_id/field``.
Each record is stored as a Redis hash named after its record path, with every
field JSON encoded, and its id is tracked in the ``index:<collection>`` set.
Every mutation publishes the record path on ``changes:<collection>`` inside the
same MULTI block, so subscribers never observe a write before it commits.
"""

import asyncio
import inspect
import json
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generator
from uuid import uuid4

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from mealhold.config import get_settings
from mealhold.errors import LedgerConflictError, StoreUnavailableError
from mealhold.utils.logging import get_logger

logger = get_logger(__name__)


class _Abort:
    def __repr__(self) -> str:
        return "ABORT"


# Returned by an adjust transform to leave the record untouched.
ABORT = _Abort()

Transform = Callable[[Any], Any]
ChangeCallback = Callable[[Any], Awaitable[None] | None]
ErrorCallback = Callable[[Exception], Awaitable[None] | None]


@dataclass
class AdjustResult:
    """Outcome of an optimistic update."""

    committed: bool
    value: Any = None
    attempts: int = 0


@dataclass
class _Path:
    collection: str
    key: str
    field: str | None = None

    @property
    def record_id(self) -> str:
        return self.key.split("/", 1)[1]


def parse_path(path: str) -> _Path:
    """Split a tree path into its collection, record key and optional field."""
    parts = [part for part in path.strip("/").split("/") if part]
    if len(parts) == 2:
        return _Path(parts[0], f"{parts[0]}/{parts[1]}")
    if len(parts) == 3:
        return _Path(parts[0], f"{parts[0]}/{parts[1]}", parts[2])
    raise ValueError(f"Unsupported path {path!r}; expected collection/id[/field]")


def _encode(value: Any) -> str:
    return json.dumps(value)


def _decode(value: Any) -> Any:
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return value


@contextmanager
def _translate_errors(path: str) -> Generator[None, None, None]:
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError) as e:
        logger.error("state_store_unavailable", path=path, error=str(e))
        raise StoreUnavailableError() from e


async def _call(callback: Callable[[Any], Any], arg: Any) -> None:
    result = callback(arg)
    if inspect.isawaitable(result):
        await result


class Subscription:
    """Handle for a live change feed; call ``unsubscribe`` when done."""

    def __init__(self, path: str, pubsub: Any, task: asyncio.Task):
        self.path = path
        self._pubsub = pubsub
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    async def unsubscribe(self) -> None:
        """Stop delivering changes and release the pub/sub connection."""
        if not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        await self._pubsub.unsubscribe()
        await self._pubsub.aclose()
        logger.debug("subscription_closed", path=self.path)


class StateManager:
    """Shared mutable state tree kept in Redis."""

    def __init__(self, redis_client: redis.Redis | None = None) -> None:
        settings = get_settings()
        self.redis_client: redis.Redis | None = redis_client
        self.redis_url = settings.redis_url
        self.max_retries = settings.ledger_max_retries
        self.backoff_base = settings.ledger_backoff_base
        self.backoff_max = settings.ledger_backoff_max

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self.redis_client is None:
            self.redis_client = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("redis_connected", url=self.redis_url)

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("redis_disconnected")

    async def _client(self) -> redis.Redis:
        if not self.redis_client:
            await self.connect()
        return self.redis_client

    @staticmethod
    def _index_key(collection: str) -> str:
        return f"index:{collection}"

    @staticmethod
    def channel(collection: str) -> str:
        return f"changes:{collection}"

    @staticmethod
    def new_id() -> str:
        """Generate a fresh record id."""
        return uuid4().hex

    async def read(self, path: str) -> Any:
        """Read a record (dict) or a single field; ``None`` when absent."""
        target = parse_path(path)
        client = await self._client()

        with _translate_errors(path):
            return await self._load(client, target)

    async def read_collection(self, collection: str) -> dict[str, dict[str, Any]]:
        """Read every record in a collection, keyed by record id."""
        client = await self._client()

        with _translate_errors(collection):
            record_ids = sorted(await client.smembers(self._index_key(collection)))
            if not record_ids:
                return {}

            async with client.pipeline(transaction=False) as pipe:
                for record_id in record_ids:
                    pipe.hgetall(f"{collection}/{record_id}")
                raw_records = await pipe.execute()

        records = {}
        for record_id, raw in zip(record_ids, raw_records):
            if raw:
                records[record_id] = {field: _decode(value) for field, value in raw.items()}
        return records

    async def write(self, path: str, value: Any) -> None:
        """Overwrite a record or field unconditionally. ``None`` deletes it."""
        target = parse_path(path)
        client = await self._client()

        with _translate_errors(path):
            async with client.pipeline(transaction=True) as pipe:
                self._queue_write(pipe, target, value)
                await pipe.execute()

        logger.debug("state_set", path=path)

    async def update(self, path: str, changes: dict[str, Any]) -> None:
        """Merge fields into a record in one atomic step. ``None`` values delete fields."""
        target = parse_path(path)
        if target.field is not None:
            raise ValueError(f"update() expects a record path, got {path!r}")

        client = await self._client()
        to_set = {field: _encode(value) for field, value in changes.items() if value is not None}
        to_delete = [field for field, value in changes.items() if value is None]

        with _translate_errors(path):
            async with client.pipeline(transaction=True) as pipe:
                if to_set:
                    pipe.hset(target.key, mapping=to_set)
                if to_delete:
                    pipe.hdel(target.key, *to_delete)
                pipe.sadd(self._index_key(target.collection), target.record_id)
                pipe.publish(self.channel(target.collection), target.key)
                await pipe.execute()

        logger.debug("state_updated", path=path, fields=sorted(changes))

    async def increment(self, path: str, amount: int = 1) -> int:
        """Atomically add to an integer field."""
        target = parse_path(path)
        if target.field is None:
            raise ValueError(f"increment() expects a field path, got {path!r}")

        client = await self._client()

        with _translate_errors(path):
            async with client.pipeline(transaction=True) as pipe:
                pipe.hincrby(target.key, target.field, amount)
                pipe.sadd(self._index_key(target.collection), target.record_id)
                pipe.publish(self.channel(target.collection), target.key)
                new_value, _, _ = await pipe.execute()

        return int(new_value)

    async def adjust(self, path: str, transform: Transform) -> AdjustResult:
        """
        Apply ``transform`` to the current value and commit it if nobody else
        wrote in between; otherwise retry against the fresh value.

        ``transform`` receives the current value (``None`` when absent) and
        returns the next value, or ``ABORT`` to stop without writing. It may
        run several times and must not have side effects.

        Raises:
            LedgerConflictError: every attempt lost a race.
            StoreUnavailableError: Redis could not be reached.
        """
        target = parse_path(path)
        client = await self._client()
        delay = self.backoff_base

        for attempt in range(1, self.max_retries + 1):
            with _translate_errors(path):
                async with client.pipeline(transaction=True) as pipe:
                    try:
                        await pipe.watch(target.key)
                        current = await self._load(pipe, target)
                        next_value = transform(current)

                        if next_value is ABORT:
                            await pipe.unwatch()
                            return AdjustResult(committed=False, value=current, attempts=attempt)

                        pipe.multi()
                        self._queue_write(pipe, target, next_value)
                        await pipe.execute()

                        if attempt > 1:
                            logger.debug("adjust_committed_after_retry", path=path, attempts=attempt)
                        return AdjustResult(committed=True, value=next_value, attempts=attempt)

                    except WatchError:
                        logger.debug("adjust_conflict", path=path, attempt=attempt)

            await asyncio.sleep(delay)
            delay = min(delay * 2, self.backoff_max)

        logger.warning("adjust_retries_exhausted", path=path, attempts=self.max_retries)
        raise LedgerConflictError(path, self.max_retries)

    async def subscribe(
        self,
        path: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """
        Watch a collection (``"reservations"``) or a record/field path.

        ``on_change`` fires right away with the current value and then again
        after every committed write under the watched path.
        """
        collection = path.strip("/").split("/")[0]
        client = await self._client()

        with _translate_errors(path):
            pubsub = client.pubsub()
            # Subscribe before the first read so no write slips between them
            await pubsub.subscribe(self.channel(collection))

        task = asyncio.create_task(self._pump(path, pubsub, on_change, on_error))
        logger.debug("subscription_opened", path=path)
        return Subscription(path, pubsub, task)

    async def _pump(
        self,
        path: str,
        pubsub: Any,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None,
    ) -> None:
        watched = path.strip("/")
        watched_key = parse_path(watched).key if "/" in watched else None
        try:
            await _call(on_change, await self._snapshot(watched))

            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None:
                    await asyncio.sleep(0)
                    continue

                if watched_key is not None and message["data"] != watched_key:
                    continue

                await _call(on_change, await self._snapshot(watched))

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("subscription_failed", path=path, error=str(e))
            if on_error:
                await _call(on_error, e)

    async def _snapshot(self, path: str) -> Any:
        if "/" in path:
            return await self.read(path)
        return await self.read_collection(path)

    async def _load(self, conn: Any, target: _Path) -> Any:
        if target.field is not None:
            value = await conn.hget(target.key, target.field)
            return None if value is None else _decode(value)

        raw = await conn.hgetall(target.key)
        if not raw:
            return None
        return {field: _decode(value) for field, value in raw.items()}

    def _queue_write(self, pipe: Any, target: _Path, value: Any) -> None:
        index_key = self._index_key(target.collection)

        if target.field is not None:
            if value is None:
                pipe.hdel(target.key, target.field)
            else:
                pipe.hset(target.key, target.field, _encode(value))
                pipe.sadd(index_key, target.record_id)
        else:
            pipe.delete(target.key)
            fields = {} if value is None else {
                field: _encode(item) for field, item in value.items() if item is not None
            }
            if fields:
                pipe.hset(target.key, mapping=fields)
                pipe.sadd(index_key, target.record_id)
            else:
                pipe.srem(index_key, target.record_id)

        pipe.publish(self.channel(target.collection), target.key)


# Global state manager instance
_state_manager: StateManager | None = None


async def get_state_manager() -> StateManager:
    """Get the global state manager instance."""
    global _state_manager
    if _state_manager is None:
        _state_manager = StateManager()
        await _state_manager.connect()
    return _state_manager


def set_state_manager(state_manager: StateManager | None) -> None:
    """Replace the global state manager (used by tests and scripts)."""
    global _state_manager
    _state_manager = state_manager
