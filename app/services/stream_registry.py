from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
import logging

from redis.asyncio import Redis

from app.core.settings import Settings
from app.services.chat_stream import ChatStreamEvent, decode_stream_event, encode_stream_event
from app.services.contracts import StreamRegistryProtocol
from app.services.stream_emitter import StreamEmitter

logger = logging.getLogger(__name__)

_STATE_LIVE = "live"
_STATE_DONE = "done"
_DONE_FIELD = "done"
_FRAME_FIELD = "frame"


class DisabledStreamRegistry:
    """Registry used when no shared backing store is configured; nothing is resumable."""

    enabled = False

    async def register(self, run_id: str, stream_factory: Callable[[], StreamEmitter]) -> StreamEmitter:
        del run_id
        return stream_factory()

    async def attach(self, run_id: str, offset: int = 0) -> AsyncIterator[ChatStreamEvent] | None:
        del run_id, offset
        return None

    async def close(self) -> None:
        return None


class InMemoryStreamRegistry:
    """Process-local registry for single-node deployments."""

    enabled = True

    def __init__(self) -> None:
        self._streams: dict[str, StreamEmitter] = {}
        self._lock = asyncio.Lock()

    async def register(self, run_id: str, stream_factory: Callable[[], StreamEmitter]) -> StreamEmitter:
        async with self._lock:
            if run_id in self._streams:
                raise RuntimeError(f"run {run_id} is already registered")
            self._prune_closed()
            emitter = stream_factory()
            self._streams[run_id] = emitter
        return emitter

    async def attach(self, run_id: str, offset: int = 0) -> AsyncIterator[ChatStreamEvent] | None:
        async with self._lock:
            emitter = self._streams.get(run_id)
            if emitter is None or emitter.closed:
                return None
            return emitter.subscribe(offset)

    async def close(self) -> None:
        self._streams.clear()

    def _prune_closed(self) -> None:
        for run_id in [run_id for run_id, emitter in self._streams.items() if emitter.closed]:
            del self._streams[run_id]


class RedisStreamRegistry:
    """Redis Streams backed registry shared by every node.

    Frames are appended with ``XADD`` in emission order and read back with
    ``XRANGE``/``XREAD`` semantics, so a late reader gets a gap-free tail
    from any offset. A run is attachable while its state key says ``live``.
    """

    enabled = True

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "chat:streams",
        ttl_seconds: int = 600,
        block_ms: int = 5000,
        redis_client: Redis | None = None,
    ) -> None:
        self._redis = redis_client if redis_client is not None else Redis.from_url(redis_url, decode_responses=True)
        self._key_prefix = key_prefix.strip(":")
        self._ttl_seconds = ttl_seconds
        self._block_ms = block_ms
        self._locks: dict[str, asyncio.Lock] = {}
        self._live_runs: set[str] = set()
        self._forwarders: set[asyncio.Task[None]] = set()

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def register(self, run_id: str, stream_factory: Callable[[], StreamEmitter]) -> StreamEmitter:
        lock = self._lock_for(run_id)
        try:
            async with lock:
                claimed = await self._redis.set(self._state_key(run_id), _STATE_LIVE, nx=True, ex=self._ttl_seconds)
                if not claimed:
                    raise RuntimeError(f"run {run_id} is already registered")
                emitter = stream_factory()
                self._live_runs.add(run_id)
                task = asyncio.create_task(self._forward(run_id, emitter))
        finally:
            self._release_lock(run_id, lock)
        self._forwarders.add(task)
        task.add_done_callback(self._forwarders.discard)
        logger.debug("registered resumable stream", extra={"run_id": run_id})
        return emitter

    async def attach(self, run_id: str, offset: int = 0) -> AsyncIterator[ChatStreamEvent] | None:
        lock = self._lock_for(run_id)
        try:
            async with lock:
                state = await self._redis.get(self._state_key(run_id))
        finally:
            self._release_lock(run_id, lock)
        if state != _STATE_LIVE:
            return None
        logger.debug("attaching to resumable stream", extra={"run_id": run_id, "offset": offset})
        return self._read_frames(run_id, offset)

    async def close(self) -> None:
        if self._forwarders:
            await asyncio.gather(*self._forwarders, return_exceptions=True)
        await self._redis.aclose()

    async def _forward(self, run_id: str, emitter: StreamEmitter) -> None:
        frames_key = self._frames_key(run_id)
        state_key = self._state_key(run_id)
        try:
            async for event in emitter.subscribe():
                await self._redis.xadd(frames_key, {_FRAME_FIELD: encode_stream_event(event)})
            await self._redis.xadd(frames_key, {_DONE_FIELD: "1"})
            await self._redis.expire(frames_key, self._ttl_seconds)
            await self._redis.set(state_key, _STATE_DONE, ex=self._ttl_seconds)
        except Exception:
            # A partial copy would hand resumers a gap; drop the run instead.
            logger.exception("resumable stream forwarding failed", extra={"run_id": run_id})
            try:
                await self._redis.delete(state_key, frames_key)
            except Exception:
                logger.exception("resumable stream cleanup failed", extra={"run_id": run_id})
        finally:
            self._live_runs.discard(run_id)
            self._locks.pop(run_id, None)

    async def _read_frames(self, run_id: str, offset: int) -> AsyncIterator[ChatStreamEvent]:
        frames_key = self._frames_key(run_id)
        last_id = "0-0"
        skipped = 0
        while True:
            response = await self._redis.xread({frames_key: last_id}, count=100, block=self._block_ms)
            if not response:
                if await self._redis.get(self._state_key(run_id)) != _STATE_LIVE:
                    return
                continue
            for _stream_name, entries in response:
                for entry_id, fields in entries:
                    last_id = entry_id
                    if _DONE_FIELD in fields:
                        return
                    if skipped < offset:
                        skipped += 1
                        continue
                    event = decode_stream_event(fields.get(_FRAME_FIELD, ""))
                    if event is not None:
                        yield event

    def _lock_for(self, run_id: str) -> asyncio.Lock:
        return self._locks.setdefault(run_id, asyncio.Lock())

    def _release_lock(self, run_id: str, lock: asyncio.Lock) -> None:
        # Only a run forwarded from this process keeps its lock; _forward drops it on completion.
        if run_id in self._live_runs or lock.locked():
            return
        if self._locks.get(run_id) is lock:
            del self._locks[run_id]

    def _state_key(self, run_id: str) -> str:
        return f"{self._key_prefix}:{run_id}:state"

    def _frames_key(self, run_id: str) -> str:
        return f"{self._key_prefix}:{run_id}:frames"


def build_stream_registry(settings: Settings) -> StreamRegistryProtocol:
    """Pick the registry once at startup; a missing Redis URL disables resumability."""

    backend = settings.resumable_stream_backend.lower()
    if backend == "memory":
        logger.info("resumable streams use the in-process registry")
        return InMemoryStreamRegistry()
    if backend == "redis" and settings.resumable_stream_redis_url:
        logger.info("resumable streams use redis")
        return RedisStreamRegistry(
            redis_url=settings.resumable_stream_redis_url,
            key_prefix=settings.resumable_stream_key_prefix,
            ttl_seconds=settings.resumable_stream_ttl_seconds,
            block_ms=settings.resumable_stream_block_ms,
        )
    logger.info("resumable streams are disabled", extra={"backend": backend})
    return DisabledStreamRegistry()
