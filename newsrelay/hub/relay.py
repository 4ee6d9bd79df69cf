"""
Cross-process event relay over a Redis stream.

A worker running outside the API process cannot reach the hub's sessions, so
it emits through ``RedisStreamEmitter``; the API process runs ``StreamRelay``,
which reads the stream and replays each command on its ``RealtimeHub``.
"""
import asyncio
import json
from typing import Any, Dict, Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

log = structlog.get_logger(__name__)


def _s(v) -> str:
    return v.decode() if isinstance(v, (bytes, bytearray)) else v


class RedisStreamEmitter:
    """Emitter that publishes commands instead of delivering them."""

    def __init__(self, redis: Redis, stream: str, maxlen: int = 10000):
        self.redis = redis
        self.stream = stream
        self.maxlen = maxlen

    async def _publish(self, op: str, target: str, event: str, data: Dict[str, Any]) -> int:
        await self.redis.xadd(
            self.stream,
            {"op": op, "target": target, "event": event, "payload": json.dumps(data, default=str)},
            maxlen=self.maxlen,
            approximate=True,
        )
        # delivery happens in another process
        return 0

    async def to_room(self, room: str, event: str, data: Dict[str, Any]) -> int:
        return await self._publish("room", room, event, data)

    async def to_all(self, event: str, data: Dict[str, Any]) -> int:
        return await self._publish("all", "", event, data)

    async def to_user(self, user_id: str, event: str, data: Dict[str, Any]) -> int:
        return await self._publish("user", str(user_id), event, data)


class StreamRelay:
    def __init__(self, redis: Redis, stream: str, hub, block_ms: int = 5000, batch: int = 100):
        self.redis = redis
        self.stream = stream
        self.hub = hub
        self.block_ms = block_ms
        self.batch = batch
        self.last_id: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        await self.seek_end()
        self._task = asyncio.create_task(self._run())
        log.info("event_relay_started", stream=self.stream, last_id=self.last_id)

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def seek_end(self):
        """Only events published after startup are relayed."""
        latest = await self.redis.xrevrange(self.stream, count=1)
        self.last_id = _s(latest[0][0]) if latest else "0-0"

    async def poll_once(self, block: Optional[int] = None) -> int:
        if self.last_id is None:
            await self.seek_end()
        results = await self.redis.xread({self.stream: self.last_id}, block=block, count=self.batch)
        applied = 0
        for _, entries in results or []:
            for entry_id, fields in entries:
                self.last_id = _s(entry_id)
                if await self._apply({_s(k): _s(v) for k, v in fields.items()}):
                    applied += 1
        return applied

    async def _apply(self, fields: Dict[str, str]) -> bool:
        op = fields.get("op")
        event = fields.get("event")
        try:
            data = json.loads(fields.get("payload") or "{}")
        except ValueError:
            log.warning("event_relay_bad_payload", entry_event=event)
            return False
        if op == "room":
            await self.hub.to_room(fields.get("target", ""), event, data)
        elif op == "all":
            await self.hub.to_all(event, data)
        elif op == "user":
            await self.hub.to_user(fields.get("target", ""), event, data)
        else:
            log.warning("event_relay_unknown_op", op=op)
            return False
        return True

    async def _run(self):
        while True:
            try:
                await self.poll_once(block=self.block_ms)
            except RedisError as e:
                log.error("event_relay_redis_error", error=str(e))
                await asyncio.sleep(1.0)
