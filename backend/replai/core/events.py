import asyncio
import json
from typing import AsyncIterator, Dict, Tuple


class EventBroadcaster:
    """Fan-out of pipeline events to SSE subscribers.

    Publishers are mailbox worker threads, so each queue is fed through the
    event loop that owns it.
    """

    def __init__(self):
        self._queues: Dict[int, Tuple[asyncio.AbstractEventLoop, asyncio.Queue]] = {}

    async def subscribe(self) -> AsyncIterator[str]:  # pragma: no cover (async generator)
        q: asyncio.Queue = asyncio.Queue(maxsize=100)
        key = id(q)
        self._queues[key] = (asyncio.get_running_loop(), q)
        try:
            while True:
                msg = await q.get()
                yield msg
        finally:
            self._queues.pop(key, None)

    def publish(self, event: str, data: dict | None = None):
        payload = f"event: {event}\ndata: {json.dumps(data or {}, default=str)}\n\n"
        for loop, q in list(self._queues.values()):
            if q.full() or loop.is_closed():
                continue
            loop.call_soon_threadsafe(q.put_nowait, payload)

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)


broadcaster = EventBroadcaster()
