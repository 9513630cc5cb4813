import asyncio
import json
from typing import AsyncIterator, Callable, List, Optional

from constants import KEEPALIVE_INTERVAL, STREAM_QUEUE_SIZE
from logging_config import get_logger

logger = get_logger(__name__)

PEER_JOINED = "peer-joined"
PEER_LEFT = "peer-left"
SIGNAL = "signal"

KEEPALIVE_FRAME = ": ping\n\n"
STREAM_PREAMBLE = "\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def format_event(kind: str, payload) -> str:
    """Encode one event as a text/event-stream frame."""
    return f"event: {kind}\ndata: {json.dumps(payload)}\n\n"


class EventStream:
    """Server-to-client push channel for one session.

    Writers never touch the transport. ``send`` and the keep-alive task put
    frames on a queue and ``frames()`` is the only reader, so frames for one
    stream are written one at a time and in order. A consumer that falls
    ``max_pending`` frames behind is treated as gone and the stream closes.
    """

    def __init__(
        self,
        room_id: str,
        client_id: str,
        keepalive_interval: float = KEEPALIVE_INTERVAL,
        max_pending: int = STREAM_QUEUE_SIZE,
    ):
        self.room_id = room_id
        self.client_id = client_id
        self.keepalive_interval = keepalive_interval
        self.max_pending = max_pending
        # None is the end-of-stream marker and is always accepted
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._closed = False
        self._callbacks: List[Callable[[], None]] = []
        self._keepalive_task: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self):
        """Begin emitting keep-alive frames. Requires a running event loop."""
        if self._keepalive_task is None and not self._closed:
            self._keepalive_task = asyncio.get_running_loop().create_task(self._keepalive())

    def send(self, kind: str, payload) -> bool:
        """Queue one event frame. Returns False if the stream is closed or overflowed."""
        return self._put(format_event(kind, payload))

    def on_closed(self, callback: Callable[[], None]):
        """Register a callback fired once when the stream closes.

        Callbacks run synchronously inside ``close()``; anything that needs to
        await should schedule a task.
        """
        if self._closed:
            callback()
        else:
            self._callbacks.append(callback)

    def close(self):
        if self._closed:
            return
        self._closed = True
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            self._keepalive_task = None
        self._queue.put_nowait(None)
        logger.debug(f"Closed stream for {self.client_id} in room {self.room_id}")

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Stream close callback failed for {self.client_id}: {e}", exc_info=True)

    async def frames(self) -> AsyncIterator[str]:
        """Yield frames for the HTTP response body until the stream closes.

        Leaving the iterator for any reason (client gone, write failure,
        cancellation) closes the stream.
        """
        try:
            yield STREAM_PREAMBLE
            while True:
                frame = await self._queue.get()
                if frame is None:
                    break
                yield frame
        finally:
            self.close()

    def _put(self, frame: str) -> bool:
        if self._closed:
            return False
        if self._queue.qsize() >= self.max_pending:
            logger.warning(
                f"Stream for {self.client_id} in room {self.room_id} has {self._queue.qsize()} pending frames, closing"
            )
            self.close()
            return False
        self._queue.put_nowait(frame)
        return True

    async def _keepalive(self):
        try:
            while not self._closed:
                await asyncio.sleep(self.keepalive_interval)
                self._put(KEEPALIVE_FRAME)
        except asyncio.CancelledError:
            pass

    def __repr__(self):
        return f"EventStream(room_id={self.room_id!r}, client_id={self.client_id!r}, closed={self._closed})"
