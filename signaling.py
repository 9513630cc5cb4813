import asyncio
from dataclasses import dataclass, field
from typing import Any, List, Optional, Set, Tuple

from backend import Room, RoomRegistry, generate_client_id
from constants import KEEPALIVE_INTERVAL, MAX_NAME_LENGTH, STREAM_QUEUE_SIZE
from errors import ClientNotRegistered, InvalidRequest, RecipientNotFound, RecipientUnavailable, RoomNotFound
from logging_config import get_logger
from streams import PEER_JOINED, PEER_LEFT, SIGNAL, EventStream

logger = get_logger(__name__)


def _clean(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _is_blank(value) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def _is_missing_payload(value) -> bool:
    # Only null, "", 0 and false count as absent; containers are opaque and always relayed
    if value is None:
        return True
    return isinstance(value, (bool, int, float, str)) and not value


@dataclass
class JoinResult:
    client_id: str
    room_id: str
    name: str
    peers: List[Tuple[str, str]] = field(default_factory=list)


class SignalingService:
    """Join, stream, signal and leave on top of a RoomRegistry.

    Room state is only touched under the room's lock; stream writes and
    fan-out happen after the lock is released.
    """

    def __init__(
        self,
        registry: Optional[RoomRegistry] = None,
        keepalive_interval: float = KEEPALIVE_INTERVAL,
        stream_queue_size: int = STREAM_QUEUE_SIZE,
    ):
        self.registry = registry if registry is not None else RoomRegistry()
        self.keepalive_interval = keepalive_interval
        self.stream_queue_size = stream_queue_size
        self._tasks: Set[asyncio.Task] = set()

    # Lifecycle

    async def join(self, room_id, name) -> JoinResult:
        """Register a new session. The caller sends the response, then calls ``announce_join``."""
        room_id = _clean(room_id)
        name = _clean(name)[:MAX_NAME_LENGTH]
        if not room_id or not name:
            raise InvalidRequest("Missing room or name")

        while True:
            room = await self.registry.get_or_create_room(room_id)
            async with room.lock:
                if room.closed:
                    # Emptied and dropped between lookup and lock; get a fresh one
                    continue
                peers = room.snapshot()
                client_id = generate_client_id()
                room.insert(client_id, name)
                break

        logger.info(f"Client {client_id} ({name}) joined room {room_id} with {len(peers)} existing peers")
        return JoinResult(client_id=client_id, room_id=room_id, name=name, peers=peers)

    async def announce_join(self, result: JoinResult) -> int:
        return await self.broadcast(
            result.room_id,
            result.client_id,
            PEER_JOINED,
            {"clientId": result.client_id, "name": result.name},
        )

    async def open_stream(self, room_id, client_id) -> EventStream:
        room_id = _clean(room_id)
        client_id = _clean(client_id)
        if not room_id or not client_id:
            raise InvalidRequest("Missing room or clientId")

        room = self.registry.lookup_room(room_id)
        if room is None:
            logger.info(f"Stream rejected: room {room_id} not found for client {client_id}")
            raise ClientNotRegistered()

        stream = EventStream(
            room_id,
            client_id,
            keepalive_interval=self.keepalive_interval,
            max_pending=self.stream_queue_size,
        )
        async with room.lock:
            if room.closed:
                raise ClientNotRegistered()
            session = room.get(client_id)
            if session is None:
                logger.info(f"Stream rejected: client {client_id} not registered in room {room_id}")
                raise ClientNotRegistered()
            previous = session.stream
            room.attach_stream(client_id, stream)

        stream.on_closed(lambda: self._spawn(self.on_stream_closed(room_id, client_id, stream)))
        if previous is not None:
            # Superseded; its close callback sees it is no longer attached and does nothing
            previous.close()
        stream.start()
        logger.info(f"Stream opened for client {client_id} in room {room_id}")
        return stream

    async def on_stream_closed(self, room_id: str, client_id: str, stream: Optional[EventStream] = None) -> bool:
        """Transport-side teardown. Ignored if ``stream`` is no longer the session's stream."""
        room = self.registry.lookup_room(room_id)
        if room is None:
            return False
        logger.info(f"Stream closed for client {client_id} in room {room_id}")
        return await self._teardown(room, client_id, stream)

    async def leave(self, room_id, client_id) -> bool:
        """Remove a session and notify the rest of the room. Idempotent."""
        room_id = _clean(room_id)
        client_id = _clean(client_id)
        if not room_id or not client_id:
            raise InvalidRequest("Missing room or clientId")

        room = self.registry.lookup_room(room_id)
        if room is None:
            logger.debug(f"Leave ignored: room {room_id} not found")
            return False
        return await self._teardown(room, client_id)

    async def _teardown(self, room: Room, client_id: str, stream: Optional[EventStream] = None) -> bool:
        """Remove the session, close its stream, notify the room.

        With ``stream`` given, only tears down while that stream is still the
        session's attached one; the check and the removal share the room lock.
        """
        room_id = room.room_id
        async with room.lock:
            if stream is not None:
                current = room.get(client_id)
                if current is None or current.stream is not stream:
                    return False
            session = room.remove(client_id)
            if session is None:
                return False
            if room.is_empty():
                await self.registry.delete_room_if_empty(room_id)

        session.close_stream()
        logger.info(f"Client {client_id} ({session.name}) left room {room_id}")
        # The leaving client is already out of the table, nothing to exclude
        await self.broadcast(room_id, None, PEER_LEFT, {"clientId": client_id})
        return True

    # Fan-out and relay

    async def broadcast(self, room_id: str, exclude_client_id: Optional[str], kind: str, payload) -> int:
        """Send an event to every attached session in the room except ``exclude_client_id``."""
        room = self.registry.lookup_room(room_id)
        if room is None:
            return 0
        async with room.lock:
            recipients = room.streams(exclude_client_id)

        delivered = 0
        for stream in recipients:
            if stream.send(kind, payload):
                delivered += 1
        logger.debug(f"Broadcast {kind} in room {room_id} to {delivered}/{len(recipients)} streams")
        return delivered

    async def relay(self, room_id, from_client_id, target_client_id, data: Any):
        ids = (room_id, from_client_id, target_client_id)
        if any(_is_blank(value) for value in ids) or _is_missing_payload(data):
            raise InvalidRequest("Missing required fields")
        room_id = _clean(room_id)
        from_client_id = _clean(from_client_id)
        target_client_id = _clean(target_client_id)

        room = self.registry.lookup_room(room_id)
        if room is None:
            logger.info(f"Signal from {from_client_id} rejected: room {room_id} not found")
            raise RoomNotFound()

        async with room.lock:
            target = room.get(target_client_id)
            stream = target.stream if target is not None else None

        if target is None:
            logger.info(f"Signal from {from_client_id} rejected: {target_client_id} not in room {room_id}")
            raise RecipientNotFound()
        if stream is None or not stream.send(SIGNAL, {"from": from_client_id, "data": data}):
            logger.info(f"Signal from {from_client_id} rejected: {target_client_id} has no live stream")
            raise RecipientUnavailable()
        logger.debug(f"Relayed signal {from_client_id} -> {target_client_id} in room {room_id}")

    # Housekeeping

    async def drain(self):
        """Wait for scheduled teardowns to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self):
        """Close every open stream and wait for the resulting teardowns."""
        logger.info(f"Shutting down with {self.registry.room_count()} rooms and {self.registry.session_count()} sessions")
        for room in self.registry.rooms():
            async with room.lock:
                streams = room.streams()
            for stream in streams:
                stream.close()
        await self.drain()

    def _spawn(self, coro):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop, dropping stream teardown")
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background teardown failed: {task.exception()}", exc_info=task.exception())
