import asyncio
import random
import string
import time
import uuid
from typing import Dict, List, Optional, Tuple

from errors import ClientNotRegistered, DuplicateClient
from logging_config import get_logger

logger = get_logger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_client_id() -> str:
    """Return an opaque client id: a random UUID, or time + random when no entropy source is available."""
    try:
        return str(uuid.uuid4())
    except NotImplementedError:
        logger.warning("os.urandom unavailable, falling back to time-based client id")
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=8))
        return f"{_to_base36(time.time_ns())}-{suffix}"


class Session:
    """One client's membership in a room."""

    __slots__ = ("client_id", "name", "stream")

    def __init__(self, client_id: str, name: str):
        self.client_id = client_id
        self.name = name
        self.stream = None

    def close_stream(self):
        stream, self.stream = self.stream, None
        if stream is not None:
            stream.close()
        return stream

    def __repr__(self):
        return f"Session(client_id={self.client_id!r}, name={self.name!r}, streaming={self.stream is not None})"


class Room:
    """Session table for one room.

    Every method below mutates or reads the table and must be called while
    holding ``room.lock``. ``closed`` is set once the registry has dropped the
    room; a closed room accepts no new sessions.
    """

    def __init__(self, room_id: str):
        self.room_id = room_id
        self.sessions: Dict[str, Session] = {}
        self.lock = asyncio.Lock()
        self.closed = False

    def __len__(self):
        return len(self.sessions)

    def is_empty(self) -> bool:
        return not self.sessions

    def get(self, client_id: str) -> Optional[Session]:
        return self.sessions.get(client_id)

    def insert(self, client_id: str, name: str) -> Session:
        if client_id in self.sessions:
            raise DuplicateClient()
        session = Session(client_id, name)
        self.sessions[client_id] = session
        logger.debug(f"Inserted session {client_id} ({name}) into room {self.room_id} (sessions: {len(self.sessions)})")
        return session

    def attach_stream(self, client_id: str, stream) -> Session:
        """Attach ``stream`` to the session, returning it. Any previous stream is detached, not closed."""
        session = self.sessions.get(client_id)
        if session is None:
            raise ClientNotRegistered()
        session.stream = stream
        logger.debug(f"Attached stream for {client_id} in room {self.room_id}")
        return session

    def remove(self, client_id: str) -> Optional[Session]:
        session = self.sessions.pop(client_id, None)
        if session is None:
            logger.debug(f"Session {client_id} already removed from room {self.room_id}")
        else:
            logger.debug(f"Removed session {client_id} from room {self.room_id} (sessions: {len(self.sessions)})")
        return session

    def snapshot(self) -> List[Tuple[str, str]]:
        return [(client_id, session.name) for client_id, session in self.sessions.items()]

    def streams(self, exclude_client_id: Optional[str] = None) -> list:
        """Attached streams of every session except ``exclude_client_id``."""
        return [
            session.stream
            for client_id, session in self.sessions.items()
            if client_id != exclude_client_id and session.stream is not None
        ]


class RoomRegistry:
    """Process-wide map of room id -> Room. Starts empty, never persisted.

    The registry lock only covers inserting and deleting room entries. Lock
    order is room lock first, then registry lock.
    """

    def __init__(self):
        self._rooms: Dict[str, Room] = {}
        self._lock = asyncio.Lock()
        logger.info("Initializing in-memory RoomRegistry")

    async def get_or_create_room(self, room_id: str) -> Room:
        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                room = Room(room_id)
                self._rooms[room_id] = room
                logger.info(f"Created room {room_id}")
            return room

    def lookup_room(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    async def delete_room_if_empty(self, room_id: str) -> bool:
        """Drop the room iff its session table is empty.

        The caller must hold the room's lock so that no session can be
        inserted between the emptiness check and the delete.
        """
        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None or not room.is_empty():
                return False
            del self._rooms[room_id]
            room.closed = True
            logger.info(f"Deleted empty room {room_id}")
            return True

    def rooms(self) -> List[Room]:
        return list(self._rooms.values())

    def room_count(self) -> int:
        return len(self._rooms)

    def session_count(self) -> int:
        return sum(len(room) for room in self._rooms.values())

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms
