"""Headless signaling client, no browser needed.

Speaks the same HTTP + server-sent events protocol as the web client and
leaves the negotiation payload to the caller.

Usage:
    client = SignalingClient("https://localhost:3434")
    peers = await client.join("lobby", "bot")
    async for event in client.events():
        if event.kind == "peer-joined":
            await client.signal(event.data["clientId"], {"type": "offer", "sdp": "..."})
    await client.leave()
"""
import asyncio
import json
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional

import httpx

from constants import SIGNAL_RETRY_DELAY, SIGNAL_RETRY_LIMIT
from logging_config import get_logger

logger = get_logger(__name__)


class SignalingClientError(Exception):
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


@dataclass
class Event:
    kind: str
    data: object = None


@dataclass
class PeerInfo:
    client_id: str
    name: str = ""


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("error") or response.reason_phrase
    except (ValueError, AttributeError):
        return response.text or response.reason_phrase


async def iter_events(lines) -> AsyncIterator[Event]:
    """Parse text/event-stream lines into events. Comment lines (keep-alives) are skipped."""
    kind = "message"
    data_lines: List[str] = []
    async for line in lines:
        if line == "":
            if data_lines:
                raw = "\n".join(data_lines)
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    data = raw
                yield Event(kind=kind, data=data)
            kind = "message"
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            kind = value
        elif name == "data":
            data_lines.append(value)


@dataclass
class SignalingClient:
    base_url: str
    transport: Optional[httpx.AsyncBaseTransport] = None
    retry_limit: int = SIGNAL_RETRY_LIMIT
    retry_delay: float = SIGNAL_RETRY_DELAY
    verify: bool = True
    client_id: Optional[str] = None
    room: Optional[str] = None
    peers: List[PeerInfo] = field(default_factory=list)

    def __post_init__(self):
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            transport=self.transport,
            verify=self.verify,
            timeout=httpx.Timeout(10.0, read=None),
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def join(self, room: str, name: str) -> List[PeerInfo]:
        response = await self._http.post("/join", json={"room": room, "name": name})
        if response.status_code != 200:
            raise SignalingClientError(response.status_code, _error_message(response))
        body = response.json()
        self.client_id = body["clientId"]
        self.room = body["room"]
        self.peers = [PeerInfo(client_id=p["clientId"], name=p.get("name", "")) for p in body.get("peers", [])]
        logger.info(f"Joined room {self.room} as {self.client_id} with {len(self.peers)} peers")
        return self.peers

    async def events(self) -> AsyncIterator[Event]:
        """Open the event stream and yield events until the server closes it."""
        self._require_joined()
        params = {"room": self.room, "clientId": self.client_id}
        async with self._http.stream("GET", "/events", params=params) as response:
            if response.status_code != 200:
                await response.aread()
                raise SignalingClientError(response.status_code, _error_message(response))
            async for event in iter_events(response.aiter_lines()):
                yield event

    async def signal(self, target: str, data) -> None:
        """Relay ``data`` to ``target``, retrying with linear backoff while the target has no stream."""
        self._require_joined()
        payload = {"room": self.room, "from": self.client_id, "target": target, "data": data}
        attempt = 0
        while True:
            response = await self._http.post("/signal", json=payload)
            if response.status_code < 300:
                return
            if response.status_code == 409 and attempt < self.retry_limit:
                attempt += 1
                logger.debug(f"Signal to {target} unavailable, retry {attempt}/{self.retry_limit}")
                await asyncio.sleep(self.retry_delay * attempt)
                continue
            raise SignalingClientError(response.status_code, _error_message(response))

    async def leave(self) -> None:
        if not self.client_id or not self.room:
            return
        response = await self._http.post("/leave", json={"room": self.room, "clientId": self.client_id})
        if response.status_code >= 300:
            raise SignalingClientError(response.status_code, _error_message(response))
        logger.info(f"Left room {self.room}")
        self.client_id = None
        self.room = None
        self.peers = []

    async def aclose(self):
        await self._http.aclose()

    def _require_joined(self):
        if not self.client_id or not self.room:
            raise RuntimeError("join() must be called first")
