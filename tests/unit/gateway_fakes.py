"""
tests/unit/gateway_fakes.py — Scripted stand-ins for gateway collaborators.

FakeSocket implements the recv()/send()/close() surface the gateway uses on
a websockets client connection. Frames are queued up front (dicts are sent
as JSON text); close() markers end the stream the way websockets does, by
raising ConnectionClosed from recv().
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional

from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close as CloseFrame

from parley.gateway.protocol import User


@dataclass
class _CloseMarker:
    code: Optional[int] = None
    reason: str = ""

    def exception(self) -> Exception:
        if self.code is None:
            return ConnectionClosedError(None, None)
        return ConnectionClosedOK(CloseFrame(self.code, self.reason), None)


def closed_error() -> ConnectionClosedError:
    """What send()/recv() raise on a socket that died without a close frame."""
    return ConnectionClosedError(None, None)


class FakeSocket:
    def __init__(
        self,
        *frames: Any,
        eof_when_empty: bool = True,
        send_error: Optional[BaseException] = None,
    ):
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._eof_when_empty = eof_when_empty
        self.send_error = send_error
        self.sent: list[str] = []
        self.closed = False
        for frame in frames:
            self.push(frame)

    def push(self, frame: Any) -> "FakeSocket":
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._inbox.put_nowait(frame)
        return self

    def push_close(self, reason: str = "", code: int = 1000) -> "FakeSocket":
        self._inbox.put_nowait(_CloseMarker(code, reason))
        return self

    def push_eof(self) -> "FakeSocket":
        self._inbox.put_nowait(_CloseMarker())
        return self

    async def recv(self) -> Any:
        if self._inbox.empty() and self._eof_when_empty:
            raise closed_error()
        item = await self._inbox.get()
        if isinstance(item, _CloseMarker):
            raise item.exception()
        return item

    async def send(self, data: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True

    @property
    def sent_ops(self) -> list[str]:
        return [json.loads(frame)["op"] for frame in self.sent]


class FakeSleep:
    """Records requested delays and returns immediately."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


class RecordingSink:
    """NotificationSink that remembers every call."""

    def __init__(self) -> None:
        self.shown: list[tuple[str, str]] = []
        self.updated: list[tuple[Any, str, str]] = []
        self.closed: list[Any] = []

    def show(self, summary: str, body: str) -> int:
        self.shown.append((summary, body))
        return len(self.shown)

    def update(self, handle: Any, summary: str, body: str) -> None:
        self.updated.append((handle, summary, body))

    def close(self, handle: Any) -> None:
        self.closed.append(handle)


def hello(interval: int = 30000) -> dict:
    return {"op": "HELLO", "heartbeat_interval": interval}


def user_json(user_id: int, username: str, status: str = "ONLINE", **extra: Any) -> dict:
    return {"id": user_id, "username": username, "status": {"type": status}, **extra}


def make_user(user_id: int, username: str, status: str = "ONLINE") -> User:
    return User.model_validate(user_json(user_id, username, status))
