"""
gateway/supervisor.py — Gateway Connection Supervisor

The outer control loop. Each cycle:

  1. sleep for the current backoff (if any)
  2. open the websocket
  3. run the handshake (HELLO → AUTHENTICATE, heartbeat started)
  4. run the dispatcher until the socket closes
  5. cancel the heartbeat, close the socket, loop

Backoff starts at 0 and grows 0 → 2 → 4 → … → 64 on connect failures,
handshake transport failures and close frames (with or without a reason). Any
successful open resets it. The loop only ends when the task is cancelled or
authentication fails, which is fatal and re-raised to the caller.

Usage:
    supervisor = GatewaySupervisor(url, token, state, rest_client)
    await supervisor.run()
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from parley.exceptions import AuthenticationError, TransportError
from parley.gateway.dispatcher import EventDispatcher, UserLookup
from parley.gateway.handshake import HandshakeNegotiator
from parley.gateway.heartbeat import HeartbeatScheduler, SleepFn
from parley.gateway.protocol import Close
from parley.gateway.state import ChatState
from parley.observability.logger import bind_connection, clear_connection, get_logger

log = get_logger(__name__)

MAX_BACKOFF_SECONDS = 64

Connector = Callable[[str], Awaitable[Any]]

# Everything websockets.connect raises for an unreachable or refusing server.
_CONNECT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


def next_backoff(current: int, cap: int = MAX_BACKOFF_SECONDS) -> int:
    """Backoff after one more failure: 0 → 2 → 4 → … → cap."""
    return min(cap, max(1, current) * 2)


class Backoff:
    """Reconnect delay in whole seconds, shared across connection attempts."""

    def __init__(self, cap: int = MAX_BACKOFF_SECONDS):
        self.cap = cap
        self.value = 0

    def grow(self) -> int:
        self.value = next_backoff(self.value, self.cap)
        return self.value

    def reset(self) -> None:
        self.value = 0


@dataclass
class ConnectionAttempt:
    """Resources owned by one reconnect cycle."""

    number: int
    transport: Any
    heartbeat: Optional[HeartbeatScheduler] = None

    async def close(self) -> None:
        heartbeat, self.heartbeat = self.heartbeat, None
        try:
            if heartbeat is not None:
                await heartbeat.stop()
        finally:
            try:
                await self.transport.close()
            except (ConnectionClosed, OSError) as e:
                log.debug("gateway.attempt.close_failed", error=str(e))


def websocket_connector(open_timeout: float = 10.0) -> Connector:
    """Connector backed by websockets; protocol-level pings are left to the heartbeat."""

    async def _connect(url: str) -> Any:
        return await websockets.connect(
            url,
            open_timeout=open_timeout,
            ping_interval=None,
            max_size=2**20,
        )

    return _connect


class GatewaySupervisor:
    def __init__(
        self,
        url: str,
        token: str,
        state: ChatState,
        users: UserLookup,
        *,
        connect: Optional[Connector] = None,
        max_backoff: int = MAX_BACKOFF_SECONDS,
        hello_timeout: Optional[float] = None,
        rng: Optional[random.Random] = None,
        sleep: SleepFn = asyncio.sleep,
        heartbeat_sleep: SleepFn = asyncio.sleep,
    ):
        self._url = url
        self._token = token
        self._state = state
        self._users = users
        self._connect = connect or websocket_connector()
        self._hello_timeout = hello_timeout
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._heartbeat_sleep = heartbeat_sleep
        self.backoff = Backoff(max_backoff)
        self.attempts = 0

    async def run(self) -> None:
        """
        Reconnect forever.

        Raises:
            AuthenticationError: the session could not be authenticated.
        """
        log.info("gateway.supervisor.start", url=self._url)
        while True:
            await self.run_once()

    async def run_once(self) -> Optional[Close]:
        """
        One connection cycle. Returns the Close that ended the connection,
        or None if the socket never reached the dispatcher.
        """
        if self.backoff.value > 0:
            await self._sleep(self.backoff.value)

        self.attempts += 1
        bind_connection(self.attempts, self._url)
        try:
            return await self._cycle()
        finally:
            clear_connection()

    async def _cycle(self) -> Optional[Close]:
        log.info("gateway.connect.start")
        try:
            ws = await self._connect(self._url)
        except _CONNECT_ERRORS as e:
            wait = self.backoff.grow()
            self._state.notice(f"Could not connect: {e}, reconnecting in {wait}s", error=True)
            log.warning("gateway.connect.failed", error=str(e), error_type=type(e).__name__, wait_s=wait)
            return None

        self.backoff.reset()
        attempt = ConnectionAttempt(self.attempts, ws)
        try:
            negotiator = HandshakeNegotiator(
                ws,
                self._state,
                self._token,
                hello_timeout=self._hello_timeout,
                rng=self._rng,
                sleep=self._sleep,
                heartbeat_sleep=self._heartbeat_sleep,
            )
            try:
                attempt.heartbeat = await negotiator.negotiate()
            except AuthenticationError as e:
                self._state.notice(f"Could not authenticate: {e}", error=True)
                log.error("gateway.auth.failed", error=str(e))
                raise
            except TransportError as e:
                wait = self.backoff.grow()
                self._state.notice(
                    f"Lost connection during handshake: {e}, reconnecting in {wait}s",
                    error=True,
                )
                log.warning("gateway.handshake.failed", error=str(e), wait_s=wait)
                return None

            self._state.notice("Connected to the gateway")
            log.info("gateway.connected")
            close = await EventDispatcher(ws, self._state, self._users).run()
        finally:
            await attempt.close()

        if close.reason is not None:
            wait = self.backoff.grow()
            if close.reason:
                self._state.notice(
                    f"Connection closed: {close.reason}, retrying in {wait}s", error=True
                )
            log.warning("gateway.disconnected", reason=close.reason, wait_s=wait)
        else:
            log.info("gateway.disconnected", reason=None, wait_s=self.backoff.value)
        return close
