"""
gateway/handshake.py — Gateway Handshake

Drives a freshly opened socket from HELLO to a ready, authenticated session:

    AWAITING_HELLO ──HELLO──▶ AUTHENTICATING ──sent──▶ READY
          ▲   │
          │   └─RATE_LIMIT─▶ DEFERRED (sleep `wait` ms on the same socket)
          └──────────────────────┘

Everything else received before HELLO is ignored. A failed AUTHENTICATE send
is fatal (AuthenticationError); a socket that closes or stays silent before
HELLO is an ordinary transport failure the supervisor retries.
"""

from __future__ import annotations

import asyncio
import random
from enum import Enum
from typing import Any, Optional

from websockets.exceptions import ConnectionClosed

from parley.exceptions import (
    AuthenticationError,
    FrameDecodeError,
    HandshakeTimeoutError,
    TransportError,
)
from parley.gateway.heartbeat import HeartbeatScheduler, SleepFn
from parley.gateway.protocol import Authenticate, Hello, RateLimit, decode, encode
from parley.gateway.state import ChatState
from parley.observability.logger import get_logger

log = get_logger(__name__)


class HandshakePhase(str, Enum):
    AWAITING_HELLO = "awaiting_hello"
    DEFERRED       = "deferred"
    AUTHENTICATING = "authenticating"
    READY          = "ready"


class HandshakeNegotiator:
    """
    One-shot negotiator for a single connection attempt.

    `ws` needs the recv()/send() surface of a websockets client connection.
    """

    def __init__(
        self,
        ws: Any,
        state: ChatState,
        token: str,
        *,
        hello_timeout: Optional[float] = None,
        rng: Optional[random.Random] = None,
        sleep: SleepFn = asyncio.sleep,
        heartbeat_sleep: SleepFn = asyncio.sleep,
    ):
        self._ws = ws
        self._state = state
        self._token = token
        self._hello_timeout = hello_timeout
        self._rng = rng
        self._sleep = sleep
        self._heartbeat_sleep = heartbeat_sleep
        self.phase = HandshakePhase.AWAITING_HELLO

    async def _recv(self) -> Any:
        try:
            if self._hello_timeout is None:
                return await self._ws.recv()
            return await asyncio.wait_for(self._ws.recv(), self._hello_timeout)
        except asyncio.TimeoutError:
            raise HandshakeTimeoutError(
                f"no HELLO within {self._hello_timeout:g}s"
            ) from None
        except ConnectionClosed as e:
            raise TransportError(f"connection closed during handshake: {e}") from e

    async def _await_hello(self) -> Hello:
        while True:
            raw = await self._recv()
            if not isinstance(raw, str):
                continue
            try:
                event = decode(raw)
            except FrameDecodeError as e:
                log.debug("gateway.handshake.bad_frame", error=str(e))
                continue

            if isinstance(event, Hello):
                return event

            if isinstance(event, RateLimit):
                self.phase = HandshakePhase.DEFERRED
                self._state.notice(
                    f"Rate limited, waiting {event.wait_ms // 1000}s", error=True
                )
                log.warning("gateway.handshake.rate_limited", wait_ms=event.wait_ms)
                await self._sleep(event.wait_ms / 1000)
                self.phase = HandshakePhase.AWAITING_HELLO
                continue

            log.debug("gateway.handshake.ignored", frame=type(event).__name__)

    async def negotiate(self) -> HeartbeatScheduler:
        """
        Run the handshake and return the started heartbeat.

        Raises:
            AuthenticationError: AUTHENTICATE could not be sent.
            TransportError:      the socket closed or timed out before HELLO.
        """
        self.phase = HandshakePhase.AWAITING_HELLO
        hello = await self._await_hello()
        log.info("gateway.handshake.hello", heartbeat_interval=hello.heartbeat_interval)

        self.phase = HandshakePhase.AUTHENTICATING
        try:
            await self._ws.send(encode(Authenticate(self._token)))
        except (ConnectionClosed, OSError) as e:
            raise AuthenticationError(str(e) or type(e).__name__) from e

        heartbeat = HeartbeatScheduler(
            self._ws.send,
            hello.heartbeat_interval,
            rng=self._rng,
            sleep=self._heartbeat_sleep,
        )
        heartbeat.start()
        self.phase = HandshakePhase.READY
        log.info("gateway.handshake.ready")
        return heartbeat
