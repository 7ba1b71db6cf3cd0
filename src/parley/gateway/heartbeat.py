"""
gateway/heartbeat.py — Gateway Keep-Alive

Sends PING frames every `heartbeat_interval` ms for the lifetime of one
connection attempt. The first ping waits a random jitter in
[0, heartbeat_interval) so clients that reconnect together after a server
restart don't ping in lockstep.

The scheduler only writes to the socket. It stops quietly when a send fails;
the dispatcher notices the same closure on its read side and drives the
reconnect. The supervisor cancels it at the end of every attempt.

Usage:
    heartbeat = HeartbeatScheduler(ws.send, hello.heartbeat_interval)
    heartbeat.start()
    ...
    await heartbeat.stop()
"""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, Optional

from websockets.exceptions import ConnectionClosed

from parley.gateway.protocol import Ping, encode
from parley.observability.logger import get_logger

log = get_logger(__name__)

SendFn = Callable[[str], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[None]]


class HeartbeatScheduler:
    def __init__(
        self,
        send: SendFn,
        interval_ms: int,
        *,
        rng: Optional[random.Random] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        if interval_ms < 1:
            raise ValueError(f"heartbeat interval must be >= 1 ms, got {interval_ms}")
        self._send = send
        self.interval_ms = interval_ms
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.pings_sent = 0

    def jitter_ms(self) -> int:
        """Initial delay, uniform over the integers in [0, interval_ms)."""
        return self._rng.randrange(self.interval_ms)

    async def run(self) -> None:
        """Ping until a send fails. Runs until cancelled otherwise."""
        jitter = self.jitter_ms()
        log.debug("gateway.heartbeat.start", interval_ms=self.interval_ms, jitter_ms=jitter)
        await self._sleep(jitter / 1000)

        frame = encode(Ping())
        while True:
            try:
                await self._send(frame)
            except (ConnectionClosed, OSError) as e:
                log.debug("gateway.heartbeat.stopped", reason=str(e), pings=self.pings_sent)
                return
            self.pings_sent += 1
            await self._sleep(self.interval_ms / 1000)

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run(), name="gateway-heartbeat")
        return self._task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def stop(self) -> None:
        """Cancel the ping loop and wait for it to unwind."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            # Only the heartbeat was cancelled; a cancel aimed at us propagates.
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
