"""
tests/unit/test_handshake.py — Handshake Negotiator Tests

Covers:
  - HELLO → exactly one AUTHENTICATE, sent before any PING
  - RATE_LIMIT before HELLO waits and keeps listening on the same socket
  - frames other than HELLO / RATE_LIMIT are ignored while waiting
  - AUTHENTICATE send failure is fatal
  - a socket that closes or stays silent before HELLO is a transport error
"""

from __future__ import annotations

import asyncio
import json

import pytest

from parley.exceptions import AuthenticationError, HandshakeTimeoutError, TransportError
from parley.gateway.handshake import HandshakeNegotiator, HandshakePhase
from parley.gateway.state import ChatState, Style

from gateway_fakes import FakeSleep, FakeSocket, closed_error, hello


def _negotiator(ws, state=None, **kwargs):
    return HandshakeNegotiator(ws, state or ChatState("Kayla"), "tok-123", **kwargs)


class TestHello:
    @pytest.mark.asyncio
    async def test_authenticates_once_before_any_ping(self):
        ws = FakeSocket(hello(30000))
        neg = _negotiator(ws, heartbeat_sleep=FakeSleep())

        heartbeat = await neg.negotiate()
        try:
            assert neg.phase is HandshakePhase.READY
            assert heartbeat.interval_ms == 30000
            assert heartbeat.running
            for _ in range(10):
                await asyncio.sleep(0)
        finally:
            await heartbeat.stop()

        ops = ws.sent_ops
        assert ops[0] == "AUTHENTICATE"
        assert ops.count("AUTHENTICATE") == 1
        assert ops.count("PING") >= 2
        assert set(ops[1:]) == {"PING"}
        assert json.loads(ws.sent[0]) == {"op": "AUTHENTICATE", "token": "tok-123"}

    @pytest.mark.asyncio
    async def test_ignores_other_frames_before_hello(self):
        ws = FakeSocket(
            "garbage",
            b"\x00\x01",
            {"op": "MESSAGE_CREATE", "author": "ava", "content": "early"},
            {"op": "SOMETHING_NEW"},
            hello(1000),
        )
        state = ChatState("Kayla")
        heartbeat = await _negotiator(ws, state).negotiate()
        await heartbeat.stop()

        assert ws.sent_ops == ["AUTHENTICATE"]
        assert state.snapshot_log() == []


class TestRateLimit:
    @pytest.mark.asyncio
    async def test_waits_then_keeps_awaiting_hello(self):
        ws = FakeSocket({"op": "RATE_LIMIT", "wait": 5000}, hello())
        state = ChatState("Kayla")
        sleep = FakeSleep()

        heartbeat = await _negotiator(ws, state, sleep=sleep).negotiate()
        await heartbeat.stop()

        assert sleep.calls == [5.0]
        assert ws.sent_ops == ["AUTHENTICATE"]
        [entry] = state.snapshot_log()
        assert str(entry) == "Rate limited, waiting 5s"
        assert entry.style is Style.ERROR

    @pytest.mark.asyncio
    async def test_rate_limit_sleep_not_bounded_by_hello_timeout(self):
        ws = FakeSocket({"op": "RATE_LIMIT", "wait": 120000}, hello())
        sleep = FakeSleep()
        heartbeat = await _negotiator(ws, sleep=sleep, hello_timeout=1.0).negotiate()
        await heartbeat.stop()
        assert sleep.calls == [120.0]


class TestFailures:
    @pytest.mark.asyncio
    async def test_auth_send_failure_is_fatal(self):
        ws = FakeSocket(hello(), send_error=closed_error())
        neg = _negotiator(ws)
        with pytest.raises(AuthenticationError):
            await neg.negotiate()
        assert neg.phase is HandshakePhase.AUTHENTICATING

    @pytest.mark.asyncio
    async def test_closed_before_hello(self):
        ws = FakeSocket({"op": "RATE_LIMIT", "wait": 0})
        with pytest.raises(TransportError):
            await _negotiator(ws, sleep=FakeSleep()).negotiate()

    @pytest.mark.asyncio
    async def test_hello_timeout(self):
        ws = FakeSocket(eof_when_empty=False)
        with pytest.raises(HandshakeTimeoutError):
            await _negotiator(ws, hello_timeout=0.01).negotiate()
        assert ws.sent == []
